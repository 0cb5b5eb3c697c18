"""
Tests for the command-line interface (offline: model and database are faked).
"""

import json
import sys

import pytest

import dealer_query.cli as cli_module
from dealer_query.cli import DealerQueryCLI, main
from dealer_query.llm_guard import LLMAvailabilityError
from dealer_query.query_engine import QueryEngine
from dealer_query.schema_registry import StaticSchemaRegistry
from dealer_query.services import QueryService
from dealer_query.sql_generator import SQLGenerator
from dealer_query.sql_validator import SQLSafetyValidator

DEALS_SQL = "SELECT COUNT(ID) AS TotalDeals FROM SalesReport_Form_Input"


@pytest.fixture
def offline_cli(monkeypatch, db_config, fake_llm, fake_connect):
    """Patch the CLI so it builds a QueryService on fakes."""
    llm = fake_llm(DEALS_SQL)
    connect = fake_connect(columns=["TotalDeals"], rows=[(42,)])

    def build_service(config=None):
        return QueryService(
            db_config,
            sql_generator=SQLGenerator(
                llm_client=llm,
                schema_registry=StaticSchemaRegistry(),
                validator=SQLSafetyValidator(strict=True, enforce_schema_check=True),
            ),
            query_engine=QueryEngine(db_config, connect_fn=connect),
        )

    monkeypatch.setattr(cli_module, "ensure_llm_available", lambda context: llm)
    monkeypatch.setattr(cli_module, "QueryService", build_service)
    return llm


def _run_main(monkeypatch, *args):
    monkeypatch.setattr(sys, "argv", ["dealer-query", *args])
    with pytest.raises(SystemExit) as excinfo:
        main()
    return excinfo.value.code


def test_analyze_only_needs_no_model(monkeypatch):
    def refuse(context):
        raise AssertionError("model check should not run")

    monkeypatch.setattr(cli_module, "ensure_llm_available", refuse)

    analysis = DealerQueryCLI(analyze_only=True).analyze("count deals this month")

    assert analysis["table"]["table"] == "SalesReport_Form_Input"
    assert analysis["aggregates"] == [
        {"column": "ID", "function": "COUNT", "alias": "TotalDeals"}
    ]
    assert analysis["time_range"]["kind"] == "relative_month"


def test_main_analyze_only_json(monkeypatch, capsys):
    code = _run_main(monkeypatch, "total gross for October 2025", "--analyze-only", "--json")

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["time_range"]["predicate"] == (
        "MONTH_REPORTED = 'October' AND YEAR_REPORTED = '2025'"
    )


def test_main_without_model_exits_with_help(monkeypatch, capsys):
    def unavailable(context):
        raise LLMAvailabilityError(f"{context}: not configured")

    monkeypatch.setattr(cli_module, "ensure_llm_available", unavailable)

    code = _run_main(monkeypatch, "total gross")

    assert code == 2
    assert "--analyze-only" in capsys.readouterr().out


def test_main_sql_only(monkeypatch, capsys, offline_cli):
    code = _run_main(monkeypatch, "count deals this month", "--sql-only", "--json")

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload == {
        "sql": DEALS_SQL,
        "is_fallback": False,
        "failure": None,
        "failure_reason": None,
    }


def test_main_json_query(monkeypatch, capsys, offline_cli):
    code = _run_main(monkeypatch, "count deals this month", "--json", "--pretty")

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload == {"sql": DEALS_SQL, "rows": [{"TotalDeals": 42}], "visualization": "bar"}


def test_main_text_output(monkeypatch, capsys, offline_cli):
    code = _run_main(monkeypatch, "count deals this month", "--debug")

    assert code == 0
    out = capsys.readouterr().out
    assert f"SQL: {DEALS_SQL}" in out
    assert "Visualization: bar" in out
    assert "llm_sql_generation" in out


def test_interactive_session(monkeypatch, capsys, offline_cli):
    answers = iter(["count deals this month", "debug on", "exit"])
    monkeypatch.setattr("builtins.input", lambda prompt="": next(answers))

    DealerQueryCLI().run_interactive()

    out = capsys.readouterr().out
    assert "Visualization: bar" in out
    assert "Debug mode is ON" in out
    assert "processed 1 prompts" in out
