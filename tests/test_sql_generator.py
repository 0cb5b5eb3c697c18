import pytest

from dealer_query.models import GenerationFailure, SchemaSnapshot
from dealer_query.schema_registry import SchemaRegistry, StaticSchemaRegistry
from dealer_query.sql_generator import SQLGenerator
from dealer_query.sql_validator import FALLBACK_SQL, SQLSafetyValidator
from dealer_query.telemetry import create_request_context

GROSS_SQL = (
    "SELECT DEALER_LOCATION, SUM(TOTAL_COST) AS TotalGross "
    "FROM SalesReport_Form_Input "
    "WHERE MONTH_REPORTED = 'October' AND YEAR_REPORTED = '2025' "
    "GROUP BY DEALER_LOCATION"
)


@pytest.fixture
def make_generator():
    def _make(llm_client, registry=None):
        return SQLGenerator(
            llm_client=llm_client,
            schema_registry=registry or StaticSchemaRegistry(),
            validator=SQLSafetyValidator(strict=True, enforce_schema_check=True),
        )

    return _make


def test_generates_validated_sql(make_generator, fake_llm, fixed_now):
    llm = fake_llm(f"```sql\n{GROSS_SQL};\n```")
    generated = make_generator(llm).generate(
        "Show total gross by dealership for October 2025", now=fixed_now
    )

    assert generated.sql == GROSS_SQL
    assert generated.failure is None
    assert generated.is_fallback is False
    assert generated.analysis.presentation.group_by == "DEALER_LOCATION"
    assert generated.token_usage["total_tokens"] == 150


def test_prompt_includes_schema_hints_and_request(make_generator, fake_llm, fixed_now):
    llm = fake_llm(GROSS_SQL)
    make_generator(llm).generate(
        "  Show total gross   by dealership for October 2025 ", now=fixed_now
    )

    system, user = llm.last_messages
    assert system.role == "system"
    assert "Tables:" in system.content
    assert "SalesReport_Form_Input" in system.content
    assert "SUM(TOTAL_COST) AS TotalGross" in system.content
    assert "MONTH_REPORTED = 'October' AND YEAR_REPORTED = '2025'" in system.content
    assert "DEALER_LOCATION ~" not in system.content
    assert user.content == (
        'User request: "Show total gross by dealership for October 2025"\n'
        "Return only the SQL query."
    )
    assert llm.calls[-1]["temperature"] == 0.0


def test_injection_output_returns_fallback(make_generator, fake_llm):
    generated = make_generator(fake_llm("'; DROP TABLE Users; --")).generate("drop everything")

    assert generated.sql == FALLBACK_SQL
    assert generated.is_fallback is True
    assert generated.failure == GenerationFailure.UNSAFE
    assert generated.raw_sql == "'; DROP TABLE Users; --"


@pytest.mark.parametrize("content", [None, "", "   "])
def test_empty_output_returns_fallback(make_generator, fake_llm, content):
    generated = make_generator(fake_llm(content)).generate("total gross")

    assert generated.sql == FALLBACK_SQL
    assert generated.failure == GenerationFailure.EMPTY_OUTPUT
    assert generated.failure_reason == "LLM did not return SQL"


def test_llm_failure_returns_fallback(make_generator, fake_llm):
    llm = fake_llm(success=False, errors=["Request timed out."])
    generated = make_generator(llm).generate("total gross")

    assert generated.sql == FALLBACK_SQL
    assert generated.failure == GenerationFailure.LLM_ERROR
    assert generated.failure_reason == "Request timed out."


def test_llm_exception_never_escapes(make_generator, fake_llm):
    llm = fake_llm(raises=RuntimeError("connection reset"))
    generated = make_generator(llm).generate("total gross")

    assert generated.failure == GenerationFailure.LLM_ERROR
    assert "connection reset" in generated.failure_reason


def test_analyzer_error_never_escapes(fake_llm, monkeypatch):
    llm = fake_llm(GROSS_SQL)
    generator = SQLGenerator(
        llm_client=llm,
        schema_registry=StaticSchemaRegistry(),
        validator=SQLSafetyValidator(strict=True, enforce_schema_check=True),
    )

    def broken_analyze(prompt, now=None, context=None):
        raise ValueError("bad pattern")

    monkeypatch.setattr(generator.analyzer, "analyze", broken_analyze)

    generated = generator.generate("total gross")

    assert generated.sql == FALLBACK_SQL
    assert generated.is_fallback is True
    assert generated.failure == GenerationFailure.LLM_ERROR
    assert generated.failure_reason == "bad pattern"
    assert llm.calls == []


def test_unknown_column_is_schema_mismatch(make_generator, fake_llm):
    llm = fake_llm("SELECT SUM(PROFIT_MARGIN) AS TotalMargin FROM SalesReport_Form_Input")
    generated = make_generator(llm).generate("total profit")

    assert generated.sql == FALLBACK_SQL
    assert generated.failure == GenerationFailure.SCHEMA_MISMATCH
    assert "PROFIT_MARGIN" in generated.failure_reason


def test_model_returning_fallback_is_flagged(make_generator, fake_llm):
    generated = make_generator(fake_llm(FALLBACK_SQL)).generate("what is the weather")
    assert generated.failure is None
    assert generated.is_fallback is True


def test_registry_failure_uses_static_description(make_generator, fake_llm):
    class _BrokenRegistry(SchemaRegistry):
        def get_snapshot(self):
            raise RuntimeError("registry offline")

    llm = fake_llm("SELECT ID FROM SomeOtherTable")
    generated = make_generator(llm, registry=_BrokenRegistry(ttl_seconds=60)).generate(
        "list deals"
    )

    # Without a snapshot the identifier check is skipped
    assert generated.sql == "SELECT ID FROM SomeOtherTable"
    assert "SalesReport_Form_Input" in llm.last_messages[0].content


def test_live_snapshot_drives_schema_check(make_generator, fake_llm):
    from dealer_query.models import ColumnInfo

    snapshot = SchemaSnapshot(
        tables={"SalesReport_Form_Input": [ColumnInfo(column="ID"), ColumnInfo(column="CLOSER")]}
    )
    registry = SchemaRegistry(refresh_fn=lambda: snapshot, ttl_seconds=60)
    llm = fake_llm("SELECT CLOSER, COUNT(ID) AS TotalDeals FROM SalesReport_Form_Input GROUP BY CLOSER")

    generated = make_generator(llm, registry=registry).generate("deals by closer")

    assert generated.failure is None
    assert "- SalesReport_Form_Input: ID, CLOSER" in llm.last_messages[0].content


def test_context_records_timings_and_llm_call(make_generator, fake_llm, fixed_now):
    context = create_request_context("count deals this month")
    llm = fake_llm("SELECT COUNT(ID) AS TotalDeals FROM SalesReport_Form_Input")

    make_generator(llm).generate("count deals this month", context=context, now=fixed_now)

    assert {"prompt_analysis", "llm_sql_generation", "sql_validation"} <= set(
        context.component_timings
    )
    assert context.llm_calls[0].total_tokens == 150


def test_generate_sql_text(make_generator, fake_llm):
    generator = make_generator(fake_llm(GROSS_SQL))
    assert generator.generate_sql_text("gross by dealership") == GROSS_SQL
