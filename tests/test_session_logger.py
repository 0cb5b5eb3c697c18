import json

from dealer_query.models import GeneratedSQL, GenerationFailure
from dealer_query.session_logger import log_interaction
from dealer_query.sql_validator import FALLBACK_SQL
from dealer_query.telemetry import create_request_context


def test_appends_jsonl_records(tmp_path):
    log_file = tmp_path / "nested" / "sessions.jsonl"
    context = create_request_context("total gross")
    context.add_timing("llm_sql_generation", 0.5)

    for channel in ("api", "cli"):
        log_interaction(
            channel=channel,
            prompt="total gross",
            context=context,
            generated_sql=GeneratedSQL(
                sql=FALLBACK_SQL,
                raw_sql="DROP TABLE x",
                is_fallback=True,
                failure=GenerationFailure.UNSAFE,
                failure_reason="SQL must start with SELECT or WITH",
            ),
            result={"success": False, "error_kind": "policy"},
            log_file=str(log_file),
        )

    lines = log_file.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    first = json.loads(lines[0])
    assert first["channel"] == "api"
    assert first["request_id"] == context.request_id
    assert first["generated_sql"]["failure"] == "unsafe"
    assert first["generated_sql"]["raw_sql"] == "DROP TABLE x"
    assert first["component_timings"] == {"llm_sql_generation": 0.5}
    assert first["analysis"] is None
    assert json.loads(lines[1])["channel"] == "cli"


def test_no_log_file_configured_is_noop(tmp_path, monkeypatch):
    from dealer_query.config import Config

    monkeypatch.delenv("SESSION_LOG_FILE", raising=False)
    monkeypatch.setattr("dealer_query.session_logger.get_config", lambda: Config())

    log_interaction(
        channel="api",
        prompt="total gross",
        context=create_request_context("total gross"),
        generated_sql=None,
        result={"success": True},
    )

    assert list(tmp_path.iterdir()) == []
