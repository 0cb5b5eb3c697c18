import pytest

from dealer_query.llm_guard import LLMAvailabilityError, LLMCallError, MissingInputError
from dealer_query.services import AnalysisService
from dealer_query.services.analysis_service import render_data


@pytest.fixture
def make_service(db_config):
    def _make(llm_client):
        return AnalysisService(db_config, llm_client=llm_client)

    return _make


def test_ask_returns_answer(make_service, fake_llm):
    llm = fake_llm("Gross is front plus back end profit.")
    result = make_service(llm).ask("  What is gross?  ", temperature=0.3)

    assert result == {
        "answer": "Gross is front plus back end profit.",
        "model": "test-model",
        "usage": {"prompt_tokens": 120, "completion_tokens": 30, "total_tokens": 150},
    }
    assert llm.last_messages[1].content == "What is gross?"
    assert llm.calls[-1]["temperature"] == 0.3


@pytest.mark.parametrize("question", [None, "", "  "])
def test_ask_requires_question(make_service, fake_llm, question):
    with pytest.raises(MissingInputError, match="question required"):
        make_service(fake_llm("x")).ask(question)


def test_ask_without_configured_model(make_service, fake_llm):
    with pytest.raises(LLMAvailabilityError):
        make_service(fake_llm("x", available=False)).ask("What is gross?")


def test_ask_surfaces_model_failure(make_service, fake_llm):
    with pytest.raises(LLMCallError, match="rate limited"):
        make_service(fake_llm(success=False, errors=["rate limited"])).ask("What is gross?")


def test_analyze_json_rows_truncated(make_service, fake_llm):
    llm = fake_llm("Tampa leads.")
    rows = [{"DEALER_LOCATION": f"Store {i}", "TotalGross": i * 1000} for i in range(10)]

    result = make_service(llm).analyze(
        "Which store leads?", rows, "json", max_rows_to_show=3
    )

    assert result["analysis"] == "Tampa leads."
    assert result["rowsAnalyzed"] == 3
    assert result["totalRows"] == 10
    user_message = llm.last_messages[1].content
    assert "(showing the first 3 of 10 rows)" in user_message
    assert "Store 2" in user_message
    assert "Store 3" not in user_message


def test_analyze_csv(make_service, fake_llm):
    llm = fake_llm("Two deals.")
    result = make_service(llm).analyze(
        "How many deals?", "CLOSER,TOTAL_COST\nMaria,100\nJoe,200\n", "csv"
    )
    assert result["rowsAnalyzed"] == 2
    assert result["totalRows"] == 2


def test_analyze_rejects_unknown_type(make_service, fake_llm):
    with pytest.raises(ValueError, match="Unsupported dataType"):
        make_service(fake_llm("x")).analyze("q", "a,b", "xml")


def test_analyze_requires_data(make_service, fake_llm):
    with pytest.raises(MissingInputError, match="data required"):
        make_service(fake_llm("x")).analyze("q", [])


def test_analyze_text(make_service, fake_llm):
    llm = fake_llm("positive")
    result = make_service(llm).analyze_text("Great service at Tampa!", "Sentiment")

    assert result["analysisType"] == "sentiment"
    assert result["analysis"] == "positive"
    assert "sentiment" in llm.last_messages[1].content.lower()


def test_analyze_text_rejects_unknown_type(make_service, fake_llm):
    with pytest.raises(ValueError, match="Unsupported analysisType"):
        make_service(fake_llm("x")).analyze_text("text", "poetry")


def test_batch_reports_each_item(make_service, fake_llm):
    service = make_service(fake_llm("ok"))
    result = service.analyze_batch(
        [
            {"type": "ask", "question": "What is gross?"},
            {"type": "analyze-text", "text": "Great deal", "analysisType": "summary"},
            {"type": "ask"},
            {"type": "translate", "text": "hola"},
        ]
    )

    assert result["total"] == 4
    assert result["succeeded"] == 2
    assert result["failed"] == 2
    assert result["results"][0]["success"] is True
    assert result["results"][0]["result"]["answer"] == "ok"
    assert result["results"][1]["result"]["analysisType"] == "summary"
    assert result["results"][2]["error"] == "question required"
    assert "Unsupported batch type" in result["results"][3]["error"]


def test_batch_size_limit(make_service, fake_llm, db_config):
    requests = [{"type": "ask", "question": "q"}] * (db_config.api_max_batch + 1)
    with pytest.raises(ValueError, match="Too many requests"):
        make_service(fake_llm("ok")).analyze_batch(requests)


def test_batch_requires_requests(make_service, fake_llm):
    with pytest.raises(MissingInputError):
        make_service(fake_llm("ok")).analyze_batch([])


def test_render_text_data():
    rendered, shown, total = render_data("line one\n\nline two\nline three", "text", 2)
    assert rendered == "line one\nline two"
    assert (shown, total) == (2, 3)


def test_render_json_string_object():
    rendered, shown, total = render_data('{"MAKE": "Ford", "TotalDeals": 4}', "json", 50)
    assert rendered == "MAKE,TotalDeals\nFord,4"
    assert (shown, total) == (1, 1)


def test_render_invalid_json_raises_value_error():
    with pytest.raises(ValueError):
        render_data("{not json", "json", 10)
