"""FastAPI application exposing the dealer query pipeline over HTTP."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Callable, Dict

import uvicorn
from fastapi import APIRouter, Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dealer_query.config import get_config
from dealer_query.llm_guard import MissingInputError
from dealer_query.models import (
    AnalyzeRequest,
    AnalyzeTextRequest,
    AskRequest,
    BatchRequest,
    QueryRequest,
)
from dealer_query.services import AnalysisService, QueryService
from dealer_query.telemetry import get_logger

logger = get_logger()

app = FastAPI(
    title="Dealer Query API",
    description="Natural language reporting over dealership sales, inventory and warranty data",
    version="0.1.0",
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_query_service() -> QueryService:
    """Provide a cached QueryService instance."""
    return QueryService()


@lru_cache(maxsize=1)
def get_analysis_service() -> AnalysisService:
    """Provide a cached AnalysisService instance."""
    return AnalysisService()


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    logger.warning(f"Validation error on {request.method} {request.url}: {exc.errors()}")
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"error": f"{location}: {message}" if location else message},
    )


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def _run_analysis(operation: Callable[[], Dict[str, Any]], name: str):
    """Map analysis exceptions: bad input -> 400, model failure -> 500."""
    try:
        return operation()
    except (MissingInputError, ValueError) as exc:
        return _error(400, str(exc))
    except Exception as exc:  # noqa: BLE001 - surface model failures as 500
        logger.error(f"{name} failed: {type(exc).__name__}: {exc}")
        return _error(500, str(exc))


router = APIRouter()


@router.get("/health")
def healthcheck() -> Dict[str, bool]:
    return {"ok": True}


@router.post("/query")
def query_endpoint(
    payload: QueryRequest,
    service: QueryService = Depends(get_query_service),
):
    """Generate SQL for the prompt, execute it and pick a visualization."""
    result = service.run(payload.prompt, channel="api")
    if result.success:
        return result.to_payload()
    return JSONResponse(status_code=result.status_code, content=result.to_payload())


@router.post("/ask")
def ask_endpoint(
    payload: AskRequest,
    service: AnalysisService = Depends(get_analysis_service),
):
    return _run_analysis(
        lambda: service.ask(payload.question, payload.model, payload.temperature),
        "ask",
    )


@router.post("/analyze")
def analyze_endpoint(
    payload: AnalyzeRequest,
    service: AnalysisService = Depends(get_analysis_service),
):
    return _run_analysis(
        lambda: service.analyze(
            payload.question,
            payload.data,
            payload.data_type,
            payload.model,
            payload.temperature,
            payload.max_rows_to_show,
        ),
        "analyze",
    )


@router.post("/analyze-text")
def analyze_text_endpoint(
    payload: AnalyzeTextRequest,
    service: AnalysisService = Depends(get_analysis_service),
):
    return _run_analysis(
        lambda: service.analyze_text(
            payload.text, payload.analysis_type, payload.model, payload.temperature
        ),
        "analyze-text",
    )


@router.post("/analyze-batch")
def analyze_batch_endpoint(
    payload: BatchRequest,
    service: AnalysisService = Depends(get_analysis_service),
):
    return _run_analysis(
        lambda: service.analyze_batch(payload.requests), "analyze-batch"
    )


app.include_router(router)
# Same routes under /api for the web client
app.include_router(router, prefix="/api")


def main() -> None:
    """Run the API with uvicorn."""
    config = get_config()
    uvicorn.run(
        "dealer_query.api.app:app",
        host="0.0.0.0",
        port=config.api_port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
