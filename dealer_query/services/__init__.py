"""Service layer abstractions for the dealer query pipeline."""

from .analysis_service import AnalysisService
from .query_service import QueryService, QueryServiceResult

__all__ = ["AnalysisService", "QueryService", "QueryServiceResult"]
