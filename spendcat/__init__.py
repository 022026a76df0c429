"""spendcat: resumable, AI-assisted categorization of bank and card transactions.

Public API surface:

- ``validate(raw, schema=None, *, format_hint=None) -> ValidationReport``
- ``ProgressStore``, ``CategoryRegistry``, ``SuggestionEngine`` and the
  ``CategorizationService`` that wires them together.
- ``summarize(progress) -> AnalyticsSummary``
"""

from .analytics import monthly_totals, render_summary, summarize
from .config import Settings, load_settings
from .errors import (
    CategoryExistsError,
    InferenceUnavailableError,
    InvalidResponseError,
    NotFoundError,
    SpendcatError,
    SuggestionError,
    UnknownCategoryError,
)
from .inference import InferenceBackend, InferenceTimeout, OpenAIChatBackend
from .models import (
    AnalyticsSummary,
    BatchSuggestion,
    BulkResult,
    CategoryTotals,
    FileProgress,
    HistoricalExample,
    Suggestion,
    TraceEvent,
    TransactionRecord,
    ValidationReport,
)
from .parsing import ColumnMap
from .progress import ProgressStore, carry_forward_categories
from .registry import DEFAULT_CATEGORIES, CategoryRegistry
from .service import CategorizationService, IngestResult
from .suggest import SuggestionEngine, log_trace_event
from .validation import validate

__all__ = [
    "DEFAULT_CATEGORIES",
    "AnalyticsSummary",
    "BatchSuggestion",
    "BulkResult",
    "CategorizationService",
    "CategoryExistsError",
    "CategoryRegistry",
    "CategoryTotals",
    "ColumnMap",
    "FileProgress",
    "HistoricalExample",
    "InferenceBackend",
    "InferenceTimeout",
    "InferenceUnavailableError",
    "IngestResult",
    "InvalidResponseError",
    "NotFoundError",
    "OpenAIChatBackend",
    "ProgressStore",
    "Settings",
    "SpendcatError",
    "Suggestion",
    "SuggestionEngine",
    "SuggestionError",
    "TraceEvent",
    "TransactionRecord",
    "UnknownCategoryError",
    "ValidationReport",
    "carry_forward_categories",
    "load_settings",
    "log_trace_event",
    "monthly_totals",
    "render_summary",
    "summarize",
    "validate",
]
