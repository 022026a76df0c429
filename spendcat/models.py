"""Data models for the categorization core.

Records are frozen dataclasses: a :class:`FileProgress` snapshot can be handed
to any number of readers while a writer builds its replacement. Amounts are
``Decimal`` and dates are ``datetime.date`` once a row has been accepted by the
validator; raw cell text only survives in ``source_fields``.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import NamedTuple

# ---------------------------------------------------------------------------
# Transactions and per-file progress
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TransactionRecord:
    """A single normalized transaction row.

    Attributes
    ----------
    index:
        0-based ordinal within its file; contiguous and stable across edits.
    date:
        Calendar date parsed from the source row.
    amount:
        Signed amount (negative = money out).
    description:
        Trimmed, non-empty free text from the source row.
    category:
        A registry label, or ``None`` while uncategorized.
    source_fields:
        Columns of the original row that did not map to a canonical field,
        kept verbatim for traceability.
    """

    index: int
    date: date
    amount: Decimal
    description: str
    category: str | None = None
    source_fields: Mapping[str, str] = field(default_factory=dict)

    def with_category(self, category: str | None) -> TransactionRecord:
        return dataclasses.replace(self, category=category)

    def with_index(self, index: int) -> TransactionRecord:
        return dataclasses.replace(self, index=index)


@dataclass(frozen=True, slots=True)
class FileProgress:
    """Categorization state for one uploaded file; the unit of durability."""

    file_name: str
    rows: tuple[TransactionRecord, ...]
    created_at: datetime
    last_modified_at: datetime

    def row(self, index: int) -> TransactionRecord:
        return self.rows[index]

    def uncategorized_indices(self) -> list[int]:
        return [r.index for r in self.rows if r.category is None]

    @property
    def categorized_count(self) -> int:
        return sum(1 for r in self.rows if r.category is not None)


class HistoricalExample(NamedTuple):
    """A confirmed ``(description, category)`` pair used as prompt guidance."""

    description: str
    category: str


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ValidationReport:
    """Structural outcome of validating one input file.

    ``row_count`` counts non-blank data rows, so
    ``len(accepted_rows) == row_count - <rows with fatal errors>``. Blank rows
    are reported in ``errors`` as warnings and tallied in ``blank_rows``.
    """

    valid: bool
    errors: tuple[str, ...]
    row_count: int
    accepted_rows: tuple[TransactionRecord, ...]
    blank_rows: int = 0
    source_format: str | None = None


# ---------------------------------------------------------------------------
# Mutations and suggestions
# ---------------------------------------------------------------------------


class BulkResult(NamedTuple):
    """Per-index outcome of :meth:`spendcat.progress.ProgressStore.apply_bulk`."""

    index: int
    ok: bool
    error: str | None = None


@dataclass(frozen=True, slots=True)
class Suggestion:
    category: str
    confidence: float


@dataclass(frozen=True, slots=True)
class BatchSuggestion:
    """A proposal for the row whose file ``index`` is given."""

    index: int
    category: str


@dataclass(frozen=True, slots=True)
class TraceEvent:
    """One record per inference invocation, handed to the injected observer.

    ``outcome`` is ``"ok"`` or the failing error's ``reason``.
    """

    operation: str
    model: str | None
    transactions: int
    history: int
    categories: int
    latency_ms: float
    attempts: int
    outcome: str
    detail: str | None = None


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CategoryTotals:
    count: int
    total_amount: Decimal


@dataclass(frozen=True, slots=True)
class AnalyticsSummary:
    per_category: dict[str, CategoryTotals]
    uncategorized_count: int
    total_rows: int


__all__ = [
    "AnalyticsSummary",
    "BatchSuggestion",
    "BulkResult",
    "CategoryTotals",
    "FileProgress",
    "HistoricalExample",
    "Suggestion",
    "TraceEvent",
    "TransactionRecord",
    "ValidationReport",
]
