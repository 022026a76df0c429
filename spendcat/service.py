"""Entry points the outer layers (CLI, HTTP handlers, UI) call into.

``CategorizationService`` wires the validator, progress store, category
registry and suggestion engine together. It adds no state of its own; every
call reads the current snapshot from the store, and every write goes through
the store's per-file lock. Inference never runs while a store lock is held:
suggestions are computed first and written back afterwards with
:meth:`~spendcat.progress.ProgressStore.apply_bulk`.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import NamedTuple

from .analytics import summarize
from .batching import chunked, run_batches
from .config import Settings
from .errors import NotFoundError
from .inference import OpenAIChatBackend
from .logging_setup import get_logger
from .models import (
    AnalyticsSummary,
    BatchSuggestion,
    BulkResult,
    FileProgress,
    HistoricalExample,
    Suggestion,
    TransactionRecord,
    ValidationReport,
)
from .progress import MergePolicy, ProgressStore
from .registry import CategoryRegistry
from .suggest import SuggestionEngine, TraceObserver, log_trace_event
from .validation import validate

_logger = get_logger("spendcat.service")


class IngestResult(NamedTuple):
    report: ValidationReport
    # ``None`` when the report is invalid; nothing was stored in that case.
    progress: FileProgress | None


class CategorizationService:
    def __init__(
        self,
        store: ProgressStore,
        registry: CategoryRegistry,
        engine: SuggestionEngine,
        *,
        concurrency: int = 1,
    ) -> None:
        self.store = store
        self.registry = registry
        self.engine = engine
        self.concurrency = concurrency

    @classmethod
    def from_settings(
        cls, settings: Settings, *, observer: TraceObserver | None = log_trace_event
    ) -> CategorizationService:
        """Build the default stack rooted at ``settings.data_dir``."""

        registry = CategoryRegistry(path=settings.data_dir / "categories.json")
        store = ProgressStore(registry, root=settings.data_dir)
        backend = OpenAIChatBackend(settings.base_url, settings.model, settings.api_key)
        engine = SuggestionEngine(
            backend,
            batch_size=settings.batch_size,
            history_limit=settings.history_limit,
            timeout=settings.timeout_sec,
            observer=observer,
        )
        return cls(store, registry, engine, concurrency=settings.concurrency)

    # ---- ingest / query ------------------------------------------------------

    def ingest(
        self,
        file_name: str,
        raw: bytes | str,
        format_hint: str | None = None,
        *,
        merge_policy: MergePolicy | None = None,
    ) -> IngestResult:
        """Validate ``raw`` and, when valid, (re)create the file's progress.

        Without ``format_hint`` the format is inferred from ``file_name``'s
        extension, then from the content.
        """

        report = validate(raw, format_hint=format_hint or file_name)
        if not report.valid:
            _logger.warning(
                "ingest:rejected file=%r rows=%d errors=%d",
                file_name,
                report.row_count,
                len(report.errors),
            )
            return IngestResult(report, None)
        progress = self.store.create_or_reset(
            file_name, report.accepted_rows, merge_policy=merge_policy
        )
        _logger.info(
            "ingest:stored file=%r rows=%d accepted=%d errors=%d",
            file_name,
            report.row_count,
            len(report.accepted_rows),
            len(report.errors),
        )
        return IngestResult(report, progress)

    def get_progress(self, file_name: str) -> FileProgress:
        return self.store.get(file_name)

    def summary(self, file_name: str) -> AnalyticsSummary:
        return summarize(self.store.get(file_name))

    def list_files(self) -> list[str]:
        return self.store.list_files()

    # ---- manual mutation -----------------------------------------------------

    def categorize_row(
        self, file_name: str, index: int, category: str | None
    ) -> TransactionRecord:
        """Set one row's category and return the updated row."""

        progress = self.store.update_row(file_name, index, category)
        return progress.row(index)

    def categorize_bulk(
        self, file_name: str, indices: Iterable[int], category: str | None
    ) -> list[BulkResult]:
        """Apply one shared category to many rows.

        An unregistered ``category`` raises
        :class:`~spendcat.errors.UnknownCategoryError` before anything is
        written; index problems are reported per entry.
        """

        label = self.registry.require(category) if category is not None else None
        return self.store.apply_bulk(file_name, dict.fromkeys(indices, label))

    def add_category(self, label: str) -> str:
        return self.registry.confirm_add(label)

    def categories(self) -> list[str]:
        return self.registry.labels()

    def reset(self, file_name: str) -> None:
        self.store.reset(file_name)

    # ---- suggestions ---------------------------------------------------------

    def _rows(self, progress: FileProgress, indices: Iterable[int]) -> list[TransactionRecord]:
        out: list[TransactionRecord] = []
        for i in dict.fromkeys(indices):
            if not 0 <= i < len(progress.rows):
                raise NotFoundError(
                    f"Row index {i} out of range for {progress.file_name!r} "
                    f"({len(progress.rows)} rows)"
                )
            out.append(progress.row(i))
        return out

    def _history(self) -> list[HistoricalExample]:
        return self.store.historical_examples(self.engine.history_limit)

    def suggest_row(self, file_name: str, index: int) -> Suggestion:
        """Propose a category for one row without writing it."""

        (tx,) = self._rows(self.store.get(file_name), [index])
        return self.engine.suggest(tx, self._history(), self.registry.labels())

    def suggest_rows(
        self, file_name: str, indices: Sequence[int], *, concurrency: int | None = None
    ) -> list[BatchSuggestion]:
        """Propose categories for many rows, one model call per batch, without writing."""

        rows = self._rows(self.store.get(file_name), indices)
        history = self._history()
        labels = self.registry.labels()
        batches = run_batches(
            list(chunked(rows, self.engine.batch_size)),
            lambda batch: self.engine.suggest_batch(batch, history, labels),
            concurrency=concurrency or self.concurrency,
        )
        return [s for batch in batches for s in batch]

    def auto_categorize(
        self,
        file_name: str,
        indices: Sequence[int] | None = None,
        *,
        concurrency: int | None = None,
    ) -> list[BulkResult]:
        """Suggest and store categories for ``indices`` (default: all uncategorized rows).

        Each batch is written with ``apply_bulk`` as soon as its suggestions
        arrive. The first failing batch raises its error; batches already
        written stay written. A row that changed while its batch was with the
        model is reported as failed and left as it is.
        """

        progress = self.store.get(file_name)
        targets = self._rows(
            progress, progress.uncategorized_indices() if indices is None else indices
        )
        if not targets:
            return []
        history = self._history()
        labels = self.registry.labels()

        def _run(batch: list[TransactionRecord]) -> list[BulkResult]:
            suggestions = self.engine.suggest_batch(batch, history, labels)
            # Rows edited or replaced while the model ran are not overwritten.
            return self.store.apply_bulk(
                file_name,
                {s.index: s.category for s in suggestions},
                expected={tx.index: tx for tx in batch},
            )

        results = run_batches(
            list(chunked(targets, self.engine.batch_size)),
            _run,
            concurrency=concurrency or self.concurrency,
        )
        flat = [r for batch in results for r in batch]
        _logger.info(
            "auto:done file=%r rows=%d applied=%d",
            file_name,
            len(flat),
            sum(1 for r in flat if r.ok),
        )
        return flat


__all__ = ["CategorizationService", "IngestResult"]
