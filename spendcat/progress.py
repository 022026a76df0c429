"""Progress store: per-file transaction rows and their categorization state.

Concurrency model
-----------------
- Each file name has its own ``threading.Lock``; every mutation of that file
  (reset, single-row update, bulk apply, removal) holds it, so writers to one
  file are serialized while other files stay writable.
- A :class:`~spendcat.models.FileProgress` is immutable. Writers build a new
  snapshot, persist it, and only then swap the reference; readers take the
  current reference without locking and always see a complete snapshot.
- If persisting fails, the previous snapshot stays in place untouched.

Durability
----------
With ``root`` set, each file's progress is one JSON document under
``<root>/progress/<sha256(file_name)>.json`` (hashed so arbitrary upload names
cannot escape the directory), rewritten atomically on every commit. Without a
root the store is memory-only, which is what the tests use.
"""

from __future__ import annotations

import hashlib
import json
import threading
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import NotFoundError
from .jsonio import atomic_write_json, remove_if_exists
from .logging_setup import get_logger
from .models import BulkResult, FileProgress, HistoricalExample, TransactionRecord
from .registry import CategoryRegistry

SCHEMA_VERSION: int = 1

type MergePolicy = Callable[
    [FileProgress, Sequence[TransactionRecord]], Sequence[TransactionRecord]
]
"""``(previous, incoming) -> rows`` used by :meth:`ProgressStore.create_or_reset`."""

_logger = get_logger("spendcat.progress")


# ---------------------------------------------------------------------------
# On-disk document schema
# ---------------------------------------------------------------------------


class _RowDoc(BaseModel):
    model_config = ConfigDict(extra="forbid")

    index: int
    date: date
    amount: Decimal
    description: str
    category: str | None = None
    source_fields: dict[str, str] = {}


class _ProgressDoc(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: int
    file_name: str
    created_at: datetime
    last_modified_at: datetime
    rows: list[_RowDoc]


def _to_doc(progress: FileProgress) -> dict[str, object]:
    return {
        "schema_version": SCHEMA_VERSION,
        "file_name": progress.file_name,
        "created_at": progress.created_at.isoformat(),
        "last_modified_at": progress.last_modified_at.isoformat(),
        "rows": [
            {
                "index": r.index,
                "date": r.date.isoformat(),
                "amount": str(r.amount),
                "description": r.description,
                "category": r.category,
                "source_fields": dict(r.source_fields),
            }
            for r in progress.rows
        ],
    }


def _from_doc(doc: _ProgressDoc) -> FileProgress:
    return FileProgress(
        file_name=doc.file_name,
        rows=tuple(
            TransactionRecord(
                index=r.index,
                date=r.date,
                amount=r.amount,
                description=r.description,
                category=r.category,
                source_fields=dict(r.source_fields),
            )
            for r in doc.rows
        ),
        created_at=doc.created_at,
        last_modified_at=doc.last_modified_at,
    )


def _now() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Merge policies
# ---------------------------------------------------------------------------


def row_fingerprint(tx: TransactionRecord) -> str:
    """Stable SHA-256 over date, amount (2dp) and normalized description."""

    payload = {
        "date": tx.date.isoformat(),
        "amount": f"{tx.amount:.2f}",
        "description": " ".join(tx.description.split()).casefold(),
    }
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def carry_forward_categories(
    previous: FileProgress, incoming: Sequence[TransactionRecord]
) -> list[TransactionRecord]:
    """Re-apply previous labels to incoming rows with the same fingerprint.

    Duplicate fingerprints are matched in order, so two identical coffee
    purchases keep their respective labels. Incoming rows that already carry
    a category keep it.
    """

    queues: dict[str, list[str]] = {}
    for r in previous.rows:
        if r.category is not None:
            queues.setdefault(row_fingerprint(r), []).append(r.category)

    out: list[TransactionRecord] = []
    for r in incoming:
        q = queues.get(row_fingerprint(r))
        if r.category is None and q:
            out.append(r.with_category(q.pop(0)))
        else:
            out.append(r)
    return out


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ProgressStore:
    """Holds one :class:`FileProgress` per file name."""

    def __init__(self, registry: CategoryRegistry, *, root: Path | None = None) -> None:
        self._registry = registry
        self._dir = (root / "progress") if root is not None else None
        self._snapshots: dict[str, FileProgress] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        if self._dir is not None:
            self._load_all()

    # ---- persistence --------------------------------------------------------

    def _path_for(self, file_name: str) -> Path | None:
        if self._dir is None:
            return None
        digest = hashlib.sha256(file_name.encode("utf-8")).hexdigest()
        return self._dir / f"{digest}.json"

    def _load_all(self) -> None:
        assert self._dir is not None
        if not self._dir.exists():
            return
        for path in sorted(self._dir.glob("*.json")):
            try:
                doc = _ProgressDoc.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError, ValidationError):
                # Leave the document on disk for inspection; never overwrite it here.
                _logger.error("progress:load_failed path=%s", path, exc_info=True)
                continue
            if doc.schema_version != SCHEMA_VERSION:
                _logger.error(
                    "progress:schema_mismatch path=%s schema_version=%d",
                    path,
                    doc.schema_version,
                )
                continue
            self._snapshots[doc.file_name] = _from_doc(doc)
        _logger.info("progress:loaded files=%d dir=%s", len(self._snapshots), self._dir)

    def _commit(self, progress: FileProgress) -> FileProgress:
        """Persist then publish ``progress``. Caller holds the file's lock."""

        path = self._path_for(progress.file_name)
        if path is not None:
            atomic_write_json(path, _to_doc(progress))
        self._snapshots[progress.file_name] = progress
        return progress

    # ---- locking helpers ----------------------------------------------------

    def _lock_for(self, file_name: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(file_name)
            if lock is None:
                lock = threading.Lock()
                self._locks[file_name] = lock
            return lock

    def _checked_category(self, category: str | None) -> str | None:
        if category is None:
            return None
        return self._registry.require(category)

    # ---- reads --------------------------------------------------------------

    def get(self, file_name: str) -> FileProgress:
        snap = self._snapshots.get(file_name)
        if snap is None:
            raise NotFoundError(f"Unknown file: {file_name!r}")
        return snap

    def exists(self, file_name: str) -> bool:
        return file_name in self._snapshots

    def list_files(self) -> list[str]:
        return sorted(self._snapshots)

    def historical_examples(
        self, limit: int = 100, *, exclude_file: str | None = None
    ) -> list[HistoricalExample]:
        """Most recent categorized ``(description, category)`` pairs across files.

        Recency is the transaction date; ties go to the more recently
        modified file, then the higher row index. Pairs repeating an
        already-selected (case-folded description, category) are skipped so
        the budget is spent on distinct examples.
        """

        if limit <= 0:
            return []
        candidates: list[tuple[date, datetime, int, TransactionRecord]] = []
        for snap in list(self._snapshots.values()):
            if snap.file_name == exclude_file:
                continue
            for r in snap.rows:
                if r.category is not None:
                    candidates.append((r.date, snap.last_modified_at, r.index, r))
        candidates.sort(key=lambda c: (c[0], c[1], c[2]), reverse=True)

        out: list[HistoricalExample] = []
        seen: set[tuple[str, str]] = set()
        for _, _, _, r in candidates:
            assert r.category is not None
            key = (r.description.casefold(), r.category)
            if key in seen:
                continue
            seen.add(key)
            out.append(HistoricalExample(description=r.description, category=r.category))
            if len(out) >= limit:
                break
        return out

    # ---- writes -------------------------------------------------------------

    def create_or_reset(
        self,
        file_name: str,
        rows: Iterable[TransactionRecord],
        *,
        merge_policy: MergePolicy | None = None,
    ) -> FileProgress:
        """Create or replace the progress for ``file_name``.

        Without ``merge_policy`` any previous progress is discarded (reset).
        With one, the policy receives the previous snapshot and the incoming
        rows and returns the rows to store. Rows are re-indexed 0..n-1 in
        order either way.
        """

        if not file_name or not file_name.strip():
            raise ValueError("file_name must be a non-empty string")
        incoming = [r.with_index(i) for i, r in enumerate(rows)]

        with self._lock_for(file_name):
            previous = self._snapshots.get(file_name)
            if merge_policy is not None and previous is not None:
                incoming = [r.with_index(i) for i, r in enumerate(merge_policy(previous, incoming))]
            checked = tuple(r.with_category(self._checked_category(r.category)) for r in incoming)

            now = _now()
            created_at = previous.created_at if (merge_policy and previous) else now
            progress = self._commit(
                FileProgress(
                    file_name=file_name,
                    rows=checked,
                    created_at=created_at,
                    last_modified_at=now,
                )
            )

        _logger.info(
            "progress:%s file=%r rows=%d categorized=%d",
            "merged" if (merge_policy and previous) else "reset",
            file_name,
            len(checked),
            progress.categorized_count,
        )
        return progress

    def update_row(self, file_name: str, index: int, category: str | None) -> FileProgress:
        """Set (or clear, with ``None``) the category of one row.

        Raises :class:`~spendcat.errors.NotFoundError` for an unknown file or
        out-of-range index and :class:`~spendcat.errors.UnknownCategoryError`
        for an unregistered label; in both cases nothing is written.
        """

        with self._lock_for(file_name):
            snap = self.get(file_name)
            if not 0 <= index < len(snap.rows):
                raise NotFoundError(
                    f"Row index {index} out of range for {file_name!r} "
                    f"({len(snap.rows)} rows)"
                )
            label = self._checked_category(category)
            rows = list(snap.rows)
            rows[index] = rows[index].with_category(label)
            return self._commit(
                FileProgress(
                    file_name=file_name,
                    rows=tuple(rows),
                    created_at=snap.created_at,
                    last_modified_at=_now(),
                )
            )

    def apply_bulk(
        self,
        file_name: str,
        updates: Mapping[int, str | None],
        *,
        expected: Mapping[int, TransactionRecord] | None = None,
    ) -> list[BulkResult]:
        """Apply many ``index -> category`` updates in one commit.

        Each entry is checked independently and reported in input order; the
        entries that pass are committed together in a single snapshot swap,
        the ones that fail leave their rows untouched. An unknown file raises
        :class:`~spendcat.errors.NotFoundError`.

        With ``expected``, an entry is only applied while the stored row still
        equals the given record (compare-and-set); a row edited, reset or
        replaced in the meantime fails with ``"row changed"``.
        """

        with self._lock_for(file_name):
            snap = self.get(file_name)
            rows = list(snap.rows)
            results: list[BulkResult] = []
            for index, category in updates.items():
                if not 0 <= index < len(rows):
                    results.append(BulkResult(index, False, "index out of range"))
                    continue
                if expected is not None and rows[index] != expected.get(index):
                    results.append(BulkResult(index, False, "row changed"))
                    continue
                label = None
                if category is not None:
                    label = self._registry.resolve(category)
                    if label is None:
                        results.append(BulkResult(index, False, f"unknown category {category!r}"))
                        continue
                rows[index] = rows[index].with_category(label)
                results.append(BulkResult(index, True))

            applied = sum(1 for r in results if r.ok)
            if applied:
                self._commit(
                    FileProgress(
                        file_name=file_name,
                        rows=tuple(rows),
                        created_at=snap.created_at,
                        last_modified_at=_now(),
                    )
                )

        _logger.info(
            "progress:bulk file=%r requested=%d applied=%d failed=%d",
            file_name,
            len(results),
            applied,
            len(results) - applied,
        )
        return results

    def reset(self, file_name: str) -> None:
        """Remove all progress for ``file_name``."""

        with self._lock_for(file_name):
            if file_name not in self._snapshots:
                raise NotFoundError(f"Unknown file: {file_name!r}")
            path = self._path_for(file_name)
            if path is not None:
                remove_if_exists(path)
            del self._snapshots[file_name]
        _logger.info("progress:removed file=%r", file_name)


__all__ = [
    "MergePolicy",
    "ProgressStore",
    "carry_forward_categories",
    "row_fingerprint",
]
