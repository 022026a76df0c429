"""Category registry: the closed set of labels rows may carry.

Labels are normalized (trimmed, single-spaced, each word capitalized) and
unique case-insensitively. The set only grows, through an explicit
``propose`` → ``confirm_add`` step; nothing in the package invents a label on
its own. When constructed with a ``path`` the registry is durable: it loads
from and atomically rewrites a small JSON document.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import CategoryExistsError, UnknownCategoryError
from .jsonio import atomic_write_json
from .logging_setup import get_logger

DEFAULT_CATEGORIES: tuple[str, ...] = (
    "Entertainment",
    "Food",
    "Groceries",
    "Health",
    "Housing",
    "Income",
    "Other",
    "Shopping",
    "Subscriptions",
    "Transfers",
    "Transport",
    "Travel",
    "Utilities",
)

SCHEMA_VERSION: int = 1

_ALLOWED_RE = re.compile(r"^[A-Za-z0-9 &\-/',.()]+$")

_logger = get_logger("spendcat.registry")


# ---------------------------
# Name normalization/validation
# ---------------------------


def normalize_label(label: str) -> str:
    """Trim, collapse whitespace and upper-case the first letter of each word.

    The rest of each word is preserved so acronyms survive (``"ATM fees"`` →
    ``"ATM Fees"``).
    """

    return " ".join(w[:1].upper() + w[1:] for w in label.split())


@dataclass(frozen=True, slots=True)
class LabelValidation:
    ok: bool
    reason: str | None = None


def validate_label(label: str, *, min_len: int = 1, max_len: int = 64) -> LabelValidation:
    n = normalize_label(label)
    if len(n) < min_len:
        return LabelValidation(False, "Category name cannot be empty")
    if len(n) > max_len:
        return LabelValidation(False, f"Category name must be at most {max_len} characters")
    if not _ALLOWED_RE.match(n):
        return LabelValidation(
            False, "Only letters, numbers, spaces, and & - / ' , . ( ) are allowed"
        )
    return LabelValidation(True, None)


class _RegistryFile(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid")

    schema_version: int
    labels: list[str]


class CategoryRegistry:
    """Thread-safe, grow-only set of category labels."""

    def __init__(
        self,
        labels: Iterable[str] | None = None,
        *,
        path: Path | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._path = path
        self._by_key: dict[str, str] = {}

        loaded = self._load() if path is not None else None
        seed = labels if labels is not None else DEFAULT_CATEGORIES
        for label in loaded if loaded is not None else seed:
            n = self.propose(label)
            self._by_key.setdefault(n.casefold(), n)

    # ---- persistence --------------------------------------------------------

    def _load(self) -> list[str] | None:
        assert self._path is not None
        if not self._path.exists():
            return None
        try:
            parsed = _RegistryFile.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            raise ValueError(f"Unreadable category registry at {self._path}: {exc}") from exc
        if parsed.schema_version != SCHEMA_VERSION:
            raise ValueError(
                f"Unsupported category registry schema_version {parsed.schema_version}"
            )
        return parsed.labels

    def _save(self, by_key: dict[str, str]) -> None:
        if self._path is None:
            return
        atomic_write_json(
            self._path,
            {"schema_version": SCHEMA_VERSION, "labels": sorted(by_key.values())},
        )

    # ---- queries ------------------------------------------------------------

    def list(self) -> frozenset[str]:
        return frozenset(self._by_key.values())

    def labels(self) -> list[str]:
        """Labels in a stable (case-insensitive alphabetical) order."""

        return sorted(self._by_key.values(), key=str.casefold)

    def resolve(self, label: str) -> str | None:
        """Return the registered spelling of ``label`` (case-insensitive) or ``None``."""

        return self._by_key.get(normalize_label(label).casefold())

    def require(self, label: str) -> str:
        found = self.resolve(label)
        if found is None:
            raise UnknownCategoryError(label)
        return found

    def __contains__(self, label: object) -> bool:
        return isinstance(label, str) and self.resolve(label) is not None

    def __iter__(self) -> Iterator[str]:
        return iter(self.labels())

    def __len__(self) -> int:
        return len(self._by_key)

    # ---- mutation -----------------------------------------------------------

    def propose(self, label: str) -> str:
        """Return the normalized form of ``label`` without registering it.

        Raises ``ValueError`` when the label is empty or contains characters
        outside the allowed set.
        """

        v = validate_label(label)
        if not v.ok:
            raise ValueError(f"Invalid category name {label!r}: {v.reason}")
        return normalize_label(label)

    def confirm_add(self, label: str) -> str:
        """Register ``label`` and return its normalized form.

        Raises :class:`~spendcat.errors.CategoryExistsError` when an equal
        label (case-insensitive) is already registered.
        """

        n = self.propose(label)
        key = n.casefold()
        with self._lock:
            if key in self._by_key:
                raise CategoryExistsError(self._by_key[key])
            updated = {**self._by_key, key: n}
            self._save(updated)
            self._by_key = updated
        _logger.info("registry:added label=%r total=%d", n, len(updated))
        return n


__all__ = [
    "DEFAULT_CATEGORIES",
    "CategoryRegistry",
    "LabelValidation",
    "normalize_label",
    "validate_label",
]
