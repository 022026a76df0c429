"""Exception taxonomy for the categorization core.

Malformed input files are not represented here: the validator recovers them
into :class:`spendcat.models.ValidationReport` diagnostics and never raises.
Everything below propagates to the caller as a distinct, identifiable type so
the boundary can choose between retrying, degrading to manual categorization,
or showing the message verbatim.
"""

from __future__ import annotations


class SpendcatError(Exception):
    """Base class for all errors raised by ``spendcat``."""


class NotFoundError(SpendcatError, LookupError):
    """Unknown file name or row index outside ``0..len(rows)-1``."""


class UnknownCategoryError(SpendcatError, ValueError):
    """A label that is not in the category registry."""

    def __init__(self, label: str) -> None:
        super().__init__(f"Unknown category: {label!r}")
        self.label = label


class CategoryExistsError(SpendcatError, ValueError):
    """``confirm_add`` of a label already present (case-insensitive)."""

    def __init__(self, label: str) -> None:
        super().__init__(f"Category already exists: {label!r}")
        self.label = label


class SuggestionError(SpendcatError):
    """Failure of a suggestion call; ``reason`` is a stable machine-readable key."""

    reason: str = "suggestion_failed"


class InferenceUnavailableError(SuggestionError):
    """The inference endpoint could not be reached or did not answer in time."""

    reason = "inference_unavailable"


class InvalidResponseError(SuggestionError, ValueError):
    """The model answered, but the answer is structurally invalid or off-registry."""

    reason = "invalid_llm_response"


__all__ = [
    "CategoryExistsError",
    "InferenceUnavailableError",
    "InvalidResponseError",
    "NotFoundError",
    "SpendcatError",
    "SuggestionError",
    "UnknownCategoryError",
]
