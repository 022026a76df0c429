"""Suggestion engine: category proposals for one transaction or a small batch.

Each call makes exactly one inference request (plus at most one retry when
the transport times out), validates the whole answer, and either returns a
complete result or raises. There is no partial success and no fallback label:
an answer that names a category outside the supplied set, skips or repeats an
index, or is not JSON fails the call with
:class:`~spendcat.errors.InvalidResponseError`. Transport failures raise
:class:`~spendcat.errors.InferenceUnavailableError`.

Every invocation, successful or not, produces one
:class:`~spendcat.models.TraceEvent` for the optional observer.
"""

from __future__ import annotations

import json
import re
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    StrictInt,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from . import prompting
from .config import DEFAULT_BATCH_SIZE, DEFAULT_HISTORY_LIMIT, DEFAULT_TIMEOUT_SEC, MAX_BATCH_SIZE
from .errors import InferenceUnavailableError, InvalidResponseError, SuggestionError
from .inference import InferenceBackend, InferenceTimeout
from .logging_setup import get_logger
from .models import BatchSuggestion, HistoricalExample, Suggestion, TraceEvent, TransactionRecord

_logger = get_logger("spendcat.suggest")

type TraceObserver = Callable[[TraceEvent], None]

T = TypeVar("T")

_MAX_ATTEMPTS = 2
_FENCE_RE = re.compile(r"^```[A-Za-z0-9_-]*\s*\n?(.*?)\n?\s*```$", re.DOTALL)


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def _resolve_label(v: str, info: ValidationInfo) -> str:
    allowed: Mapping[str, str] = info.context["allowed"] if info.context else {}
    found = allowed.get(v.strip().casefold())
    if found is None:
        raise ValueError(f"category not in allow-list: {v!r}")
    return found


class _SingleBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    category: str
    confidence: float

    @field_validator("category")
    @classmethod
    def _category_in_allowlist(cls, v: str, info: ValidationInfo) -> str:
        return _resolve_label(v, info)

    @field_validator("confidence")
    @classmethod
    def _confidence_in_range(cls, v: float) -> float:
        if 0.0 <= v <= 1.0:
            return v
        raise ValueError("confidence must be in [0,1]")


class _BatchItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    idx: StrictInt
    category: str

    @field_validator("category")
    @classmethod
    def _category_in_allowlist(cls, v: str, info: ValidationInfo) -> str:
        return _resolve_label(v, info)


class _BatchBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    results: list[_BatchItem]


def decode_json_object(text: str) -> dict[str, Any]:
    """Decode the model's text into a JSON object, tolerating a Markdown fence."""

    s = text.strip()
    m = _FENCE_RE.match(s)
    if m:
        s = m.group(1).strip()
    if not s:
        raise InvalidResponseError("Invalid model response: empty body")
    try:
        body = json.loads(s)
    except json.JSONDecodeError as e:
        raise InvalidResponseError(f"Invalid model response: not JSON ({e.msg})") from e
    if not isinstance(body, dict):
        raise InvalidResponseError("Invalid model response: expected a JSON object at top level")
    return body


def parse_single(text: str, categories: Iterable[str]) -> Suggestion:
    body = decode_json_object(text)
    try:
        parsed = _SingleBody.model_validate(body, context={"allowed": _allow_map(categories)})
    except ValidationError as e:
        raise InvalidResponseError(f"Invalid model response: {_first_error(e)}") from e
    return Suggestion(category=parsed.category, confidence=parsed.confidence)


def parse_batch(text: str, *, num_items: int, categories: Iterable[str]) -> list[str]:
    """Return categories aligned by request position (``idx``).

    The result list must have exactly ``num_items`` entries with every ``idx``
    in ``0..num_items-1`` exactly once.
    """

    body = decode_json_object(text)
    try:
        parsed = _BatchBody.model_validate(body, context={"allowed": _allow_map(categories)})
    except ValidationError as e:
        raise InvalidResponseError(f"Invalid model response: {_first_error(e)}") from e

    if len(parsed.results) != num_items:
        raise InvalidResponseError(
            f"Invalid model response: expected {num_items} results, got {len(parsed.results)}"
        )
    by_idx: list[str | None] = [None] * num_items
    for item in parsed.results:
        if not 0 <= item.idx < num_items:
            raise InvalidResponseError(f"Invalid model response: 'idx' out of range: {item.idx}")
        if by_idx[item.idx] is not None:
            raise InvalidResponseError(f"Invalid model response: duplicate idx {item.idx}")
        by_idx[item.idx] = item.category
    return [c for c in by_idx if c is not None]


def _allow_map(categories: Iterable[str]) -> dict[str, str]:
    return {c.casefold(): c for c in categories}


def _first_error(e: ValidationError) -> str:
    err = e.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err.get('msg')}" if loc else str(err.get("msg"))


# ---------------------------------------------------------------------------
# Observers
# ---------------------------------------------------------------------------


def log_trace_event(event: TraceEvent) -> None:
    """Observer that writes each trace event as one structured log line."""

    _logger.info(
        (
            "suggest:trace operation=%s model=%s transactions=%d history=%d categories=%d "
            "latency_ms=%.2f attempts=%d outcome=%s"
        ),
        event.operation,
        event.model,
        event.transactions,
        event.history,
        event.categories,
        event.latency_ms,
        event.attempts,
        event.outcome,
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class SuggestionEngine:
    def __init__(
        self,
        backend: InferenceBackend,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        observer: TraceObserver | None = None,
    ) -> None:
        if not 1 <= batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")
        if history_limit < 0:
            raise ValueError("history_limit must be >= 0")
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._backend = backend
        self.batch_size = batch_size
        self.history_limit = history_limit
        self.timeout = timeout
        self._observer = observer

    # ---- public API ---------------------------------------------------------

    def suggest(
        self,
        transaction: TransactionRecord,
        history: Sequence[HistoricalExample],
        categories: Iterable[str],
        timeout: float | None = None,
    ) -> Suggestion:
        labels = list(categories)
        examples = list(history)[: self.history_limit]
        return self._invoke(
            "suggest",
            [transaction],
            examples,
            labels,
            system=prompting.build_system_instructions(batch=False),
            user=prompting.build_user_content([transaction], examples, labels, batch=False),
            response_format=prompting.build_single_response_format(labels),
            timeout=timeout,
            parse=lambda text: parse_single(text, labels),
        )

    def suggest_batch(
        self,
        transactions: Sequence[TransactionRecord],
        history: Sequence[HistoricalExample],
        categories: Iterable[str],
        timeout: float | None = None,
    ) -> list[BatchSuggestion]:
        """Suggest categories for up to ``batch_size`` transactions in one call.

        Results are aligned to input order and carry each transaction's file
        ``index``. An empty input returns ``[]`` without contacting the model.
        """

        txs = list(transactions)
        if len(txs) > self.batch_size:
            raise ValueError(
                f"batch of {len(txs)} transactions exceeds batch_size={self.batch_size}"
            )
        if not txs:
            return []
        labels = list(categories)
        examples = list(history)[: self.history_limit]

        def _parse(text: str) -> list[BatchSuggestion]:
            cats = parse_batch(text, num_items=len(txs), categories=labels)
            return [BatchSuggestion(index=tx.index, category=c) for tx, c in zip(txs, cats)]

        return self._invoke(
            "suggest_batch",
            txs,
            examples,
            labels,
            system=prompting.build_system_instructions(batch=True),
            user=prompting.build_user_content(txs, examples, labels, batch=True),
            response_format=prompting.build_batch_response_format(labels),
            timeout=timeout,
            parse=_parse,
        )

    # ---- internals ----------------------------------------------------------

    def _invoke(
        self,
        operation: str,
        transactions: Sequence[TransactionRecord],
        history: Sequence[HistoricalExample],
        categories: Sequence[str],
        *,
        system: str,
        user: str,
        response_format: Mapping[str, Any],
        timeout: float | None,
        parse: Callable[[str], T],
    ) -> T:
        budget = timeout if timeout is not None else self.timeout
        t0 = time.perf_counter()
        attempts = 0

        def _trace(outcome: str, detail: str | None = None) -> None:
            self._emit(
                TraceEvent(
                    operation=operation,
                    model=getattr(self._backend, "model", None),
                    transactions=len(transactions),
                    history=len(history),
                    categories=len(categories),
                    latency_ms=(time.perf_counter() - t0) * 1000.0,
                    attempts=attempts,
                    outcome=outcome,
                    detail=detail,
                )
            )

        try:
            while True:
                attempts += 1
                try:
                    text = self._backend.complete(
                        system=system, user=user, response_format=response_format, timeout=budget
                    )
                    break
                except InferenceTimeout as e:
                    if attempts >= _MAX_ATTEMPTS:
                        raise InferenceUnavailableError(
                            f"Inference timed out after {attempts} attempts ({budget}s each)"
                        ) from e
                    _logger.warning(
                        "suggest:retry operation=%s attempt=%d timeout=%.1f",
                        operation,
                        attempts,
                        budget,
                    )
            result = parse(text)
        except SuggestionError as e:
            _logger.error(
                "suggest:failed operation=%s transactions=%d attempts=%d reason=%s error=%s",
                operation,
                len(transactions),
                attempts,
                e.reason,
                e,
            )
            _trace(e.reason, str(e))
            raise
        except Exception as e:
            # Unexpected backend errors surface as an unavailable backend.
            _logger.exception(
                "suggest:backend_error operation=%s transactions=%d attempts=%d",
                operation,
                len(transactions),
                attempts,
            )
            _trace(InferenceUnavailableError.reason, repr(e))
            raise InferenceUnavailableError(f"Inference backend failed: {e!r}") from e

        _trace("ok")
        return result

    def _emit(self, event: TraceEvent) -> None:
        if self._observer is None:
            return
        try:
            self._observer(event)
        except Exception:  # noqa: BLE001
            _logger.warning("suggest:observer_failed operation=%s", event.operation, exc_info=True)


__all__ = [
    "SuggestionEngine",
    "TraceObserver",
    "decode_json_object",
    "log_trace_event",
    "parse_batch",
    "parse_single",
]
