import json
from datetime import date
from decimal import Decimal
from typing import Any

import pytest

from spendcat.errors import InferenceUnavailableError, InvalidResponseError
from spendcat.inference import OpenAIChatBackend
from spendcat.models import HistoricalExample, TraceEvent, TransactionRecord
from spendcat.suggest import SuggestionEngine, parse_batch
from tests.helpers.openai_stub import (
    OpenAIStub,
    batch_answer,
    connection_error,
    install,
    response_validation_error,
    timeout_error,
)

CATEGORIES = ["Food", "Groceries", "Transport", "Other"]


def _txs(n: int) -> list[TransactionRecord]:
    return [
        TransactionRecord(
            index=10 + i,
            date=date(2024, 1, 1 + i),
            amount=Decimal("-5.00"),
            description=f"Shop {i}",
        )
        for i in range(n)
    ]


def _engine(
    monkeypatch: pytest.MonkeyPatch,
    respond: Any,
    *,
    events: list[TraceEvent] | None = None,
    **kwargs: Any,
) -> tuple[SuggestionEngine, OpenAIStub]:
    stub = install(monkeypatch, OpenAIStub(respond))
    backend = OpenAIChatBackend("http://localhost:11434/v1", "llama3.1")
    observer = events.append if events is not None else None
    return SuggestionEngine(backend, observer=observer, **kwargs), stub


def test_batch_happy_path_aligned_to_input(monkeypatch: pytest.MonkeyPatch):
    # Answer out of order to exercise alignment by idx.
    def respond(items):
        return {
            "results": [
                {"idx": it["idx"], "category": "Groceries" if it["idx"] % 2 else "food"}
                for it in reversed(items)
            ]
        }

    engine, stub = _engine(monkeypatch, respond)
    out = engine.suggest_batch(_txs(3), [], CATEGORIES)

    assert [(s.index, s.category) for s in out] == [(10, "Food"), (11, "Groceries"), (12, "Food")]
    assert len(stub.calls) == 1
    assert stub.init_kwargs["max_retries"] == 0
    fmt = stub.calls[0]["response_format"]
    enum = fmt["json_schema"]["schema"]["properties"]["results"]["items"]["properties"][
        "category"
    ]["enum"]
    assert enum == ["Food", "Groceries", "Other", "Transport"]


def test_batch_short_answer_is_invalid(monkeypatch: pytest.MonkeyPatch):
    def respond(items):
        return {"results": [{"idx": it["idx"], "category": "Food"} for it in items[:4]]}

    engine, _ = _engine(monkeypatch, respond)
    with pytest.raises(InvalidResponseError) as ei:
        engine.suggest_batch(_txs(5), [], CATEGORIES)
    assert ei.value.reason == "invalid_llm_response"


def test_batch_unknown_label_is_invalid_not_substituted(monkeypatch: pytest.MonkeyPatch):
    engine, _ = _engine(monkeypatch, batch_answer("Gadgets"))
    with pytest.raises(InvalidResponseError):
        engine.suggest_batch(_txs(2), [], CATEGORIES)


@pytest.mark.parametrize(
    "body",
    [
        {"results": [{"idx": 0, "category": "Food"}, {"idx": 0, "category": "Food"}]},
        {"results": [{"idx": 0, "category": "Food"}, {"idx": 2, "category": "Food"}]},
        {"results": [{"idx": "0", "category": "Food"}, {"idx": 1, "category": "Food"}]},
        {"items": []},
        [],
    ],
)
def test_parse_batch_structural_failures(body: Any):
    with pytest.raises(InvalidResponseError):
        parse_batch(json.dumps(body), num_items=2, categories=CATEGORIES)


def test_parse_batch_tolerates_code_fence():
    text = '```json\n{"results": [{"idx": 0, "category": "Other"}]}\n```'
    assert parse_batch(text, num_items=1, categories=CATEGORIES) == ["Other"]


def test_batch_over_limit_raises_before_calling(monkeypatch: pytest.MonkeyPatch):
    engine, stub = _engine(monkeypatch, batch_answer("Food"), batch_size=5)
    with pytest.raises(ValueError):
        engine.suggest_batch(_txs(6), [], CATEGORIES)
    assert stub.calls == []


def test_empty_batch_skips_model(monkeypatch: pytest.MonkeyPatch):
    engine, stub = _engine(monkeypatch, batch_answer("Food"))
    assert engine.suggest_batch([], [], CATEGORIES) == []
    assert stub.calls == []


def test_single_suggestion(monkeypatch: pytest.MonkeyPatch):
    engine, stub = _engine(monkeypatch, lambda items: {"category": "Transport", "confidence": 0.8})
    s = engine.suggest(_txs(1)[0], [HistoricalExample("Uber", "Transport")], CATEGORIES)
    assert (s.category, s.confidence) == ("Transport", 0.8)

    user = stub.calls[0]["messages"][1]["content"]
    assert "BEGIN_EXAMPLES_JSON" in user
    assert '"Uber"' in user


@pytest.mark.parametrize(
    "answer",
    ["not json", {"category": "Food", "confidence": 1.5}, {"category": "Gadgets", "confidence": 1}],
)
def test_single_invalid_answers(monkeypatch: pytest.MonkeyPatch, answer: Any):
    engine, _ = _engine(monkeypatch, lambda items: answer)
    with pytest.raises(InvalidResponseError):
        engine.suggest(_txs(1)[0], [], CATEGORIES)


def test_history_is_capped(monkeypatch: pytest.MonkeyPatch):
    engine, stub = _engine(monkeypatch, batch_answer("Food"), history_limit=2)
    history = [HistoricalExample(f"h{i}", "Food") for i in range(5)]
    engine.suggest_batch(_txs(1), history, CATEGORIES)
    user = stub.calls[0]["messages"][1]["content"]
    assert '"h1"' in user and '"h2"' not in user


def test_connection_refused_is_unavailable(monkeypatch: pytest.MonkeyPatch):
    def respond(items):
        raise connection_error()

    events: list[TraceEvent] = []
    engine, stub = _engine(monkeypatch, respond, events=events)
    with pytest.raises(InferenceUnavailableError) as ei:
        engine.suggest_batch(_txs(2), [], CATEGORIES)

    assert ei.value.reason == "inference_unavailable"
    assert len(stub.calls) == 1
    assert [e.outcome for e in events] == ["inference_unavailable"]


def test_timeout_retried_exactly_once(monkeypatch: pytest.MonkeyPatch):
    attempts: list[int] = []

    def respond(items):
        attempts.append(1)
        if len(attempts) == 1:
            raise timeout_error()
        return {"results": [{"idx": it["idx"], "category": "Food"} for it in items]}

    events: list[TraceEvent] = []
    engine, _ = _engine(monkeypatch, respond, events=events)
    out = engine.suggest_batch(_txs(2), [], CATEGORIES, timeout=1.0)

    assert [s.category for s in out] == ["Food", "Food"]
    assert len(attempts) == 2
    assert events[0].attempts == 2 and events[0].outcome == "ok"


def test_timeout_twice_is_unavailable(monkeypatch: pytest.MonkeyPatch):
    def respond(items):
        raise timeout_error()

    engine, stub = _engine(monkeypatch, respond)
    with pytest.raises(InferenceUnavailableError):
        engine.suggest_batch(_txs(1), [], CATEGORIES)
    assert len(stub.calls) == 2


def test_invalid_response_is_not_retried(monkeypatch: pytest.MonkeyPatch):
    engine, stub = _engine(monkeypatch, lambda items: "garbage")
    with pytest.raises(InvalidResponseError):
        engine.suggest_batch(_txs(1), [], CATEGORIES)
    assert len(stub.calls) == 1


def test_observer_failure_does_not_change_result(monkeypatch: pytest.MonkeyPatch):
    def observer(event: TraceEvent) -> None:
        raise RuntimeError("sink down")

    stub = install(monkeypatch, OpenAIStub(batch_answer("Food")))
    engine = SuggestionEngine(
        OpenAIChatBackend("http://localhost:11434/v1", "llama3.1"), observer=observer
    )
    out = engine.suggest_batch(_txs(2), [], CATEGORIES)
    assert [s.category for s in out] == ["Food", "Food"]
    assert len(stub.calls) == 1


def test_trace_event_summarizes_request(monkeypatch: pytest.MonkeyPatch):
    events: list[TraceEvent] = []
    engine, _ = _engine(monkeypatch, batch_answer("Food"), events=events)
    engine.suggest_batch(_txs(3), [HistoricalExample("x", "Food")], CATEGORIES)

    (event,) = events
    assert event.operation == "suggest_batch"
    assert event.model == "llama3.1"
    assert (event.transactions, event.history, event.categories) == (3, 1, 4)
    assert event.latency_ms >= 0


class _BrokenBackend:
    model = "broken"

    def complete(self, *, system, user, response_format, timeout):
        raise RuntimeError("backend bug")


def test_unexpected_backend_error_is_traced_as_unavailable():
    events: list[TraceEvent] = []
    engine = SuggestionEngine(_BrokenBackend(), observer=events.append)

    with pytest.raises(InferenceUnavailableError) as ei:
        engine.suggest_batch(_txs(2), [], CATEGORIES)

    assert isinstance(ei.value.__cause__, RuntimeError)
    assert [(e.outcome, e.model) for e in events] == [("inference_unavailable", "broken")]


def test_sdk_response_validation_error_is_unavailable(monkeypatch: pytest.MonkeyPatch):
    def respond(items):
        raise response_validation_error()

    engine, stub = _engine(monkeypatch, respond)
    with pytest.raises(InferenceUnavailableError):
        engine.suggest_batch(_txs(1), [], CATEGORIES)
    assert len(stub.calls) == 1
