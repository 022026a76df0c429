"""Test helpers to stub the OpenAI client used by ``spendcat.inference``.

The stub parses the user content to extract the embedded transactions JSON
array and answers through a ``respond`` callable, so tests describe the model
in terms of its inputs and outputs. ``respond`` may also raise (for example an
``openai.APIConnectionError``) to simulate transport failures.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import openai

BEGIN = "BEGIN_TRANSACTIONS_JSON\n"
END = "\nEND_TRANSACTIONS_JSON"


def extract_transactions(user_content: str) -> list[dict[str, Any]]:
    b = user_content.find(BEGIN)
    e = user_content.rfind(END)
    if b == -1 or e == -1 or e <= b:
        raise AssertionError("user content missing embedded transactions JSON block")
    return json.loads(user_content[b + len(BEGIN) : e])


def _request() -> httpx.Request:
    return httpx.Request("POST", "http://localhost:11434/v1/chat/completions")


def connection_error() -> openai.APIConnectionError:
    return openai.APIConnectionError(message="Connection refused", request=_request())


def timeout_error() -> openai.APITimeoutError:
    return openai.APITimeoutError(request=_request())


def response_validation_error() -> openai.APIResponseValidationError:
    return openai.APIResponseValidationError(
        response=httpx.Response(200, request=_request()), body=None
    )


class _Message:
    def __init__(self, content: str | None) -> None:
        self.content = content


class _Choice:
    def __init__(self, content: str | None) -> None:
        self.message = _Message(content)


class _Completion:
    def __init__(self, content: str | None) -> None:
        self.choices = [_Choice(content)]


class OpenAIStub:
    """Minimal stand-in for ``openai.OpenAI`` exposing ``chat.completions.create``.

    Parameters
    ----------
    respond:
        Receives the list of transactions embedded in the request and returns
        the assistant text (a ``str``) or a JSON-serializable object.
    calls_out:
        Appended with each call's kwargs for lightweight assertions.
    """

    def __init__(
        self,
        respond: Callable[[list[dict[str, Any]]], Any],
        calls_out: list[dict[str, Any]] | None = None,
    ) -> None:
        self._respond = respond
        self.calls = calls_out if calls_out is not None else []
        self.init_kwargs: dict[str, Any] = {}

        class _Completions:
            def __init__(self, outer: OpenAIStub) -> None:
                self._outer = outer

            def create(self, **kwargs: Any) -> _Completion:
                self._outer.calls.append(kwargs)
                user = next(m["content"] for m in kwargs["messages"] if m["role"] == "user")
                out = self._outer._respond(extract_transactions(user))
                return _Completion(out if isinstance(out, str) else json.dumps(out))

        class _Chat:
            def __init__(self, outer: OpenAIStub) -> None:
                self.completions = _Completions(outer)

        self.chat = _Chat(self)

    def factory(self) -> Callable[..., OpenAIStub]:
        """Return a callable usable in place of the ``OpenAI`` class."""

        def _make(**kwargs: Any) -> OpenAIStub:
            self.init_kwargs = kwargs
            return self

        return _make


def install(monkeypatch: Any, stub: OpenAIStub) -> OpenAIStub:
    """Patch ``spendcat.inference.OpenAI`` so new backends talk to ``stub``."""

    import spendcat.inference as inference_mod

    monkeypatch.setattr(inference_mod, "OpenAI", stub.factory())
    return stub


def batch_answer(category: str | Callable[[dict[str, Any]], str]) -> Callable[..., Any]:
    """``respond`` callable answering every transaction in a batch."""

    def _respond(items: list[dict[str, Any]]) -> dict[str, Any]:
        pick = category if callable(category) else (lambda _item: category)
        return {"results": [{"idx": it["idx"], "category": pick(it)} for it in items]}

    return _respond
