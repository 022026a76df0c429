"""Inference transport: one chat completion against an OpenAI-compatible endpoint.

The default target is a local Ollama server (``/v1`` compatibility API), but
any server speaking the Chat Completions protocol works. The OpenAI SDK's own
retry loop is disabled (``max_retries=0``); the single retry on timeout lives
in :mod:`spendcat.suggest` so it is counted and traced there.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

import openai
from openai import OpenAI

from .errors import InferenceUnavailableError
from .logging_setup import get_logger

_logger = get_logger("spendcat.inference")


class InferenceTimeout(Exception):
    """Transport-level timeout; the only failure the engine retries."""


class InferenceBackend(Protocol):
    model: str | None

    def complete(
        self,
        *,
        system: str,
        user: str,
        response_format: Mapping[str, Any],
        timeout: float,
    ) -> str:
        """Return the raw assistant text for one request."""
        ...


def _create_client(base_url: str, api_key: str) -> OpenAI:
    return OpenAI(base_url=base_url, api_key=api_key, max_retries=0)


class OpenAIChatBackend:
    """:class:`InferenceBackend` built on ``openai.OpenAI().chat.completions``."""

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str = "local",
        *,
        temperature: float = 0.0,
    ) -> None:
        self.base_url = base_url
        self.model = model
        self._temperature = temperature
        self._client = _create_client(base_url, api_key)

    def complete(
        self,
        *,
        system: str,
        user: str,
        response_format: Mapping[str, Any],
        timeout: float,
    ) -> str:
        try:
            resp = self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                response_format=dict(response_format),
                temperature=self._temperature,
                timeout=timeout,
            )
        except openai.APITimeoutError as e:
            # Subclass of APIConnectionError; must be checked first.
            raise InferenceTimeout(f"no response from {self.base_url} within {timeout}s") from e
        except openai.APIConnectionError as e:
            _logger.warning("inference:unreachable base_url=%s error=%s", self.base_url, e)
            raise InferenceUnavailableError(
                f"Inference endpoint {self.base_url} is unreachable; is the server running?"
            ) from e
        except openai.APIStatusError as e:
            _logger.warning(
                "inference:status_error base_url=%s status=%s", self.base_url, e.status_code
            )
            raise InferenceUnavailableError(
                f"Inference endpoint {self.base_url} answered HTTP {e.status_code}"
            ) from e
        except openai.APIError as e:
            _logger.warning("inference:api_error base_url=%s error=%s", self.base_url, e)
            raise InferenceUnavailableError(
                f"Inference endpoint {self.base_url} failed: {e.message}"
            ) from e

        try:
            content = resp.choices[0].message.content
        except (AttributeError, IndexError):
            content = None
        # An empty answer is a malformed response, not a transport failure.
        return content or ""


__all__ = ["InferenceBackend", "InferenceTimeout", "OpenAIChatBackend"]
