"""Prompt construction for transaction categorization.

This module builds:
- A deterministic JSON serialization of target transactions and historical
  examples with a fixed field order.
- The system instructions and user content for single and batch calls.
- The strict ``response_format`` (JSON Schema) objects for the Chat
  Completions API, with the category enum set to the registry labels.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from typing import Any

from .models import HistoricalExample, TransactionRecord

TX_FIELD_ORDER: tuple[str, ...] = ("idx", "date", "amount", "description")


def _sorted_labels(categories: Iterable[str]) -> list[str]:
    labels = sorted(dict.fromkeys(c for c in categories if c), key=str.casefold)
    if not labels:
        raise ValueError("categories must contain at least one label")
    return labels


def serialize_transactions(transactions: Sequence[TransactionRecord]) -> str:
    """Serialize targets to a JSON array; ``idx`` is the position in the request."""

    arr: list[dict[str, Any]] = []
    for pos, tx in enumerate(transactions):
        item = {
            "idx": pos,
            "date": tx.date.isoformat(),
            "amount": str(tx.amount),
            "description": tx.description,
        }
        arr.append({key: item[key] for key in TX_FIELD_ORDER})
    return json.dumps(arr, ensure_ascii=False)


def serialize_examples(history: Sequence[HistoricalExample]) -> str:
    return json.dumps(
        [{"description": h.description, "category": h.category} for h in history],
        ensure_ascii=False,
    )


def build_system_instructions(*, batch: bool) -> str:
    target = "each transaction" if batch else "the transaction"
    return (
        "You are an agent that categorizes personal bank and card transactions. "
        f"Choose exactly one category for {target} from the provided list. "
        "Never invent categories. Use the examples of earlier decisions as guidance. "
        "Output JSON only that conforms to the specified schema."
    )


def build_user_content(
    transactions: Sequence[TransactionRecord],
    history: Sequence[HistoricalExample],
    categories: Iterable[str],
    *,
    batch: bool,
) -> str:
    labels = _sorted_labels(categories)
    lines: list[str] = ["Categories (choose only from this list):"]
    lines.extend(f"- {label}" for label in labels)
    lines.append("")

    if history:
        lines.append("Examples of previously confirmed categorizations:")
        lines.append("BEGIN_EXAMPLES_JSON")
        lines.append(serialize_examples(history))
        lines.append("END_EXAMPLES_JSON")
        lines.append("")

    if batch:
        lines.append(
            "Return one result per transaction in 'results', echoing its 'idx' "
            "exactly once."
        )
    else:
        lines.append(
            "Return the chosen 'category' and a 'confidence' between 0 and 1."
        )
    lines.append("BEGIN_TRANSACTIONS_JSON")
    lines.append(serialize_transactions(transactions))
    lines.append("END_TRANSACTIONS_JSON")
    return "\n".join(lines)


def build_single_response_format(categories: Iterable[str]) -> dict[str, Any]:
    """Return the strict JSON Schema response_format for one transaction.

    Schema shape::

        {"category": <enum>, "confidence": number in [0, 1]}
    """

    labels = _sorted_labels(categories)
    return {
        "type": "json_schema",
        "json_schema": {
            "name": "transaction_category",
            "schema": {
                "type": "object",
                "properties": {
                    "category": {"type": "string", "enum": labels},
                    "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                },
                "required": ["category", "confidence"],
                "additionalProperties": False,
            },
            "strict": True,
        },
    }


def build_batch_response_format(categories: Iterable[str]) -> dict[str, Any]:
    """Return the strict JSON Schema response_format for a batch.

    Schema shape::

        {"results": [{"idx": integer, "category": <enum>}, ...]}
    """

    labels = _sorted_labels(categories)
    return {
        "type": "json_schema",
        "json_schema": {
            "name": "transaction_categories",
            "schema": {
                "type": "object",
                "properties": {
                    "results": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "idx": {"type": "integer"},
                                "category": {"type": "string", "enum": labels},
                            },
                            "required": ["idx", "category"],
                            "additionalProperties": False,
                        },
                    }
                },
                "required": ["results"],
                "additionalProperties": False,
            },
            "strict": True,
        },
    }


__all__ = [
    "build_batch_response_format",
    "build_single_response_format",
    "build_system_instructions",
    "build_user_content",
    "serialize_examples",
    "serialize_transactions",
]
