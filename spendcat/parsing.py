"""Row parser: raw export bytes → header list + string rows.

Bank exports disagree on almost everything: delimiter, header names, whether
a preamble precedes the header, whether the file is delimited text at all or a
JSON list of objects. This module flattens those differences into a
:class:`ParsedTable` of ``dict[str, str]`` rows and resolves which columns
carry the canonical fields (date / amount / description, plus the optional
debit / credit / direction columns) through a fixed synonym table.

Cell-level normalizers (:func:`parse_date`, :func:`parse_amount`) live here as
well so the validator and any caller share one definition of "parseable".
"""

from __future__ import annotations

import csv
import json
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Any

# ---------------------------------------------------------------------------
# Column resolution
# ---------------------------------------------------------------------------

REQUIRED_FIELDS: tuple[str, ...] = ("date", "amount", "description")

# Canonical field -> synonyms, highest precedence first. Matching is done on
# normalized header text (see ``normalize_header``).
COLUMN_SYNONYMS: dict[str, tuple[str, ...]] = {
    "date": (
        "date",
        "transaction date",
        "trans date",
        "posting date",
        "posted date",
        "post date",
        "booking date",
        "value date",
        "datetime",
    ),
    "amount": (
        "amount",
        "transaction amount",
        "amount usd",
        "amt",
    ),
    "debit": (
        "debit",
        "debit amount",
        "debits",
        "withdrawal",
        "withdrawals",
        "withdrawal amount",
        "money out",
        "paid out",
        "outflow",
    ),
    "credit": (
        "credit",
        "credit amount",
        "credits",
        "deposit",
        "deposits",
        "deposit amount",
        "money in",
        "paid in",
        "inflow",
    ),
    "description": (
        "description",
        "transaction description",
        "desc",
        "details",
        "narrative",
        "particulars",
        "payee",
        "merchant",
        "memo",
        "name",
    ),
    "direction": (
        "dr cr",
        "cr dr",
        "debit credit",
        "direction",
        "transaction type",
        "type",
    ),
}

_NON_ALNUM_RE = re.compile(r"[^0-9a-z]+")

# Fields allowed to match by phrase containment in the second resolution pass;
# "direction" headers are too generic ("Card Type") to match loosely.
_PHRASE_MATCH_FIELDS: frozenset[str] = frozenset(
    {"date", "amount", "debit", "credit", "description"}
)


def normalize_header(header: str) -> str:
    """Case-fold and collapse punctuation/whitespace runs to single spaces."""

    return _NON_ALNUM_RE.sub(" ", header.casefold()).strip()


@dataclass(frozen=True, slots=True)
class ColumnMap:
    """Which source header feeds each canonical field (``None`` = absent).

    Callers that know their export format may construct one directly and pass
    it to :func:`spendcat.validation.validate` instead of relying on synonym
    resolution.
    """

    date: str | None = None
    amount: str | None = None
    description: str | None = None
    debit: str | None = None
    credit: str | None = None
    direction: str | None = None

    def missing(self) -> list[str]:
        out: list[str] = []
        if self.date is None:
            out.append("date")
        if self.amount is None and self.debit is None and self.credit is None:
            out.append("amount")
        if self.description is None:
            out.append("description")
        return out

    def mapped_headers(self) -> set[str]:
        return {
            h
            for h in (
                self.date,
                self.amount,
                self.description,
                self.debit,
                self.credit,
                self.direction,
            )
            if h is not None
        }

    def numeric_columns(self) -> list[str]:
        return [h for h in (self.amount, self.debit, self.credit) if h is not None]


def _contains_phrase(haystack: str, phrase: str) -> bool:
    return f" {phrase} " in f" {haystack} "


def resolve_columns(headers: Sequence[str]) -> ColumnMap:
    """Map source headers onto canonical fields via :data:`COLUMN_SYNONYMS`.

    Two passes, each deterministic:

    1. exact match of the normalized header against each field's synonyms,
       in synonym order, for every field;
    2. for fields still unresolved (except ``direction``, and ``amount``
       when debit/credit columns exist), the first header that *contains* a
       synonym as a whole-word phrase.

    A header is claimed by at most one field. Running the exact pass for all
    fields first keeps ``"Debit Amount"`` from being claimed as ``amount``.
    """

    normalized = [(h, normalize_header(h)) for h in headers]
    claimed: set[str] = set()
    resolved: dict[str, str] = {}

    for field_name, synonyms in COLUMN_SYNONYMS.items():
        for syn in synonyms:
            hit = next((h for h, n in normalized if n == syn and h not in claimed), None)
            if hit is not None:
                resolved[field_name] = hit
                claimed.add(hit)
                break

    for field_name, synonyms in COLUMN_SYNONYMS.items():
        if field_name in resolved or field_name not in _PHRASE_MATCH_FIELDS:
            continue
        if field_name == "amount" and ("debit" in resolved or "credit" in resolved):
            continue
        for syn in synonyms:
            hit = next(
                (h for h, n in normalized if h not in claimed and _contains_phrase(n, syn)),
                None,
            )
            if hit is not None:
                resolved[field_name] = hit
                claimed.add(hit)
                break

    return ColumnMap(**resolved)


# ---------------------------------------------------------------------------
# Cell normalizers
# ---------------------------------------------------------------------------

DATE_FORMATS: tuple[str, ...] = ("%Y-%m-%d", "%m/%d/%Y", "%d-%b-%Y")

_CURRENCY_SYMBOLS = "$€£¥₹"
_CURRENCY_CODE_RE = re.compile(r"^(?:[A-Z]{3})\s*|\s*(?:[A-Z]{3})$")
# Upper bound on ``Decimal.adjusted()`` for an accepted amount.
_MAX_AMOUNT_DIGITS = 15


def parse_date(raw: str | None) -> date:
    """Parse ``raw`` with the first matching entry of :data:`DATE_FORMATS`.

    A trailing time component (``"2024-01-05 10:12"``, ``"2024-01-05T10:12:00"``)
    is ignored. Raises ``ValueError`` when no format matches.
    """

    if raw is None:
        raise ValueError("date is required")
    s = raw.strip()
    if not s:
        raise ValueError("date is empty")
    first = s.split()[0]
    if "T" in first and first[:4].isdigit():
        first = first.split("T", 1)[0]
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(first, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"invalid date: {raw!r}")


def parse_amount(raw: str | None) -> Decimal:
    """Parse a money amount into a signed ``Decimal``.

    Accepts currency symbols or ISO codes on either side, thousands
    separators, a leading ``+``/``-``, a trailing ``-`` and surrounding
    parentheses as the negative convention, in any combination
    (``"-($1,234.56)"``, ``"USD 12.00"``, ``"45.10-"``). Exponent notation and
    magnitudes of 10**16 and above are rejected.
    """

    if raw is None:
        raise ValueError("amount is required")
    s = raw.strip()
    if not s:
        raise ValueError("amount is empty")

    negative = False
    s = _CURRENCY_CODE_RE.sub("", s).strip()

    # Strip sign, currency symbol and parentheses until stable so any ordering
    # of these markers is accepted.
    while True:
        changed = False
        if s.startswith("+"):
            s = s[1:].lstrip()
            changed = True
        elif s.startswith("-"):
            negative = True
            s = s[1:].lstrip()
            changed = True
        if s.endswith("-") and len(s) > 1:
            negative = True
            s = s[:-1].rstrip()
            changed = True
        if s and s[0] in _CURRENCY_SYMBOLS:
            s = s[1:].lstrip()
            changed = True
        if s and s[-1] in _CURRENCY_SYMBOLS:
            s = s[:-1].rstrip()
            changed = True
        if s.startswith("(") and s.endswith(")") and len(s) >= 2:
            negative = True
            s = s[1:-1].strip()
            changed = True
        if not changed:
            break

    s = s.replace(",", "").replace(" ", "").replace("'", "")
    try:
        d = Decimal(s)
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {raw!r}") from exc
    if not d.is_finite() or "e" in s.lower():
        raise ValueError(f"invalid amount: {raw!r}")
    if d.adjusted() > _MAX_AMOUNT_DIGITS:
        raise ValueError(f"amount out of range: {raw!r}")
    return -abs(d) if negative else d


def has_explicit_sign(raw: str) -> bool:
    s = raw.strip()
    return s.startswith(("-", "+", "(")) or s.endswith("-")


# ---------------------------------------------------------------------------
# Table parsing
# ---------------------------------------------------------------------------

_CANDIDATE_DELIMITERS: tuple[str, ...] = (",", ";", "\t", "|")
_JSON_LIST_KEYS: tuple[str, ...] = ("transactions", "data", "rows", "items")
_PREAMBLE_SCAN_LINES = 20


class TableParseError(ValueError):
    """The content cannot be read as a table at all (encoding, JSON shape)."""


@dataclass(frozen=True, slots=True)
class ParsedTable:
    source_format: str
    headers: list[str]
    rows: list[dict[str, str]]


def _decode(raw: bytes | str) -> str:
    if isinstance(raw, str):
        return raw.removeprefix("\ufeff")
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise TableParseError(f"File is not valid UTF-8 text: {exc.reason}") from exc


def detect_format(text: str, format_hint: str | None = None) -> str:
    """Return ``"json"`` or ``"csv"``.

    ``format_hint`` may be a bare format name or a file name; an unrecognized
    hint falls back to sniffing the first non-whitespace character.
    """

    if format_hint:
        hint = format_hint.strip().lower()
        if hint == "json" or hint.endswith(".json"):
            return "json"
        if hint in {"csv", "tsv", "txt"} or hint.endswith((".csv", ".tsv", ".txt")):
            return "csv"
    head = text.lstrip()[:1]
    return "json" if head in {"[", "{"} else "csv"


def _dedupe_headers(raw_headers: Iterable[str]) -> list[str]:
    out: list[str] = []
    seen: dict[str, int] = {}
    for i, h in enumerate(raw_headers):
        name = h.strip() or f"column_{i + 1}"
        if name in seen:
            seen[name] += 1
            name = f"{name} ({seen[name]})"
        else:
            seen[name] = 1
        out.append(name)
    return out


def _pick_delimiter(lines: Sequence[str]) -> str:
    """Most frequent candidate delimiter over the leading non-blank lines."""

    counts = {d: sum(ln.count(d) for ln in lines) for d in _CANDIDATE_DELIMITERS}
    best = max(_CANDIDATE_DELIMITERS, key=lambda d: counts[d])
    return best if counts[best] > 0 else ","


def _is_blank(cells: Sequence[str]) -> bool:
    return all(not c.strip() for c in cells)


def _find_header_row(records: list[list[str]]) -> int:
    """Index of the header row, skipping a preamble when one is detectable.

    The first non-blank record is the header unless it fails to resolve the
    required fields and a later record (within a short scan window) does.
    """

    first = next((i for i, r in enumerate(records) if not _is_blank(r)), None)
    if first is None:
        return 0
    if not resolve_columns(_dedupe_headers(records[first])).missing():
        return first
    for i in range(first + 1, min(len(records), first + _PREAMBLE_SCAN_LINES)):
        if not _is_blank(records[i]) and not resolve_columns(
            _dedupe_headers(records[i])
        ).missing():
            return i
    return first


def _parse_delimited(text: str) -> ParsedTable:
    sample = [ln for ln in text.splitlines() if ln.strip()][:_PREAMBLE_SCAN_LINES]
    delimiter = _pick_delimiter(sample)
    try:
        with StringIO(text) as f:
            records = [list(r) for r in csv.reader(f, delimiter=delimiter)]
    except csv.Error as exc:
        raise TableParseError(f"Malformed delimited text: {exc}") from exc

    # Trailing empty lines are file padding, not rows.
    while records and not records[-1]:
        records.pop()
    if not records:
        return ParsedTable(source_format="csv", headers=[], rows=[])

    header_at = _find_header_row(records)
    headers = _dedupe_headers(records[header_at])
    rows: list[dict[str, str]] = []
    for rec in records[header_at + 1 :]:
        row = {h: (rec[i] if i < len(rec) else "") for i, h in enumerate(headers)}
        # Cells beyond the header width are kept rather than silently dropped.
        for j in range(len(headers), len(rec)):
            if rec[j].strip():
                row[f"column_{j + 1}"] = rec[j]
        rows.append(row)
    return ParsedTable(source_format="csv", headers=headers, rows=rows)


def _cell_to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    return str(value)


def _parse_json(text: str) -> ParsedTable:
    try:
        # Keep numbers as their source text so amounts are not float-rounded.
        body = json.loads(text, parse_float=str, parse_int=str)
    except json.JSONDecodeError as exc:
        raise TableParseError(f"Invalid JSON: {exc.msg} (line {exc.lineno})") from exc
    except RecursionError as exc:
        raise TableParseError("Invalid JSON: nested too deeply") from exc

    if isinstance(body, dict):
        lists = [body[k] for k in _JSON_LIST_KEYS if isinstance(body.get(k), list)]
        if len(lists) != 1:
            raise TableParseError(
                "JSON object must hold exactly one list of transactions under one of: "
                + ", ".join(_JSON_LIST_KEYS)
            )
        body = lists[0]
    if not isinstance(body, list):
        raise TableParseError("JSON content must be a list of objects")

    headers: list[str] = []
    seen: set[str] = set()
    for pos, item in enumerate(body):
        if item is None:
            continue
        if not isinstance(item, dict):
            raise TableParseError(f"JSON item {pos + 1} is not an object")
        for key in item:
            if key not in seen:
                seen.add(key)
                headers.append(key)

    rows: list[dict[str, str]] = []
    for item in body:
        # A null entry stands for a blank row; the validator reports it.
        source = item if item is not None else {}
        rows.append({h: _cell_to_text(source.get(h)) for h in headers})
    return ParsedTable(source_format="json", headers=headers, rows=rows)


def parse_table(raw: bytes | str, format_hint: str | None = None) -> ParsedTable:
    """Parse raw file content into a :class:`ParsedTable`.

    Raises :class:`TableParseError` when the content is not decodable or not
    shaped like a table. An empty file yields a table with no headers.
    """

    text = _decode(raw)
    if not text.strip():
        return ParsedTable(source_format=detect_format(text, format_hint), headers=[], rows=[])
    if detect_format(text, format_hint) == "json":
        return _parse_json(text)
    return _parse_delimited(text)


__all__ = [
    "COLUMN_SYNONYMS",
    "DATE_FORMATS",
    "REQUIRED_FIELDS",
    "ColumnMap",
    "ParsedTable",
    "TableParseError",
    "detect_format",
    "has_explicit_sign",
    "normalize_header",
    "parse_amount",
    "parse_date",
    "parse_table",
    "resolve_columns",
]
