"""File and row validation producing a :class:`~spendcat.models.ValidationReport`.

``validate`` never raises for bad input. Every problem becomes a
human-readable line in ``ValidationReport.errors``; rows with a fatal problem
(unparseable date or amount, missing description) are left out of
``accepted_rows`` and the survivors are re-indexed densely from 0.

Rule summary
------------
- header: date, amount (or debit/credit) and description columns must
  resolve; otherwise the file is invalid and no rows are accepted;
- the file must not be empty and must hold at least one data row;
- blank rows are skipped with a warning;
- dates: first match of :data:`spendcat.parsing.DATE_FORMATS`;
- amounts: currency/thousands/parentheses tolerant, debit/credit columns and
  a direction column collapse into one signed amount (the direction column
  is ignored when the amount column already carries signs);
- numeric columns mixing numbers with other text get a file-level warning.

Row numbers in diagnostics are 1-based positions among the data rows (the
header line is not counted).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal

from .logging_setup import get_logger
from .models import TransactionRecord, ValidationReport
from .parsing import (
    ColumnMap,
    TableParseError,
    has_explicit_sign,
    normalize_header,
    parse_amount,
    parse_date,
    parse_table,
    resolve_columns,
)

_logger = get_logger("spendcat.validation")

DEBIT_MARKERS: frozenset[str] = frozenset(
    {"dr", "d", "debit", "withdrawal", "purchase", "out"}
)
CREDIT_MARKERS: frozenset[str] = frozenset(
    {"cr", "c", "credit", "deposit", "refund", "return", "in"}
)


def _is_blank(row: Mapping[str, str]) -> bool:
    return all(not (v or "").strip() for v in row.values())


def _cell(row: Mapping[str, str], header: str | None) -> str:
    if header is None:
        return ""
    return (row.get(header) or "").strip()


def _amount_column_signed(rows: Iterable[Mapping[str, str]], columns: ColumnMap) -> bool:
    """True when any amount cell carries its own sign marker."""

    return any(has_explicit_sign(v) for row in rows if (v := _cell(row, columns.amount)))


def _signed_amount(
    row: Mapping[str, str], columns: ColumnMap, *, use_direction: bool = True
) -> Decimal:
    """Collapse the amount-like columns of ``row`` into one signed value.

    The direction column only applies when ``use_direction`` is set, i.e. the
    amount column does not already encode the sign anywhere in the file.
    Raises ``ValueError`` when no amount can be derived.
    """

    raw = _cell(row, columns.amount)
    if raw:
        value = parse_amount(raw)
        direction = normalize_header(_cell(row, columns.direction)) if use_direction else ""
        if direction:
            if direction in DEBIT_MARKERS:
                return -abs(value)
            if direction in CREDIT_MARKERS:
                return abs(value)
        return value

    debit_raw = _cell(row, columns.debit)
    credit_raw = _cell(row, columns.credit)
    if not debit_raw and not credit_raw:
        raise ValueError("no amount value")

    total = Decimal("0")
    if debit_raw:
        total -= abs(parse_amount(debit_raw))
    if credit_raw:
        credit = parse_amount(credit_raw)
        total += credit if has_explicit_sign(credit_raw) else abs(credit)
    return total


def _check_declared(schema: ColumnMap, headers: list[str]) -> tuple[ColumnMap, list[str]]:
    """Drop declared columns that the file does not have, reporting each one."""

    present = set(headers)
    errors: list[str] = []
    fields: dict[str, str | None] = {}
    for name in ("date", "amount", "description", "debit", "credit", "direction"):
        header = getattr(schema, name)
        if header is not None and header not in present:
            errors.append(f"Declared column not found for {name}: {header!r}")
            header = None
        fields[name] = header
    return ColumnMap(**fields), errors


def _mixed_type_warnings(
    rows: list[Mapping[str, str]], columns: ColumnMap
) -> list[str]:
    warnings: list[str] = []
    for header in columns.numeric_columns():
        numeric = 0
        other = 0
        for row in rows:
            val = _cell(row, header)
            if not val:
                continue
            try:
                parse_amount(val)
            except ValueError:
                other += 1
            else:
                numeric += 1
        if numeric and other:
            warnings.append(
                f"Warning: column {header!r} mixes numeric and non-numeric values "
                f"({other} of {numeric + other} non-numeric)"
            )
    return warnings


def validate(
    raw_content: bytes | str,
    schema: ColumnMap | None = None,
    *,
    format_hint: str | None = None,
) -> ValidationReport:
    """Validate raw file content and return the structural report.

    Parameters
    ----------
    raw_content:
        File bytes (UTF-8, BOM tolerated) or already-decoded text.
    schema:
        Optional explicit column mapping; when ``None`` columns are resolved
        from the header through the synonym table.
    format_hint:
        ``"csv"``, ``"json"`` or a file name; otherwise the format is sniffed.
    """

    try:
        table = parse_table(raw_content, format_hint)
    except TableParseError as exc:
        return ValidationReport(valid=False, errors=(str(exc),), row_count=0, accepted_rows=())

    if not table.headers:
        return ValidationReport(
            valid=False,
            errors=("File is empty",),
            row_count=0,
            accepted_rows=(),
            source_format=table.source_format,
        )

    errors: list[str] = []
    if schema is not None:
        columns, declared_errors = _check_declared(schema, table.headers)
        errors.extend(declared_errors)
    else:
        columns = resolve_columns(table.headers)

    missing = columns.missing()
    for name in missing:
        errors.append(f"Missing required column: {name}")
    header_fatal = bool(missing)

    if not table.rows:
        errors.append("No data rows found")
        return ValidationReport(
            valid=False,
            errors=tuple(errors),
            row_count=0,
            accepted_rows=(),
            source_format=table.source_format,
        )

    mapped = columns.mapped_headers()
    use_direction = columns.direction is not None and not _amount_column_signed(
        table.rows, columns
    )
    accepted: list[TransactionRecord] = []
    data_rows: list[Mapping[str, str]] = []
    blank_rows = 0

    for pos, row in enumerate(table.rows):
        row_no = pos + 1
        if _is_blank(row):
            blank_rows += 1
            errors.append(f"Row {row_no}: Empty row skipped")
            continue
        data_rows.append(row)
        if header_fatal:
            continue

        fatal = False
        try:
            tx_date = parse_date(_cell(row, columns.date))
        except ValueError:
            errors.append(f"Row {row_no}: Invalid date format")
            fatal = True
        try:
            amount = _signed_amount(row, columns, use_direction=use_direction)
        except ValueError:
            errors.append(f"Row {row_no}: Invalid amount")
            fatal = True
        description = " ".join(_cell(row, columns.description).split())
        if not description:
            errors.append(f"Row {row_no}: Missing description")
            fatal = True
        if fatal:
            continue

        accepted.append(
            TransactionRecord(
                index=len(accepted),
                date=tx_date,
                amount=amount,
                description=description,
                category=None,
                source_fields={k: v for k, v in row.items() if k not in mapped},
            )
        )

    if not data_rows:
        errors.append("No data rows found")
    elif not header_fatal:
        errors.extend(_mixed_type_warnings(data_rows, columns))
        if not accepted:
            errors.append("No rows passed validation")

    report = ValidationReport(
        valid=not header_fatal and bool(accepted),
        errors=tuple(errors),
        row_count=len(data_rows),
        accepted_rows=tuple(accepted),
        blank_rows=blank_rows,
        source_format=table.source_format,
    )
    _logger.debug(
        "validate:done format=%s rows=%d accepted=%d blank=%d errors=%d valid=%s",
        table.source_format,
        report.row_count,
        len(report.accepted_rows),
        blank_rows,
        len(errors),
        report.valid,
    )
    return report


__all__ = ["CREDIT_MARKERS", "DEBIT_MARKERS", "validate"]
