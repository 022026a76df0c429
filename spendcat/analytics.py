"""Per-category aggregation over a :class:`~spendcat.models.FileProgress`.

Everything here is a pure function of the snapshot passed in; nothing is
cached, so a summary is always consistent with the rows it was computed from.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal

from .models import AnalyticsSummary, CategoryTotals, FileProgress

UNCATEGORIZED = "Uncategorized"


def summarize(progress: FileProgress) -> AnalyticsSummary:
    counts: dict[str, int] = defaultdict(int)
    totals: dict[str, Decimal] = defaultdict(Decimal)
    uncategorized = 0
    for r in progress.rows:
        if r.category is None:
            uncategorized += 1
            continue
        counts[r.category] += 1
        totals[r.category] += r.amount

    per_category = {
        label: CategoryTotals(count=counts[label], total_amount=totals[label])
        for label in sorted(counts, key=str.casefold)
    }
    return AnalyticsSummary(
        per_category=per_category,
        uncategorized_count=uncategorized,
        total_rows=len(progress.rows),
    )


def monthly_totals(progress: FileProgress) -> dict[str, dict[str, Decimal]]:
    """Return ``{"YYYY-MM": {label: total}}`` with months in ascending order.

    Uncategorized rows are grouped under ``"Uncategorized"``.
    """

    out: dict[str, dict[str, Decimal]] = {}
    for r in sorted(progress.rows, key=lambda r: (r.date, r.index)):
        month = f"{r.date.year:04d}-{r.date.month:02d}"
        bucket = out.setdefault(month, {})
        label = r.category or UNCATEGORIZED
        bucket[label] = bucket.get(label, Decimal("0")) + r.amount
    return out


def render_summary(summary: AnalyticsSummary) -> str:
    """Plain-text table of a summary, one category per line."""

    rows: list[tuple[str, str, str]] = [
        (label, str(t.count), f"{t.total_amount:,.2f}") for label, t in summary.per_category.items()
    ]
    width = max([len("Category"), len(UNCATEGORIZED)] + [len(r[0]) for r in rows])
    count_w = max([len("Count")] + [len(r[1]) for r in rows] + [len(str(summary.total_rows))])
    total_w = max([len("Total")] + [len(r[2]) for r in rows])

    lines = [f"{'Category':<{width}}  {'Count':>{count_w}}  {'Total':>{total_w}}"]
    lines.append("-" * len(lines[0]))
    for label, count, total in rows:
        lines.append(f"{label:<{width}}  {count:>{count_w}}  {total:>{total_w}}")
    lines.append(f"{UNCATEGORIZED:<{width}}  {summary.uncategorized_count:>{count_w}}")
    lines.append(f"{'All rows':<{width}}  {summary.total_rows:>{count_w}}")
    return "\n".join(lines)


__all__ = ["UNCATEGORIZED", "monthly_totals", "render_summary", "summarize"]
