"""CLI for the ``spendcat`` package.

This module exposes callable command handlers (``cmd_*``), each taking a
:class:`~spendcat.service.CategorizationService` and returning an exit
status, and a Typer-based console interface around them. Settings come from
the environment after a local ``.env`` has been loaded with ``python-dotenv``.
Business logic lives in :mod:`spendcat.service` and the modules it wires.
"""

from __future__ import annotations

import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv

from .analytics import monthly_totals, render_summary
from .config import load_settings
from .errors import InferenceUnavailableError, SpendcatError, SuggestionError
from .logging_setup import configure_logging
from .models import BulkResult
from .progress import carry_forward_categories
from .service import CategorizationService


def _error(msg: str) -> int:
    print(f"Error: {msg}", file=sys.stderr)
    return 1


def _suggestion_error(e: SuggestionError) -> int:
    if isinstance(e, InferenceUnavailableError):
        return _error(f"{e} (start the inference server, then retry)")
    return _error(f"{e} [{e.reason}]; retry or categorize manually")


def _print_bulk(results: Sequence[BulkResult]) -> int:
    failed = [r for r in results if not r.ok]
    for r in failed:
        print(f"Row {r.index}: {r.error}", file=sys.stderr)
    print(f"Updated {len(results) - len(failed)} of {len(results)} rows")
    return 1 if failed else 0


# ---- Command handlers --------------------------------------------------------


def cmd_ingest(
    svc: CategorizationService,
    path: Path,
    *,
    name: str | None = None,
    format_hint: str | None = None,
    merge: bool = False,
) -> int:
    """Validate a CSV/JSON export and (re)create its progress.

    Every diagnostic is printed; the exit status is non-zero when the file
    was rejected.
    """

    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return _error(f"File not found: {path}")
    except PermissionError:
        return _error(f"Permission denied: {path}")

    file_name = name or path.name
    result = svc.ingest(
        file_name,
        raw,
        format_hint or path.name,
        merge_policy=carry_forward_categories if merge else None,
    )
    for msg in result.report.errors:
        print(msg, file=sys.stderr)
    if result.progress is None:
        return _error(f"{file_name!r} was not ingested")
    print(
        f"Ingested {file_name!r}: {len(result.report.accepted_rows)} of "
        f"{result.report.row_count} rows accepted, "
        f"{result.progress.categorized_count} already categorized"
    )
    return 0


def cmd_show(svc: CategorizationService, name: str, *, uncategorized: bool = False) -> int:
    try:
        progress = svc.get_progress(name)
    except SpendcatError as e:
        return _error(str(e))
    for r in progress.rows:
        if uncategorized and r.category is not None:
            continue
        print(f"{r.index}\t{r.date.isoformat()}\t{r.amount}\t{r.category or '-'}\t{r.description}")
    return 0


def cmd_summary(svc: CategorizationService, name: str, *, monthly: bool = False) -> int:
    try:
        summary = svc.summary(name)
        progress = svc.get_progress(name) if monthly else None
    except SpendcatError as e:
        return _error(str(e))
    print(render_summary(summary))
    if progress is not None:
        print()
        for month, totals in monthly_totals(progress).items():
            cells = ", ".join(f"{label} {total:,.2f}" for label, total in totals.items())
            print(f"{month}: {cells}")
    return 0


def cmd_categorize(svc: CategorizationService, name: str, index: int, category: str) -> int:
    try:
        row = svc.categorize_row(name, index, category)
    except SpendcatError as e:
        return _error(str(e))
    print(f"{row.index}\t{row.category}\t{row.description}")
    return 0


def cmd_bulk(
    svc: CategorizationService, name: str, category: str, indices: Sequence[int]
) -> int:
    try:
        results = svc.categorize_bulk(name, indices, category)
    except SpendcatError as e:
        return _error(str(e))
    return _print_bulk(results)


def cmd_suggest(svc: CategorizationService, name: str, indices: Sequence[int]) -> int:
    try:
        if len(indices) == 1:
            s = svc.suggest_row(name, indices[0])
            print(f"{indices[0]}\t{s.category}\t{s.confidence:.2f}")
            return 0
        for b in svc.suggest_rows(name, indices):
            print(f"{b.index}\t{b.category}")
    except SuggestionError as e:
        return _suggestion_error(e)
    except SpendcatError as e:
        return _error(str(e))
    return 0


def cmd_auto(svc: CategorizationService, name: str, *, concurrency: int | None = None) -> int:
    try:
        results = svc.auto_categorize(name, concurrency=concurrency)
    except SuggestionError as e:
        return _suggestion_error(e)
    except SpendcatError as e:
        return _error(str(e))
    return _print_bulk(results)


def cmd_categories_list(svc: CategorizationService) -> int:
    for label in svc.categories():
        print(label)
    return 0


def cmd_categories_add(svc: CategorizationService, label: str) -> int:
    try:
        added = svc.add_category(label)
    except (SpendcatError, ValueError) as e:
        return _error(str(e))
    print(f"Added category {added!r}")
    return 0


def cmd_reset(svc: CategorizationService, name: str) -> int:
    try:
        svc.reset(name)
    except SpendcatError as e:
        return _error(str(e))
    print(f"Removed progress for {name!r}")
    return 0


def cmd_files(svc: CategorizationService) -> int:
    for name in svc.list_files():
        progress = svc.get_progress(name)
        print(f"{name}\t{progress.categorized_count}/{len(progress.rows)}")
    return 0


# ---- Typer-based console interface -------------------------------------------


def _service() -> CategorizationService:
    return CategorizationService.from_settings(load_settings())


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Categorize bank and card transactions with resumable progress and "
        "suggestions from a local OpenAI-compatible model server. "
        "Loads settings from a local .env before running."
    ),
)
categories_app = typer.Typer(no_args_is_help=True, help="Inspect or extend the category list.")
app.add_typer(categories_app, name="categories")


@app.command("ingest")
def ingest_cmd(
    path: Annotated[Path, typer.Argument(help="CSV or JSON export to ingest", dir_okay=False)],
    name: Annotated[
        str | None, typer.Option(help="File name to store progress under (default: PATH name)")
    ] = None,
    fmt: Annotated[
        str | None, typer.Option("--format", help="Force the input format: csv or json")
    ] = None,
    merge: Annotated[
        bool, typer.Option(help="Carry categories over from the previous upload of NAME")
    ] = False,
) -> None:
    """Validate a file and start (or restart) its categorization."""

    raise typer.Exit(cmd_ingest(_service(), path, name=name, format_hint=fmt, merge=merge))


@app.command("show")
def show_cmd(
    name: str,
    uncategorized: Annotated[bool, typer.Option(help="Only rows without a category")] = False,
) -> None:
    """Print the rows of a file with their categories."""

    raise typer.Exit(cmd_show(_service(), name, uncategorized=uncategorized))


@app.command("summary")
def summary_cmd(
    name: str,
    monthly: Annotated[bool, typer.Option(help="Also print per-month totals")] = False,
) -> None:
    """Print per-category counts and totals for a file."""

    raise typer.Exit(cmd_summary(_service(), name, monthly=monthly))


@app.command("categorize")
def categorize_cmd(name: str, index: int, category: str) -> None:
    """Set the category of one row."""

    raise typer.Exit(cmd_categorize(_service(), name, index, category))


@app.command("bulk")
def bulk_cmd(name: str, category: str, indices: list[int]) -> None:
    """Set one category on many rows."""

    raise typer.Exit(cmd_bulk(_service(), name, category, indices))


@app.command("suggest")
def suggest_cmd(name: str, indices: list[int]) -> None:
    """Ask the model for categories without storing them."""

    raise typer.Exit(cmd_suggest(_service(), name, indices))


@app.command("auto")
def auto_cmd(
    name: str,
    concurrency: Annotated[
        int | None, typer.Option(min=1, help="Batches in flight (default: SPENDCAT_CONCURRENCY)")
    ] = None,
) -> None:
    """Categorize every uncategorized row with model suggestions."""

    raise typer.Exit(cmd_auto(_service(), name, concurrency=concurrency))


@app.command("reset")
def reset_cmd(name: str) -> None:
    """Forget all progress for a file."""

    raise typer.Exit(cmd_reset(_service(), name))


@app.command("files")
def files_cmd() -> None:
    """List files with stored progress."""

    raise typer.Exit(cmd_files(_service()))


@categories_app.command("list")
def categories_list_cmd() -> None:
    """List registered categories."""

    raise typer.Exit(cmd_categories_list(_service()))


@categories_app.command("add")
def categories_add_cmd(label: str) -> None:
    """Register a new category."""

    raise typer.Exit(cmd_categories_add(_service(), label))


@app.callback()
def _root(
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Log level name (default: SPENDCAT_LOG_LEVEL or INFO)"),
    ] = None,
) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging(log_level, force=True)


if __name__ == "__main__":  # pragma: no cover
    app()
