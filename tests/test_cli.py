from pathlib import Path

import pytest
from typer.testing import CliRunner

from spendcat.cli import app
from tests.helpers.openai_stub import OpenAIStub, batch_answer, connection_error, install

runner = CliRunner()


@pytest.fixture
def csv_file(tmp_path: Path, sample_csv: str) -> Path:
    path = tmp_path / "jan.csv"
    path.write_text(sample_csv, encoding="utf-8")
    return path


def test_ingest_show_and_summary(csv_file: Path):
    result = runner.invoke(app, ["ingest", str(csv_file)])
    assert result.exit_code == 0, result.output
    assert "5 of 5 rows accepted" in result.stdout

    result = runner.invoke(app, ["categorize", "jan.csv", "0", "groceries"])
    assert result.exit_code == 0, result.output
    assert "Groceries" in result.stdout

    result = runner.invoke(app, ["show", "jan.csv", "--uncategorized"])
    assert result.exit_code == 0
    assert len(result.stdout.strip().splitlines()) == 4

    result = runner.invoke(app, ["summary", "jan.csv", "--monthly"])
    assert result.exit_code == 0
    assert "Groceries" in result.stdout
    assert "2024-01:" in result.stdout

    result = runner.invoke(app, ["files"])
    assert result.stdout.strip() == "jan.csv\t1/5"


def test_ingest_rejected_file_exits_non_zero(tmp_path: Path):
    path = tmp_path / "bad.csv"
    path.write_text("Date,Amount\n2024-01-05,1\n", encoding="utf-8")
    result = runner.invoke(app, ["ingest", str(path)])
    assert result.exit_code == 1
    assert "Missing required column: description" in result.output


def test_categorize_out_of_range_is_client_error(csv_file: Path):
    runner.invoke(app, ["ingest", str(csv_file)])
    result = runner.invoke(app, ["categorize", "jan.csv", "999", "Food"])
    assert result.exit_code == 1
    assert "out of range" in result.output


def test_bulk_and_categories(csv_file: Path):
    runner.invoke(app, ["ingest", str(csv_file)])

    result = runner.invoke(app, ["categories", "add", "pet care"])
    assert result.exit_code == 0
    assert "Pet Care" in result.stdout

    result = runner.invoke(app, ["categories", "list"])
    assert "Pet Care" in result.stdout.splitlines()

    result = runner.invoke(app, ["bulk", "jan.csv", "Pet Care", "0", "1"])
    assert result.exit_code == 0, result.output
    assert "Updated 2 of 2 rows" in result.stdout


def test_auto_and_suggest_with_stubbed_model(
    csv_file: Path, monkeypatch: pytest.MonkeyPatch
):
    stub = install(monkeypatch, OpenAIStub(batch_answer("Other")))
    runner.invoke(app, ["ingest", str(csv_file)])

    result = runner.invoke(app, ["suggest", "jan.csv", "0", "1"])
    assert result.exit_code == 0, result.output
    assert result.stdout.splitlines() == ["0\tOther", "1\tOther"]

    result = runner.invoke(app, ["auto", "jan.csv"])
    assert result.exit_code == 0, result.output
    assert "Updated 5 of 5 rows" in result.stdout
    assert len(stub.calls) == 2


def test_auto_reports_unreachable_server(csv_file: Path, monkeypatch: pytest.MonkeyPatch):
    def respond(items):
        raise connection_error()

    install(monkeypatch, OpenAIStub(respond))
    runner.invoke(app, ["ingest", str(csv_file)])
    result = runner.invoke(app, ["auto", "jan.csv"])
    assert result.exit_code == 1
    assert "start the inference server" in result.output


def test_reset(csv_file: Path):
    runner.invoke(app, ["ingest", str(csv_file)])
    assert runner.invoke(app, ["reset", "jan.csv"]).exit_code == 0
    assert runner.invoke(app, ["reset", "jan.csv"]).exit_code == 1
    assert runner.invoke(app, ["files"]).stdout == ""


def test_log_level_option_routes_logs_to_stderr(csv_file: Path):
    result = runner.invoke(app, ["--log-level", "debug", "ingest", str(csv_file)])
    assert result.exit_code == 0, result.output
    assert "ingest:stored file='jan.csv'" in result.output
    assert "validate:done" in result.output
