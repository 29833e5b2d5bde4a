"""Unit tests for the es command line."""

from __future__ import annotations

import json
import threading
from collections.abc import Generator
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from es.cli.main import app
from es.ledger.documents import StudentStore
from es.ledger.reconcile import Reconciler
from es.ledger.store import reset_engine
from es.orders.client import RawOrder
from es.sync.runner import SyncPipeline

runner = CliRunner()


def student_order(order_id: str, email: str) -> RawOrder:
    return RawOrder.from_api(
        {
            "id": order_id,
            "orderNumber": f"10{order_id}",
            "customerEmail": email,
            "lineItems": [
                {
                    "id": f"{order_id}-1",
                    "lineItemType": "SERVICE",
                    "productName": "Associates Program",
                    "customizations": [
                        {"label": "Name", "value": "Amina Khan"},
                        {"label": "Email", "value": email},
                        {"label": "Password", "value": "chosen-pw"},
                    ],
                    "variantOptions": [{"optionName": "Section", "value": "Year 1"}],
                }
            ],
        }
    )


@pytest.fixture
def env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path]:
    """Point config and database at a temp directory; returns the db path."""
    db_path = tmp_path / "data" / "students.db"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setenv("ES_DB_PATH", str(db_path))
    monkeypatch.delenv("ES_ORDERS_API_KEY", raising=False)
    yield db_path
    reset_engine()


@pytest.fixture
def migrated(env: Path) -> Path:
    result = runner.invoke(app, ["db", "migrate", "--no-backup"])
    assert result.exit_code == 0, result.output
    return env


@pytest.fixture
def order_client() -> MagicMock:
    client = MagicMock()
    client.fetch_student_orders.return_value = [student_order("1", "amina@example.com")]
    return client


@pytest.fixture
def fake_pipeline(order_client: MagicMock, env: Path) -> Generator[MagicMock]:
    def build(settings):
        reconciler = Reconciler(StudentStore(settings.db_path))
        return SyncPipeline(order_client, reconciler, settings.db_path, lock=threading.Lock())

    with patch("es.cli.sync_cmd.build_pipeline", side_effect=build) as patched:
        yield patched


class TestRoot:
    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "enrollment-sync" in result.output


class TestDbCommands:
    def test_migrate_then_status(self, migrated: Path) -> None:
        assert migrated.exists()

        result = runner.invoke(app, ["db", "status"])

        assert result.exit_code == 0, result.output
        assert "student_document" in result.output
        assert "Up to date" in result.output

    def test_migrate_twice(self, migrated: Path) -> None:
        result = runner.invoke(app, ["db", "migrate"])
        assert result.exit_code == 0
        assert "up to date" in result.output


class TestSyncCommands:
    """Tests for es sync."""

    def test_run_requires_database(self, env: Path, fake_pipeline: MagicMock) -> None:
        result = runner.invoke(app, ["sync", "run"])
        assert result.exit_code == 1
        assert "es db migrate" in result.output

    def test_run_without_api_key(self, migrated: Path) -> None:
        result = runner.invoke(app, ["sync", "run"])
        assert result.exit_code == 1
        assert "ES_ORDERS_API_KEY" in result.output

    def test_run_persists(self, migrated: Path, fake_pipeline: MagicMock) -> None:
        result = runner.invoke(app, ["sync", "run", "--lookback", "30"])

        assert result.exit_code == 0, result.output
        assert "Persisted: 1" in result.output
        assert StudentStore(migrated).find_by_email("amina@example.com") is not None

    def test_run_json_then_status(self, migrated: Path, fake_pipeline: MagicMock) -> None:
        run_result = runner.invoke(app, ["sync", "run", "--json"])
        assert run_result.exit_code == 0, run_result.output
        assert json.loads(run_result.stdout)["persisted_count"] == 1

        status = runner.invoke(app, ["sync", "status", "--json"])
        runs = json.loads(status.stdout)
        assert len(runs) == 1
        assert runs[0]["trigger"] == "cli"
        assert runs[0]["status"] == "completed"

    def test_dry_run_writes_nothing(self, migrated: Path, fake_pipeline: MagicMock) -> None:
        result = runner.invoke(app, ["sync", "run", "--dry-run", "--json"])

        assert result.exit_code == 0, result.output
        records = json.loads(result.stdout)
        assert records[0]["courseName"] == "Associates Program"
        assert "password" not in records[0]["studentInfo"]
        assert StudentStore(migrated).list_snapshots() == []

    def test_explicit_window(self, migrated: Path, fake_pipeline: MagicMock, order_client: MagicMock) -> None:
        result = runner.invoke(
            app, ["sync", "run", "--start", "2024-03-01T00:00:00", "--end", "2024-03-02T00:00:00"]
        )

        assert result.exit_code == 0, result.output
        window = order_client.fetch_student_orders.call_args.args[0]
        assert window.to_params()["modifiedBefore"] == "2024-03-02T00:00:00.000Z"

    def test_half_window_rejected(self, migrated: Path, fake_pipeline: MagicMock) -> None:
        result = runner.invoke(app, ["sync", "run", "--start", "2024-03-01T00:00:00"])
        assert result.exit_code == 1
        assert "--start and --end" in result.output


class TestStudentAndAdminCommands:
    """Tests for es students and es admin."""

    def test_show_student(self, migrated: Path, fake_pipeline: MagicMock) -> None:
        runner.invoke(app, ["sync", "run"])

        result = runner.invoke(app, ["students", "show", "AMINA@example.com"])

        assert result.exit_code == 0, result.output
        assert "Amina Khan <amina@example.com>" in result.output
        assert "Associates Program" in result.output

    def test_show_missing_student(self, migrated: Path) -> None:
        result = runner.invoke(app, ["students", "show", "nobody@example.com"])
        assert result.exit_code == 1

    def test_rename_email(self, migrated: Path, fake_pipeline: MagicMock) -> None:
        runner.invoke(app, ["sync", "run"])

        result = runner.invoke(
            app, ["admin", "rename-email", "amina@example.com", "amina.k@example.com", "--yes"]
        )

        assert result.exit_code == 0, result.output
        assert StudentStore(migrated).find_by_email("amina.k@example.com") is not None

    def test_rename_rejects_invalid_email(self, migrated: Path) -> None:
        result = runner.invoke(app, ["admin", "rename-email", "a@example.com", "not-an-email", "--yes"])
        assert result.exit_code == 1

    def test_strip_passwords_on_clean_store(self, migrated: Path) -> None:
        result = runner.invoke(app, ["admin", "strip-passwords"])
        assert result.exit_code == 0
        assert "0 student document(s)" in result.output

    def test_backfill_course_refs(self, migrated: Path, fake_pipeline: MagicMock) -> None:
        runner.invoke(app, ["sync", "run"])

        result = runner.invoke(app, ["admin", "backfill-course-refs"])

        assert result.exit_code == 0, result.output
        assert "0 course(s) in 0 student document(s)" in result.output


class TestConfigCommands:
    def test_init_and_show(self, env: Path) -> None:
        init = runner.invoke(app, ["config", "init", "--secret-provider", "env"])
        assert init.exit_code == 0, init.output

        show = runner.invoke(app, ["config", "show"])
        assert show.exit_code == 0
        assert "lookback_minutes: 6" in show.output

    def test_init_refuses_overwrite(self, env: Path) -> None:
        runner.invoke(app, ["config", "init"])
        result = runner.invoke(app, ["config", "init"])
        assert result.exit_code == 1

    def test_set_unknown_key(self, env: Path) -> None:
        result = runner.invoke(app, ["config", "set", "api_key", "x"])
        assert result.exit_code == 1
