"""Integration tests for database setup and migrations."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest

from es.ledger.models import StudentDocument, SyncRun, SyncStatus, SyncTrigger
from es.ledger.store import (
    backup_database,
    get_db_info,
    get_migration_status,
    get_session,
    reset_engine,
    run_migrations,
)


@pytest.fixture
def temp_db_path(tmp_path: Path) -> Generator[Path]:
    """Create a temporary database path and clean up after."""
    db_path = tmp_path / "test_students.db"
    yield db_path
    reset_engine()


class TestDatabaseCreation:
    """Tests for database creation and configuration."""

    def test_run_migrations_creates_database(self, temp_db_path: Path) -> None:
        assert not temp_db_path.exists()

        result = run_migrations(temp_db_path, backup=False)

        assert temp_db_path.exists()
        assert result["status"] == "success"

    def test_run_migrations_creates_tables(self, temp_db_path: Path) -> None:
        run_migrations(temp_db_path, backup=False)

        tables = str(get_db_info(temp_db_path)["tables"])

        assert "student_document" in tables
        assert "sync_run" in tables

    def test_run_migrations_idempotent(self, temp_db_path: Path) -> None:
        result1 = run_migrations(temp_db_path, backup=False)
        reset_engine()
        result2 = run_migrations(temp_db_path, backup=False)

        assert result1["status"] == "success"
        assert result2["status"] == "up_to_date"

    def test_database_wal_mode(self, temp_db_path: Path) -> None:
        run_migrations(temp_db_path, backup=False)
        assert get_db_info(temp_db_path)["journal_mode"] == "wal"


class TestMigrationStatus:
    """Tests for migration status reporting."""

    def test_status_before_migration(self, temp_db_path: Path) -> None:
        status = get_migration_status(temp_db_path)

        assert status["db_exists"] is False
        assert status["current_revision"] == "(none)"
        assert status["pending_revisions"] == ["001"]

    def test_status_after_migration(self, temp_db_path: Path) -> None:
        run_migrations(temp_db_path, backup=False)
        reset_engine()

        status = get_migration_status(temp_db_path)

        assert status["current_revision"] == "001"
        assert status["pending_count"] == 0
        assert status["up_to_date"] is True


class TestModels:
    """Tests for the migrated tables through the SQLModel models."""

    def test_sync_run_lifecycle(self, temp_db_path: Path) -> None:
        run_migrations(temp_db_path, backup=False)

        with get_session(temp_db_path) as session:
            run = SyncRun(trigger=SyncTrigger.TIMER)
            session.add(run)
            session.commit()
            session.refresh(run)
            assert run.status == SyncStatus.RUNNING

            run.mark_completed(orders_fetched=4, courses_mapped=5, persisted_count=3, created_count=2)
            session.add(run)
            session.commit()
            session.refresh(run)

            data = run.to_dict()
            assert data["status"] == "completed"
            assert data["trigger"] == "timer"
            assert data["persisted_count"] == 3
            assert data["completed_at"] is not None

    def test_sync_run_failed(self, temp_db_path: Path) -> None:
        run_migrations(temp_db_path, backup=False)

        with get_session(temp_db_path) as session:
            run = SyncRun(trigger=SyncTrigger.MANUAL)
            session.add(run)
            session.commit()

            run.mark_failed("Commerce API request failed")
            session.add(run)
            session.commit()
            session.refresh(run)

            assert run.status == SyncStatus.FAILED
            assert run.error_message == "Commerce API request failed"

    def test_student_document_json_round_trip(self, temp_db_path: Path) -> None:
        run_migrations(temp_db_path, backup=False)
        courses = [{"courseName": "Associates Program", "programDetails": {"level": "Year 1"}}]

        with get_session(temp_db_path) as session:
            session.add(StudentDocument(email="a@x.com", student_info={"firstName": "Amina"}, courses=courses))
            session.commit()

        reset_engine()
        info = get_db_info(temp_db_path)
        assert info["student_count"] == 1

        with get_session(temp_db_path) as session:
            doc = session.get(StudentDocument, 1)
            assert doc is not None
            assert doc.courses == courses
            assert doc.version == 1


class TestBackup:
    """Tests for database backup functionality."""

    def test_backup_database(self, temp_db_path: Path) -> None:
        run_migrations(temp_db_path, backup=False)

        backup_path = backup_database(temp_db_path, suffix="manual")

        assert backup_path.exists()
        assert backup_path.name == "test_students.manual.backup"

    def test_backup_missing_database(self, temp_db_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            backup_database(temp_db_path)

    def test_no_backup_when_up_to_date(self, temp_db_path: Path) -> None:
        run_migrations(temp_db_path, backup=False)
        reset_engine()

        result = run_migrations(temp_db_path, backup=True)

        assert result["status"] == "up_to_date"
        assert "backup_path" not in result
