"""Tests for HealthDatabase - schema creation, versioning, lifecycle."""

from __future__ import annotations

import sqlite3

import pytest

from healthmitra.core.storage.database import SCHEMA_VERSION, DatabaseError, HealthDatabase


class TestInitialization:
    def test_in_memory_initialize(self):
        db = HealthDatabase(":memory:")
        db.initialize()
        assert db.connection is not None
        db.close()

    def test_double_initialize_keeps_connection(self):
        db = HealthDatabase(":memory:")
        db.initialize()
        conn1 = db.connection
        db.initialize()
        assert db.connection is conn1
        db.close()

    def test_connection_before_init_raises(self):
        db = HealthDatabase(":memory:")
        with pytest.raises(DatabaseError, match="not initialized"):
            _ = db.connection

    def test_context_manager_closes(self):
        with HealthDatabase(":memory:") as db:
            assert db.connection is not None
        with pytest.raises(DatabaseError):
            _ = db.connection


class TestSchema:
    def test_schema_version_recorded(self):
        with HealthDatabase(":memory:") as db:
            assert db.get_schema_version() == SCHEMA_VERSION

    def test_tables_created(self):
        expected_tables = {
            "observations",
            "insights",
            "insight_evidence",
            "subject_contacts",
            "schema_version",
            "audit_log",
        }
        with HealthDatabase(":memory:") as db:
            cursor = db.connection.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
            )
            tables = {row[0] for row in cursor.fetchall()}
            assert expected_tables <= tables

    def test_indexes_created(self):
        expected_indexes = {
            "idx_obs_subject_param",
            "idx_insights_subject",
            "idx_insights_severity",
            "idx_evidence_insight",
            "idx_audit_timestamp",
            "idx_audit_action",
            "idx_audit_tool",
        }
        with HealthDatabase(":memory:") as db:
            cursor = db.connection.execute("SELECT name FROM sqlite_master WHERE type='index'")
            indexes = {row[0] for row in cursor.fetchall()}
            for idx in expected_indexes:
                assert idx in indexes, f"Missing index: {idx}"

    def test_foreign_keys_enabled(self):
        with HealthDatabase(":memory:") as db:
            assert db.connection.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_evidence_requires_existing_insight(self):
        with HealthDatabase(":memory:") as db:
            with pytest.raises(sqlite3.IntegrityError):
                db.connection.execute(
                    "INSERT INTO insight_evidence (insight_id, observation_id, parameter) "
                    "VALUES ('missing', 'obs-1', 'weight')"
                )

    def test_insight_narrative_column_is_encrypted_field(self):
        with HealthDatabase(":memory:") as db:
            columns = {
                row["name"] for row in db.connection.execute("PRAGMA table_info(insights)")
            }
            assert "narrative_enc" in columns
            assert "message" not in columns


class TestFileDatabase:
    def test_creates_parent_directories(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "insights.db"
        db = HealthDatabase(str(db_path))
        db.initialize()
        assert db_path.exists()
        assert db.get_schema_version() == SCHEMA_VERSION
        db.close()

    def test_reopen_does_not_duplicate_version_rows(self, tmp_path):
        db_path = str(tmp_path / "insights.db")
        with HealthDatabase(db_path):
            pass
        with HealthDatabase(db_path) as db:
            rows = db.connection.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
            assert rows == 1
            assert db.get_schema_version() == SCHEMA_VERSION

    def test_wal_mode_on_file(self, tmp_path):
        with HealthDatabase(str(tmp_path / "insights.db")) as db:
            mode = db.connection.execute("PRAGMA journal_mode").fetchone()[0].lower()
            assert mode == "wal"


class TestClose:
    def test_double_close_is_safe(self):
        db = HealthDatabase(":memory:")
        db.initialize()
        db.close()
        db.close()
