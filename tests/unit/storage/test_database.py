"""
Unit tests for database configuration and connection management.

These tests validate engine creation, schema initialization and the
commit/rollback behaviour of session_scope.
"""

import pytest
from unittest.mock import patch, MagicMock
from sqlalchemy import inspect
from sqlalchemy.pool import StaticPool

from expense_importer.exceptions import StorageError
from expense_importer.storage.database import Database, create_db_engine
from expense_importer.storage.models import Merchant


class TestDatabase:
    """Test suite for Database and create_db_engine."""

    def test_in_memory_sqlite_uses_static_pool(self):
        engine = create_db_engine("sqlite://")
        assert isinstance(engine.pool, StaticPool)
        engine.dispose()

    def test_file_sqlite_creates_parent_directory(self, tmp_path):
        db_file = tmp_path / "nested" / "expenses.db"

        engine = create_db_engine(f"sqlite:///{db_file}")

        assert db_file.parent.is_dir()
        engine.dispose()

    def test_init_db_creates_tables(self, database):
        tables = set(inspect(database.engine).get_table_names())
        assert {"merchants", "categories", "transactions"} <= tables

    @patch('expense_importer.storage.database.Base')
    def test_init_db_error_handling(self, mock_base):
        """Schema creation failures surface as StorageError."""
        mock_metadata = MagicMock()
        mock_metadata.create_all.side_effect = Exception("DB error")
        mock_base.metadata = mock_metadata

        db = Database("sqlite://")
        with pytest.raises(StorageError) as excinfo:
            db.init_db()

        assert "Failed to initialize database: DB error" in str(excinfo.value)

    def test_session_scope_commits(self, database):
        with database.session_scope() as session:
            session.add(Merchant(merchant_name="Walmart"))

        with database.session_scope() as session:
            assert session.query(Merchant).count() == 1

    def test_session_scope_rolls_back_and_reraises(self, database):
        with pytest.raises(RuntimeError, match="boom"):
            with database.session_scope() as session:
                session.add(Merchant(merchant_name="Walmart"))
                session.flush()
                raise RuntimeError("boom")

        with database.session_scope() as session:
            assert session.query(Merchant).count() == 0
