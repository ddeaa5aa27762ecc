"""
Unit tests for apply error classification
"""

import pytest

from bulk_sync.errors import (
    DuplicateKeyError,
    PermanentApplyError,
    SourceReadError,
    TransientApplyError,
    classify_apply_error,
)
from tests.fakes import FakeDBError
from utils.db_pool import PoolExhaustedError


class OperationalError(Exception):
    """Same class name as the psycopg2 / pyodbc connection errors"""


class ProgrammingError(Exception):
    pass


class TestClassifyApplyError:
    """Test transient vs permanent classification"""

    @pytest.mark.parametrize("pgcode", ["40P01", "40001", "55P03", "57014", "08006", "53300"])
    def test_transient_sqlstates(self, pgcode):
        error = classify_apply_error(FakeDBError("boom", pgcode=pgcode))
        assert isinstance(error, TransientApplyError)
        assert error.retryable
        assert error.sqlstate == pgcode

    @pytest.mark.parametrize("pgcode", ["23505", "23514", "22P02", "42703"])
    def test_permanent_sqlstates(self, pgcode):
        error = classify_apply_error(FakeDBError("boom", pgcode=pgcode))
        assert isinstance(error, PermanentApplyError)
        assert not error.retryable

    def test_pyodbc_style_sqlstate_in_args(self):
        """pyodbc puts the SQLSTATE first in args"""
        exc = ProgrammingError("HYT00", "[HYT00] Query timeout expired")
        assert isinstance(classify_apply_error(exc), TransientApplyError)

        exc = ProgrammingError("23000", "[23000] Violation of PRIMARY KEY constraint")
        assert isinstance(classify_apply_error(exc), PermanentApplyError)

    def test_message_heuristics_without_sqlstate(self):
        """No SQLSTATE: fall back to type name and message"""
        assert isinstance(classify_apply_error(OperationalError("server closed")), TransientApplyError)
        assert isinstance(classify_apply_error(RuntimeError("deadlock detected")), TransientApplyError)

    def test_unknown_errors_are_permanent(self):
        error = classify_apply_error(ValueError("could not convert 'abc'"))
        assert isinstance(error, PermanentApplyError)
        assert isinstance(error.cause, ValueError)
        assert "ValueError" in str(error)

    def test_pool_exhaustion_is_transient(self):
        assert isinstance(classify_apply_error(PoolExhaustedError("busy")), TransientApplyError)

    def test_apply_errors_pass_through(self):
        original = PermanentApplyError("column mismatch")
        assert classify_apply_error(original) is original


class TestDuplicateKeyError:
    def test_is_source_read_error(self):
        error = DuplicateKeyError("sku-1", sequence=4)
        assert isinstance(error, SourceReadError)
        assert error.key == "sku-1"
        assert "batch 4" in str(error)
