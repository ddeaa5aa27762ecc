"""
Unit tests for target stores: statement rendering and transaction handling
"""

from unittest.mock import patch

import pytest

from bulk_sync.errors import PermanentApplyError
from bulk_sync.models import Batch, DeltaRow
from bulk_sync.targets import PostgresTargetStore, SQLServerTargetStore, create_target
from tests.fakes import FakePool, deadlock, make_connection, make_rows


def price_batch(keys, sequence=0):
    return Batch(sequence=sequence, rows=[DeltaRow(key=k, fields={"price": k * 10}) for k in keys])


class TestTargetValidation:
    """Test checks shared by every dialect"""

    def test_key_columns_cannot_be_updated(self):
        with pytest.raises(ValueError, match="Key columns cannot be updated: sku"):
            PostgresTargetStore(FakePool(), "products", "sku", ["sku", "price"])

    def test_invalid_table_name(self):
        with pytest.raises(ValueError):
            SQLServerTargetStore(FakePool(), "dbo.Products]; DROP", "Sku")

    def test_column_mismatch_is_permanent(self):
        target = PostgresTargetStore(FakePool(), "products", "sku", column_types={"sku": "int", "price": "int"})
        batch = Batch(sequence=4, rows=[DeltaRow(1, {"price": 1}), DeltaRow(2, {"stock": 3})])
        with pytest.raises(PermanentApplyError, match="column mismatch"):
            target.columns_for(batch)

    def test_update_columns_must_be_present(self):
        target = PostgresTargetStore(FakePool(), "products", "sku", ["price", "stock"])
        with pytest.raises(PermanentApplyError, match="missing=\\['stock'\\]"):
            target.columns_for(price_batch([1]))

    def test_invalid_column_name_is_permanent(self):
        target = PostgresTargetStore(FakePool(), "products", "sku")
        batch = Batch(sequence=0, rows=[DeltaRow(1, {"price; --": 1})])
        with pytest.raises(PermanentApplyError):
            target.columns_for(batch)

    def test_composite_key_shape_checked(self):
        target = SQLServerTargetStore(FakePool(), "stock", ["store", "sku"])
        with pytest.raises(PermanentApplyError, match="does not match key columns"):
            target.row_values(DeltaRow(key="A1", fields={"qty": 1}), ["qty"])
        assert target.row_values(DeltaRow(key=(1, "A1"), fields={"qty": 5}), ["qty"]) == (1, "A1", 5)

    def test_create_target_dispatches_on_dialect(self):
        assert isinstance(create_target("postgres", FakePool(), "t", "id"), PostgresTargetStore)
        target = create_target("mssql", FakePool(), "t", "id", maxdop=2)
        assert isinstance(target, SQLServerTargetStore)
        assert target.maxdop == 2


class TestPostgresTargetStore:
    """Test UPDATE ... FROM (VALUES ...) rendering and execution"""

    def test_render(self):
        target = PostgresTargetStore(
            FakePool(), "public.products", "sku",
            column_types={"sku": "text", "price": "numeric(12,2)"},
        )
        statement, template = target.render(["price"])
        assert statement == (
            'UPDATE "public"."products" AS t SET "price" = d."price" '
            'FROM (VALUES %s) AS d("sku", "price") WHERE t."sku" = d."sku"'
        )
        assert template == "(%s::text, %s::numeric(12,2))"

    def test_render_composite_key(self):
        target = PostgresTargetStore(FakePool(), "stock", ["store", "sku"], column_types={"qty": "int"})
        statement, template = target.render(["qty"])
        assert 'WHERE t."store" = d."store" AND t."sku" = d."sku"' in statement
        assert template == "(%s, %s, %s::int)"

    def test_invalid_type_name(self):
        with pytest.raises(ValueError):
            PostgresTargetStore(FakePool(), "products", "sku", column_types={"price": "int); DROP"})

    @patch("bulk_sync.targets.postgres.execute_values")
    def test_apply_batch_commits_one_statement(self, mock_execute_values):
        conn = make_connection(rowcount=2)
        pool = FakePool(conn)
        target = PostgresTargetStore(
            pool, "products", "sku",
            column_types={"sku": "int", "price": "int"},
            statement_timeout_ms=5000,
        )

        assert target.apply_batch(price_batch([1, 2])) == 2

        cursor = conn.cursor.return_value
        cursor.execute.assert_called_once_with("SET LOCAL statement_timeout = 5000")
        args, kwargs = mock_execute_values.call_args
        assert args[2] == [(1, 10), (2, 20)]
        assert kwargs["template"] == "(%s::int, %s::int)"
        assert kwargs["page_size"] == 2
        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()
        assert conn.autocommit is True
        assert pool.released == 1

    @patch("bulk_sync.targets.postgres.execute_values")
    def test_failure_rolls_back_whole_batch(self, mock_execute_values):
        conn = make_connection()
        mock_execute_values.side_effect = deadlock()
        target = PostgresTargetStore(FakePool(conn), "products", "sku", column_types={"sku": "int", "price": "int"})

        with pytest.raises(Exception, match="deadlock"):
            target.apply_batch(price_batch([1]))

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        conn.cursor.return_value.close.assert_called_once()
        assert conn.autocommit is True

    @patch("bulk_sync.targets.postgres.execute_values")
    def test_column_types_loaded_once_from_catalog(self, mock_execute_values):
        conn = make_connection(rowcount=1, fetchall=[("sku", "integer"), ("price", "numeric")])
        target = PostgresTargetStore(FakePool(conn), "products", "sku")

        target.apply_batch(price_batch([1]))
        target.apply_batch(price_batch([2], sequence=1))

        catalog_queries = [c for c in conn.cursor.return_value.execute.call_args_list if "pg_attribute" in c.args[0]]
        assert len(catalog_queries) == 1
        assert catalog_queries[0].args[1] == ('"products"',)
        assert mock_execute_values.call_args.kwargs["template"] == "(%s::integer, %s::numeric)"

    def test_unknown_column_is_permanent(self):
        conn = make_connection(fetchall=[("sku", "integer")])
        target = PostgresTargetStore(FakePool(conn), "products", "sku")
        with pytest.raises(PermanentApplyError, match="price not found"):
            target.apply_batch(price_batch([1]))

    def test_missing_table_is_permanent(self):
        target = PostgresTargetStore(FakePool(make_connection(fetchall=[])), "products", "sku")
        with pytest.raises(PermanentApplyError, match="does not exist"):
            target.apply_batch(price_batch([1]))


class TestSQLServerTargetStore:
    """Test MERGE rendering and parameter-limit chunking"""

    def test_render(self):
        target = SQLServerTargetStore(FakePool(), "dbo.Products", "Sku", maxdop=4)
        assert target.render(["Price"], 2) == (
            "MERGE [dbo].[Products] AS t USING (VALUES (?, ?), (?, ?)) AS d ([Sku], [Price]) "
            "ON t.[Sku] = d.[Sku] WHEN MATCHED THEN UPDATE SET t.[Price] = d.[Price] "
            "OPTION (MAXDOP 4);"
        )

    def test_merge_never_inserts(self):
        statement = SQLServerTargetStore(FakePool(), "Products", "Sku").render(["Price"], 1)
        assert "NOT MATCHED" not in statement
        assert "INSERT" not in statement

    def test_rows_per_statement_stays_under_parameter_limit(self):
        target = SQLServerTargetStore(FakePool(), "Products", "Sku")
        assert target.rows_per_statement(1) == 1000
        assert target.rows_per_statement(9) == 209
        assert target.rows_per_statement(5000) == 1

    def test_large_batch_split_in_one_transaction(self):
        conn = make_connection(rowcount=5)
        target = SQLServerTargetStore(FakePool(conn), "Products", "Sku", lock_timeout_ms=2000)
        batch = Batch(sequence=0, rows=make_rows(range(12), **{f"c{i}": i for i in range(174)}))

        assert target.rows_per_statement(174) == 11
        assert target.apply_batch(batch) == 10

        cursor = conn.cursor.return_value
        executed = cursor.execute.call_args_list
        assert executed[0].args == ("SET LOCK_TIMEOUT 2000",)
        assert len(executed) == 3
        assert len(executed[1].args[1]) == 11 * 175
        assert len(executed[2].args[1]) == 175
        conn.commit.assert_called_once()

    def test_failure_in_later_chunk_rolls_back(self):
        conn = make_connection(rowcount=1000)
        cursor = conn.cursor.return_value
        cursor.execute.side_effect = [None, Exception("40001", "deadlock victim")]
        target = SQLServerTargetStore(FakePool(conn), "Products", "Sku")

        with pytest.raises(Exception, match="deadlock victim"):
            target.apply_batch(price_batch(range(1500)))

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
