import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from structbi import sql
from structbi.database import POSTGRES, SQLITE, count_placeholders
from app.db import to_pyformat


class TestNaming(unittest.TestCase):
    def test_physical_names(self) -> None:
        self.assertEqual(sql.physical_column(12), "_structbi_column_12")
        self.assertEqual(sql.physical_table(SQLITE, 1, 5), "_structbi_form_5")
        self.assertEqual(sql.physical_table(POSTGRES, 1, 5), "_structbi_space_1._structbi_form_5")
        self.assertEqual(sql.physical_table(POSTGRES, "3", "5"), "_structbi_space_3._structbi_form_5")
        self.assertEqual(sql.link_alias(7), "_link_7")

    def test_non_numeric_ids_never_reach_sql(self) -> None:
        for bad in ["1; DROP TABLE forms", "-1", 0, -3, True, "1.5", "abc", None, 2.0, "１"]:
            with self.subTest(bad=bad):
                with self.assertRaises(ValueError):
                    sql.physical_column(bad)
                with self.assertRaises(ValueError):
                    sql.physical_table(POSTGRES, bad, 1)

    def test_aliases_must_match_identifier_charset(self) -> None:
        self.assertEqual(sql.quote_alias("customer_name"), '"customer_name"')
        for bad in ['a"b', "a b", "", "x" * 65, "名前"]:
            with self.subTest(bad=bad):
                with self.assertRaises(ValueError):
                    sql.quote_alias(bad)
                with self.assertRaises(ValueError):
                    sql.projection_item("_1", 2, bad)


class TestStatements(unittest.TestCase):
    def test_create_table_uses_dialect_primary_key(self) -> None:
        self.assertEqual(
            sql.create_table(SQLITE, 1, 4, 9),
            "CREATE TABLE _structbi_form_4 (_structbi_column_9 INTEGER PRIMARY KEY AUTOINCREMENT, "
            "created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP)",
        )
        self.assertIsNone(sql.create_space(SQLITE, 1))
        self.assertEqual(sql.create_space(POSTGRES, 1), "CREATE SCHEMA IF NOT EXISTS _structbi_space_1")

    def test_add_column_maps_types(self) -> None:
        self.assertTrue(sql.add_column(POSTGRES, 1, 4, 10, "text", 20).endswith("_structbi_column_10 VARCHAR(20)"))
        self.assertTrue(sql.add_column(POSTGRES, 1, 4, 10, "integer").endswith("BIGINT"))
        self.assertTrue(sql.add_column(SQLITE, 1, 4, 10, "link").endswith("INTEGER"))
        with self.assertRaises(ValueError):
            sql.add_column(SQLITE, 1, 4, 10, "blob")

    def test_alter_column_length_only_where_supported(self) -> None:
        self.assertIsNone(sql.alter_column_length(SQLITE, 1, 4, 10, 30))
        self.assertEqual(
            sql.alter_column_length(POSTGRES, 1, 4, 10, 30),
            "ALTER TABLE _structbi_space_1._structbi_form_4 ALTER COLUMN _structbi_column_10 TYPE VARCHAR(30)",
        )

    def test_insert_returns_primary_key(self) -> None:
        statement = sql.insert_record(SQLITE, 1, 4, [10, 11], 9)
        self.assertEqual(
            statement,
            'INSERT INTO _structbi_form_4 (_structbi_column_10, _structbi_column_11) VALUES (?, ?) '
            'RETURNING _structbi_column_9 AS "id"',
        )
        self.assertEqual(count_placeholders(statement), 2)

    def test_update_binds_primary_key_last(self) -> None:
        statement = sql.update_record(SQLITE, 1, 4, [10, 11], 9)
        self.assertTrue(statement.endswith("WHERE _structbi_column_9 = ?"))
        self.assertEqual(count_placeholders(statement), 3)

    def test_empty_column_lists_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            sql.insert_record(SQLITE, 1, 4, [], 9)
        with self.assertRaises(ValueError):
            sql.update_record(SQLITE, 1, 4, [], 9)
        with self.assertRaises(ValueError):
            sql.select_records(SQLITE, 1, 4, [])

    def test_select_with_link_join(self) -> None:
        items = [sql.projection_item("_4", 9, "id"), sql.projection_item(sql.link_alias(11), 21, "customer")]
        join = sql.link_join(SQLITE, 1, 4, 11, 6, 20)
        statement = sql.select_records(SQLITE, 1, 4, items, [join], order_column_id=9)
        self.assertEqual(
            statement,
            'SELECT _4._structbi_column_9 AS "id", _link_11._structbi_column_21 AS "customer" '
            "FROM _structbi_form_4 AS _4 "
            "LEFT JOIN _structbi_form_6 AS _link_11 ON _link_11._structbi_column_20 = _4._structbi_column_11 "
            "ORDER BY _4._structbi_column_9",
        )


class TestPlaceholders(unittest.TestCase):
    def test_count_ignores_quoted_markers(self) -> None:
        self.assertEqual(count_placeholders("SELECT '?', ?, \"?\" FROM t WHERE a = ?"), 2)
        self.assertEqual(count_placeholders("SELECT 1"), 0)

    def test_pyformat_conversion(self) -> None:
        self.assertEqual(
            to_pyformat("SELECT * FROM t WHERE a = ? AND b LIKE '%?'"),
            "SELECT * FROM t WHERE a = %s AND b LIKE '%%?'",
        )
        self.assertEqual(to_pyformat('SELECT x AS "id" FROM t WHERE y = ?'), 'SELECT x AS "id" FROM t WHERE y = %s')


if __name__ == "__main__":
    unittest.main()
