from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import LargeBinary, Text, inspect, text
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.schema import CreateTable

from cron_bridge.errors import StorageReadError, StorageWriteError
from cron_bridge.storage import CacheTable, is_wide_value_type


def test_ensure_schema_creates_then_reports_current(table):
    assert table.ensure_schema() == "created"
    assert table.ensure_schema() == "current"
    assert inspect(table.engine).has_table(table.name)


def test_upsert_get_delete(table):
    table.ensure_schema()
    assert table.get("k") is None

    table.upsert("k", b"one")
    table.upsert("k", b"two")
    assert table.get("k") == b"two"

    with table.engine.connect() as conn:
        count = conn.execute(text(f'SELECT COUNT(*) FROM "{table.name}"')).scalar()
    assert count == 1

    assert table.delete("k") is True
    assert table.delete("k") is False
    assert table.get("k") is None


def test_expired_rows_are_absent(table):
    table.ensure_schema()
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    table.upsert("k", b"v", expires=now - timedelta(seconds=1))
    assert table.get("k", now=now) is None
    table.upsert("k", b"v", expires=now + timedelta(hours=1))
    assert table.get("k", now=now) == b"v"


def test_read_failure_raises(table):
    # no ensure_schema: the table does not exist
    with pytest.raises(StorageReadError):
        table.get("k")


def test_write_failure_raises(table):
    with pytest.raises(StorageWriteError):
        table.upsert("k", b"v")
    with pytest.raises(StorageWriteError):
        table.delete("k")


def test_text_column_is_widened_and_rows_kept(tmp_path):
    url = f"sqlite:///{tmp_path / 'old.db'}"
    table = CacheTable(url)
    with table.engine.begin() as conn:
        conn.execute(
            text(
                f'CREATE TABLE "{table.name}" ('
                "id INTEGER PRIMARY KEY AUTOINCREMENT, "
                '"key" VARCHAR(255) NOT NULL UNIQUE, '
                '"value" TEXT, '
                '"expires" DATETIME)'
            )
        )
        conn.execute(
            text(f'INSERT INTO "{table.name}" ("key", "value") VALUES (:k, :v)'),
            {"k": "cron_manifest", "v": "{}\n"},
        )

    assert table.ensure_schema() == "migrated"
    assert table.ensure_schema() == "current"
    assert table.get("cron_manifest") == b"{}\n"
    table.engine.dispose()


def test_value_column_is_longblob_on_mysql(table):
    ddl = str(CreateTable(table.table).compile(dialect=mysql.dialect()))
    assert "value LONGBLOB" in ddl.replace("`", "")

    assert "BYTEA" in str(CreateTable(table.table).compile(dialect=postgresql.dialect()))
    assert "LONGBLOB" not in str(CreateTable(table.table).compile(dialect=sqlite.dialect()))


def test_plain_blob_is_not_wide_enough_on_mysql():
    assert not is_wide_value_type(mysql.BLOB(), "mysql")
    assert not is_wide_value_type(mysql.LONGTEXT(), "mariadb")
    assert is_wide_value_type(mysql.LONGBLOB(), "mysql")
    assert is_wide_value_type(LargeBinary(), "sqlite")
    assert not is_wide_value_type(Text(), "postgresql")


def test_mysql_widening_alters_column_in_place(table):
    sql = table.modify_value_sql(mysql.dialect()).replace("`", "")
    assert sql == f"ALTER TABLE {table.name} MODIFY value LONGBLOB"
