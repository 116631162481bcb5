"""Durable key/value table backing the manifest cache.

One row per key with upsert semantics::

    id       integer primary key
    key      varchar(255) unique
    value    variable-length binary (LONGBLOB on MySQL)
    expires  timestamp, nullable

Schema version 1 stored ``value`` as text, which is too small for large
manifests on some databases and mangles binary payloads; ``ensure_schema``
widens such a column to binary (in place on MySQL, by rebuild elsewhere).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    create_engine,
    delete,
    inspect,
    insert,
    or_,
    select,
    text,
    update,
)
from sqlalchemy.dialects import mysql
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .errors import StorageError, StorageReadError, StorageWriteError


logger = logging.getLogger(__name__)

SCHEMA_VERSION = "2"
DEFAULT_TABLE = "cron_bridge_cache"
MYSQL_DIALECTS = ("mysql", "mariadb")


def create_cache_engine(url: str, **kwargs: Any) -> Engine:
    """Create an engine for ``url`` with SQLite-friendly defaults."""

    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(url, **kwargs)


def is_wide_value_type(value_type: Any, dialect_name: str) -> bool:
    """Whether a reflected ``value`` column already holds large binary rows.

    MySQL's plain ``BLOB`` is capped at 64 KB, so only ``LONGBLOB`` counts.
    """

    if dialect_name in MYSQL_DIALECTS:
        return isinstance(value_type, mysql.LONGBLOB)
    return isinstance(value_type, LargeBinary)


def _build_table(name: str, metadata: MetaData) -> Table:
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("key", String(255), nullable=False, unique=True),
        Column("value", LargeBinary().with_variant(mysql.LONGBLOB(), *MYSQL_DIALECTS)),
        Column("expires", DateTime(timezone=True), nullable=True),
    )


class CacheTable:
    """Upsert/get/delete access to the durable cache rows."""

    def __init__(self, engine: Engine | str, table_name: str = DEFAULT_TABLE) -> None:
        self.engine = create_cache_engine(engine) if isinstance(engine, str) else engine
        self.metadata = MetaData()
        self.table = _build_table(table_name, self.metadata)

    @property
    def name(self) -> str:
        return self.table.name

    # ------------------------------------------------------------------
    # Schema
    def ensure_schema(self) -> str:
        """Create or upgrade the table.

        Returns ``"created"``, ``"migrated"`` or ``"current"``.
        """

        try:
            inspector = inspect(self.engine)
            if not inspector.has_table(self.name):
                self.metadata.create_all(self.engine, tables=[self.table])
                logger.info("Created cache table %s", self.name)
                return "created"
            columns = {col["name"]: col for col in inspector.get_columns(self.name)}
            value_type = columns.get("value", {}).get("type")
            if is_wide_value_type(value_type, self.engine.dialect.name):
                return "current"
            self._widen_value_column()
        except SQLAlchemyError as exc:
            raise StorageError(f"Unable to prepare table {self.name}: {exc}") from exc
        logger.info("Migrated cache table %s to a binary value column", self.name)
        return "migrated"

    def modify_value_sql(self, dialect: Any) -> str:
        """``ALTER TABLE`` statement giving ``value`` its binary type on MySQL."""

        preparer = dialect.identifier_preparer
        column_type = self.table.c.value.type.compile(dialect=dialect)
        return (
            f"ALTER TABLE {preparer.format_table(self.table)} "
            f"MODIFY {preparer.quote('value')} {column_type}"
        )

    def _widen_value_column(self) -> None:
        if self.engine.dialect.name in MYSQL_DIALECTS:
            # DDL commits implicitly on MySQL, so the column is altered in place.
            with self.engine.begin() as conn:
                conn.execute(text(self.modify_value_sql(conn.dialect)))
            return
        # The table holds a handful of keys, so the rows are carried across
        # in memory while the table is rebuilt with the binary column.
        with self.engine.begin() as conn:
            rows = conn.execute(
                text(f'SELECT "key", "value", "expires" FROM "{self.name}"')
            ).fetchall()
            conn.execute(text(f'DROP TABLE "{self.name}"'))
            self.table.create(conn, checkfirst=False)
            for key, value, expires in rows:
                if isinstance(value, str):
                    value = value.encode("utf-8")
                if isinstance(expires, str):
                    expires = datetime.fromisoformat(expires)
                conn.execute(
                    insert(self.table).values(key=key, value=value, expires=expires)
                )

    # ------------------------------------------------------------------
    # Rows
    def get(self, key: str, *, now: Optional[datetime] = None) -> Optional[bytes]:
        """Return the value stored under ``key`` or ``None`` when absent."""

        now = now or datetime.now(timezone.utc)
        stmt = select(self.table.c.value).where(
            self.table.c.key == key,
            or_(self.table.c.expires.is_(None), self.table.c.expires > now),
        )
        try:
            with self.engine.connect() as conn:
                value = conn.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StorageReadError(f"Unable to read {key!r}: {exc}") from exc
        if isinstance(value, str):
            value = value.encode("utf-8")
        return value

    def upsert(
        self, key: str, value: bytes, *, expires: Optional[datetime] = None
    ) -> None:
        """Insert ``value`` under ``key`` or overwrite the existing row."""

        try:
            with self.engine.begin() as conn:
                self._upsert(conn, key, value, expires)
        except SQLAlchemyError as exc:
            raise StorageWriteError(f"Unable to write {key!r}: {exc}") from exc

    def _upsert(self, conn: Any, key: str, value: bytes, expires: Optional[datetime]) -> None:
        values = {"key": key, "value": value, "expires": expires}
        dialect = conn.dialect.name
        if dialect in ("sqlite", "postgresql"):
            if dialect == "sqlite":
                from sqlalchemy.dialects.sqlite import insert as dialect_insert
            else:
                from sqlalchemy.dialects.postgresql import insert as dialect_insert
            stmt = dialect_insert(self.table).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[self.table.c.key],
                set_={"value": stmt.excluded.value, "expires": stmt.excluded.expires},
            )
            conn.execute(stmt)
            return
        if dialect in MYSQL_DIALECTS:
            from sqlalchemy.dialects.mysql import insert as mysql_insert

            stmt = mysql_insert(self.table).values(**values)
            stmt = stmt.on_duplicate_key_update(
                value=stmt.inserted.value, expires=stmt.inserted.expires
            )
            conn.execute(stmt)
            return
        result = conn.execute(
            update(self.table)
            .where(self.table.c.key == key)
            .values(value=value, expires=expires)
        )
        if not result.rowcount:
            conn.execute(insert(self.table).values(**values))

    def delete(self, key: str) -> bool:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(delete(self.table).where(self.table.c.key == key))
        except SQLAlchemyError as exc:
            raise StorageWriteError(f"Unable to delete {key!r}: {exc}") from exc
        return bool(result.rowcount)
