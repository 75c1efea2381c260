# Overview: Structured-error table client for the fulfillment store; wraps SQLAlchemy Core over a reflected schema.

"""
Store Client

WHY: The fulfillment store's schema drifts independently of this codebase.
Writes cannot trust ORM models, so every read/write runs against the schema
as reflected from the live database (the "schema cache").

DESIGN:
- select / insert / update / delete, each in its own transaction
- driver errors are translated exactly once, here, into StoreError with a
  closed StoreErrorCode; nothing downstream inspects error text
- unknown columns are caught against the schema cache before execution
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable

from flask import current_app
from sqlalchemy import MetaData, Table, delete, exists, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, NoSuchTableError

from ..extensions import db


class StoreErrorCode(str, Enum):
    UNKNOWN_COLUMN = "unknown_column"
    NOT_NULL_VIOLATION = "not_null_violation"
    UNIQUE_VIOLATION = "unique_violation"
    FOREIGN_KEY_VIOLATION = "foreign_key_violation"
    UNKNOWN_TABLE = "unknown_table"
    OTHER = "other"


@dataclass(eq=False)
class StoreError(Exception):
    code: StoreErrorCode
    message: str
    table: str
    column: str | None = None
    columns: tuple[str, ...] = field(default_factory=tuple)
    value: Any = None
    referenced_table: str | None = None
    referenced_column: str | None = None
    constraint: str | None = None

    def __post_init__(self):
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.table}: {self.message}"

    def to_dict(self) -> dict:
        return {
            "code": self.code.value,
            "message": self.message,
            "table": self.table,
            "column": self.column,
            "columns": list(self.columns),
            "value": to_jsonable(self.value),
            "referenced_table": self.referenced_table,
            "referenced_column": self.referenced_column,
            "constraint": self.constraint,
        }


# Postgres SQLSTATE codes
_PG_NOT_NULL = "23502"
_PG_FOREIGN_KEY = "23503"
_PG_UNIQUE = "23505"
_PG_UNDEFINED_COLUMN = "42703"
_PG_UNDEFINED_TABLE = "42P01"

# SQLite reports constraint failures as "<KIND> constraint failed: t.a, t.b"
_SQLITE_CONSTRAINT = re.compile(r"^(NOT NULL|UNIQUE|FOREIGN KEY) constraint failed(?::\s*(.*))?$")
_SQLITE_NO_COLUMN = re.compile(r"has no column named (\w+)")
_PG_NO_COLUMN = re.compile(r'column "([^"]+)"')
_PG_KEY_DETAIL = re.compile(r"Key \(([^)]+)\)=")


def to_jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def _schema_cache() -> dict:
    return current_app.extensions.setdefault("store_schema_cache", {})


class StoreClient:
    """Table-level access to one SQLAlchemy bind with classified errors."""

    def __init__(self, bind_key: str | None = "dispatch"):
        self.bind_key = bind_key

    @property
    def engine(self):
        return db.engines[self.bind_key]

    # -------------------------------------------------------------------------
    # Schema cache
    # -------------------------------------------------------------------------

    def _metadata(self) -> MetaData:
        return _schema_cache().setdefault(self.bind_key, MetaData())

    def refresh_schema(self) -> None:
        _schema_cache().pop(self.bind_key, None)

    def table(self, name: str) -> Table:
        metadata = self._metadata()
        if name in metadata.tables:
            return metadata.tables[name]
        try:
            return Table(name, metadata, autoload_with=self.engine)
        except NoSuchTableError:
            raise StoreError(StoreErrorCode.UNKNOWN_TABLE, f"Table {name} does not exist", table=name)

    def has_table(self, name: str) -> bool:
        try:
            self.table(name)
        except StoreError:
            return False
        return True

    def columns(self, name: str) -> list[str]:
        return [c.name for c in self.table(name).columns]

    def _table_for(self, name: str, *keysets: dict) -> Table:
        """Cached table, re-reflected once if any key is missing from it."""
        tbl = self.table(name)
        if any(key not in tbl.c for keys in keysets for key in keys):
            # The live table may have gained the column since it was reflected
            self.refresh_schema()
            tbl = self.table(name)
        for keys in keysets:
            self._check_columns(tbl, keys)
        return tbl

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def execute(self, statement) -> list[dict]:
        """Run an arbitrary Core SELECT built from self.table(...)."""
        try:
            with self.engine.connect() as conn:
                return [dict(r) for r in conn.execute(statement).mappings().all()]
        except DBAPIError as exc:
            raise self._classify(exc, None, {}) from exc

    def select(
        self,
        table: str,
        where: dict | None = None,
        *,
        order_by: Iterable[str] | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict]:
        tbl = self._table_for(table, where or {})
        stmt = select(tbl).where(*self._conditions(tbl, where or {}))
        for col_name in order_by or ():
            if col_name in tbl.c:
                col = tbl.c[col_name]
                stmt = stmt.order_by(col.desc() if descending else col.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            with self.engine.connect() as conn:
                return [dict(r) for r in conn.execute(stmt).mappings().all()]
        except DBAPIError as exc:
            raise self._classify(exc, tbl, {}) from exc

    def insert(self, table: str, payload: dict) -> dict:
        tbl = self._table_for(table, payload)
        try:
            with self.engine.begin() as conn:
                result = conn.execute(tbl.insert().values(**payload))
                key = self._primary_key_filter(tbl, payload, result.inserted_primary_key)
                row = conn.execute(select(tbl).where(*key)).mappings().first()
        except DBAPIError as exc:
            raise self._classify(exc, tbl, payload) from exc
        return dict(row) if row is not None else dict(payload)

    def update(self, table: str, values: dict, where: dict) -> list[dict]:
        tbl = self._table_for(table, values, where)
        conditions = self._conditions(tbl, where)
        # Re-select using the post-update values of any filtered column
        after = {**where, **{k: v for k, v in values.items() if k in where}}
        try:
            with self.engine.begin() as conn:
                conn.execute(update(tbl).where(*conditions).values(**values))
                rows = conn.execute(select(tbl).where(*self._conditions(tbl, after))).mappings().all()
        except DBAPIError as exc:
            raise self._classify(exc, tbl, values) from exc
        return [dict(r) for r in rows]

    def delete(self, table: str, where: dict) -> int:
        tbl = self._table_for(table, where)
        try:
            with self.engine.begin() as conn:
                result = conn.execute(delete(tbl).where(*self._conditions(tbl, where)))
        except DBAPIError as exc:
            raise self._classify(exc, tbl, {}) from exc
        return result.rowcount

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _conditions(tbl: Table, where: dict) -> list:
        conditions = []
        for key, value in where.items():
            col = tbl.c[key]
            if isinstance(value, (list, tuple, set)):
                conditions.append(col.in_(list(value)))
            elif value is None:
                conditions.append(col.is_(None))
            else:
                conditions.append(col == value)
        return conditions

    @staticmethod
    def _check_columns(tbl: Table, payload: dict) -> None:
        for key in payload:
            if key not in tbl.c:
                raise StoreError(
                    StoreErrorCode.UNKNOWN_COLUMN,
                    f"Could not find the '{key}' column of '{tbl.name}' in the schema cache",
                    table=tbl.name,
                    column=key,
                )

    @staticmethod
    def _primary_key_filter(tbl: Table, payload: dict, inserted: Any) -> list:
        conditions = []
        for i, col in enumerate(tbl.primary_key.columns):
            value = payload.get(col.name)
            if value is None and inserted is not None and i < len(inserted):
                value = inserted[i]
            conditions.append(col == value)
        return conditions

    def _unique_columns(self, tbl: Table, constraint_name: str | None, detail: str | None) -> tuple[str, ...]:
        if constraint_name:
            for constraint in tbl.constraints:
                if constraint.name == constraint_name:
                    return tuple(c.name for c in constraint.columns)
            for index in tbl.indexes:
                if index.name == constraint_name:
                    return tuple(c.name for c in index.columns)
        match = _PG_KEY_DETAIL.search(detail or "")
        if match:
            return tuple(c.strip() for c in match.group(1).split(","))
        return ()

    def _foreign_key_error(self, tbl: Table, payload: dict, message: str, constraint: str | None) -> StoreError:
        """Attribute a FK failure to the payload column whose target row is missing."""
        for fk in tbl.foreign_keys:
            column = fk.parent.name
            value = payload.get(column)
            if value is None:
                continue
            target = fk.column
            lookup = select(exists().where(target == value))
            with self.engine.connect() as conn:
                present = conn.execute(lookup).scalar()
            if not present:
                return StoreError(
                    StoreErrorCode.FOREIGN_KEY_VIOLATION,
                    message,
                    table=tbl.name,
                    column=column,
                    value=value,
                    referenced_table=target.table.name,
                    referenced_column=target.name,
                    constraint=constraint,
                )
        return StoreError(StoreErrorCode.FOREIGN_KEY_VIOLATION, message, table=tbl.name, constraint=constraint)

    def _classify(self, exc: DBAPIError, tbl: Table | None, payload: dict) -> StoreError:
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        diag = getattr(orig, "diag", None)
        message = str(orig).strip()
        table_name = tbl.name if tbl is not None else "?"

        sqlite_kind, sqlite_cols = None, ()
        match = _SQLITE_CONSTRAINT.match(message)
        if match:
            sqlite_kind = match.group(1)
            sqlite_cols = tuple(
                part.strip().split(".")[-1] for part in (match.group(2) or "").split(",") if part.strip()
            )

        if isinstance(exc, IntegrityError):
            if sqlstate == _PG_NOT_NULL or sqlite_kind == "NOT NULL":
                column = getattr(diag, "column_name", None) or (sqlite_cols[0] if sqlite_cols else None)
                if tbl is not None and column and column not in tbl.c:
                    self.refresh_schema()
                return StoreError(
                    StoreErrorCode.NOT_NULL_VIOLATION, message, table=table_name,
                    column=column, value=payload.get(column) if column else None,
                )
            if sqlstate == _PG_UNIQUE or sqlite_kind == "UNIQUE":
                constraint = getattr(diag, "constraint_name", None)
                columns = sqlite_cols or (
                    self._unique_columns(tbl, constraint, getattr(diag, "message_detail", None))
                    if tbl is not None else ()
                )
                return StoreError(
                    StoreErrorCode.UNIQUE_VIOLATION, message, table=table_name,
                    columns=columns, constraint=constraint,
                )
            if sqlstate == _PG_FOREIGN_KEY or sqlite_kind == "FOREIGN KEY":
                constraint = getattr(diag, "constraint_name", None)
                if tbl is None:
                    return StoreError(StoreErrorCode.FOREIGN_KEY_VIOLATION, message, table=table_name)
                return self._foreign_key_error(tbl, payload, message, constraint)

        if sqlstate == _PG_UNDEFINED_COLUMN or "has no column named" in message:
            # Schema cache is stale: the live table lost a column we reflected
            self.refresh_schema()
            match = _SQLITE_NO_COLUMN.search(message) or _PG_NO_COLUMN.search(message)
            return StoreError(
                StoreErrorCode.UNKNOWN_COLUMN, message, table=table_name,
                column=match.group(1) if match else None,
            )
        if sqlstate == _PG_UNDEFINED_TABLE or message.startswith("no such table"):
            self.refresh_schema()
            return StoreError(StoreErrorCode.UNKNOWN_TABLE, message, table=table_name)

        return StoreError(StoreErrorCode.OTHER, message, table=table_name)


def dispatch_store() -> StoreClient:
    return StoreClient("dispatch")
