# Overview: Schema-adaptive writes into the fulfillment store; absorbs drift and collisions by rewriting the payload.

"""
Schema-Adaptive Writer

WHY: The fulfillment store is migrated on its own schedule. A write built
against yesterday's columns must still land today: unknown columns are
dropped, newly required columns are filled from resolvers, recipient/step
collisions pick a free recipient, and FKs into the legacy jobs table are
satisfied with shim rows.

DESIGN:
- Classified StoreError codes only; no error text is inspected here
- Every iteration strictly shrinks the problem (a dropped column is gone,
  a rejected value is never retried, a shim is inserted at most once)
- Bounded by WRITER_MAX_ATTEMPTS; on stop the last error is returned
  verbatim together with the final attempted payload
- Callers must not assume every supplied field persisted (see dropped_columns)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator

from flask import current_app
from sqlalchemy import select

from ..errors import CapacityError, SchemaDriftError
from ..models.dispatch import TERMINAL_JOB_STATUSES
from orderflow.time_utils import tomorrow
from .store_client import StoreClient, StoreError, StoreErrorCode, dispatch_store, to_jsonable


@dataclass
class WriteResult:
    row: dict | None
    error: Exception | None
    payload: dict
    attempts: int
    dropped_columns: list[str] = field(default_factory=list)
    substitutions: dict[str, Any] = field(default_factory=dict)
    shims: list[tuple[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> dict | None:
        """Return the written row, or raise the domain error for the failure."""
        if self.error is None:
            return self.row
        if isinstance(self.error, CapacityError):
            raise self.error
        details = {"payload": to_jsonable(self.payload), "attempts": self.attempts}
        if isinstance(self.error, StoreError):
            details["store_error"] = self.error.to_dict()
        raise SchemaDriftError(str(self.error), details=details)


# =============================================================================
# FIELD RESOLVERS
# =============================================================================
# Each resolver yields candidate values in priority order:
#   env default -> most recent existing row -> workflow tables -> computed default

Resolver = Callable[[StoreClient, str, dict], Iterator[Any]]


def _recent_values(store: StoreClient, table: str, column: str, where: dict | None = None) -> Iterator[Any]:
    if not store.has_table(table):
        return
    tbl = store.table(table)
    if column not in tbl.c:
        return
    stmt = select(tbl.c[column]).where(tbl.c[column].isnot(None))
    for key, value in (where or {}).items():
        if key in tbl.c and value is not None:
            stmt = stmt.where(tbl.c[key] == value)
    if "created_at" in tbl.c:
        stmt = stmt.order_by(tbl.c.created_at.desc())
    for row in store.execute(stmt.limit(20)):
        yield row[column]


def _ordered_values(store: StoreClient, table: str, column: str, order_by: Iterable[str], where: dict | None = None) -> Iterator[Any]:
    if not store.has_table(table):
        return
    tbl = store.table(table)
    if column not in tbl.c:
        return
    where = {k: v for k, v in (where or {}).items() if k in tbl.c and v is not None}
    for row in store.select(table, where, order_by=[c for c in order_by if c in tbl.c]):
        yield row[column]


def resolve_sequence_id(store: StoreClient, table: str, payload: dict) -> Iterator[Any]:
    default = current_app.config.get("DEFAULT_DISPATCH_SEQUENCE_ID")
    if default:
        yield default
    yield from _recent_values(store, table, "sequence_id")
    yield from _ordered_values(store, "sequences", "sequence_id", ["created_at", "sequence_id"])


def resolve_step_id(store: StoreClient, table: str, payload: dict) -> Iterator[Any]:
    default = current_app.config.get("DEFAULT_DISPATCH_STEP_ID")
    if default:
        yield default
    scope = {"sequence_id": payload.get("sequence_id")}
    yield from _recent_values(store, table, "step_id", scope)
    yield from _ordered_values(store, "sequence_steps", "step_id", ["position", "step_id"], scope)
    yield from _ordered_values(store, "sequence_steps", "step_id", ["position", "step_id"])


def resolve_recipient_id(store: StoreClient, table: str, payload: dict) -> Iterator[Any]:
    default = current_app.config.get("DEFAULT_DISPATCH_RECIPIENT_ID")
    if default:
        yield default
    yield from _recent_values(store, table, "recipient_id")
    yield from _ordered_values(store, "recipients", "recipient_id", ["created_at", "recipient_id"])


def resolve_due_at(store: StoreClient, table: str, payload: dict) -> Iterator[Any]:
    yield tomorrow()


RESOLVERS: dict[str, Resolver] = {
    "sequence_id": resolve_sequence_id,
    "step_id": resolve_step_id,
    "recipient_id": resolve_recipient_id,
    "due_at": resolve_due_at,
}


def free_recipients(store: StoreClient, jobs_table: str, step_id: Any) -> list[Any]:
    """Recipients holding no active job at step_id, oldest first."""
    recipients = store.table("recipients")
    jobs = store.table(jobs_table)
    busy = select(jobs.c.recipient_id).where(jobs.c.step_id == step_id)
    if "status" in jobs.c:
        busy = busy.where(jobs.c.status.notin_(TERMINAL_JOB_STATUSES))
    stmt = select(recipients.c.recipient_id).where(recipients.c.recipient_id.notin_(busy))
    if "created_at" in recipients.c:
        stmt = stmt.order_by(recipients.c.created_at.asc())
    stmt = stmt.order_by(recipients.c.recipient_id.asc())
    return [row["recipient_id"] for row in store.execute(stmt)]


# =============================================================================
# WRITER
# =============================================================================

class SchemaAdaptiveWriter:
    def __init__(
        self,
        store: StoreClient,
        *,
        max_attempts: int = 50,
        shim_tables: Iterable[str] = ("jobs",),
        resolvers: dict[str, Resolver] | None = None,
    ):
        self.store = store
        self.max_attempts = max_attempts
        self.shim_tables = tuple(shim_tables)
        self.resolvers = dict(RESOLVERS if resolvers is None else resolvers)

    def write(self, table: str, payload: dict, *, where: dict | None = None) -> WriteResult:
        result = WriteResult(row=None, error=None, payload=dict(payload), attempts=0)
        tried: dict[str, list] = {}

        while result.attempts < self.max_attempts:
            result.attempts += 1
            try:
                result.row = self._execute(table, result.payload, where)
                result.error = None
                return result
            except StoreError as err:
                result.error = err
                try:
                    progressed = self._absorb(table, where, err, result, tried)
                except CapacityError as cap:
                    result.error = cap
                    return result
                if not progressed:
                    break

        current_app.logger.warning(
            "Schema-adaptive write to %s gave up after %s attempt(s): %s",
            table, result.attempts, result.error,
        )
        return result

    def _execute(self, table: str, payload: dict, where: dict | None) -> dict | None:
        if where is None:
            return self.store.insert(table, payload)
        rows = self.store.update(table, payload, where)
        return rows[0] if rows else None

    def _absorb(self, table: str, where: dict | None, err: StoreError, result: WriteResult, tried: dict) -> bool:
        payload = result.payload

        if err.code == StoreErrorCode.UNKNOWN_COLUMN:
            if err.column and err.column in payload:
                payload.pop(err.column)
                result.dropped_columns.append(err.column)
                current_app.logger.info("Dropped unknown column %s.%s", table, err.column)
                return True
            return False

        if err.code == StoreErrorCode.NOT_NULL_VIOLATION:
            return self._substitute(table, err.column, result, tried)

        if err.code == StoreErrorCode.UNIQUE_VIOLATION:
            if {"recipient_id", "step_id"} <= set(err.columns):
                return self._reassign_recipient(table, where, result, tried)
            return False

        if err.code == StoreErrorCode.FOREIGN_KEY_VIOLATION:
            if err.referenced_table in self.shim_tables:
                return self._insert_shim(err, result)
            if err.column in self.resolvers:
                tried.setdefault(err.column, []).append(err.value)
                return self._substitute(table, err.column, result, tried)
            return False

        return False

    def _substitute(self, table: str, column: str | None, result: WriteResult, tried: dict) -> bool:
        if column not in self.resolvers:
            return False
        rejected = tried.setdefault(column, [])
        if result.payload.get(column) is not None and result.payload[column] not in rejected:
            rejected.append(result.payload[column])
        for candidate in self.resolvers[column](self.store, table, result.payload):
            if candidate is None or candidate in rejected:
                continue
            rejected.append(candidate)
            result.payload[column] = candidate
            result.substitutions[column] = candidate
            current_app.logger.info("Resolved %s.%s -> %s", table, column, candidate)
            return True
        return False

    def _reassign_recipient(self, table: str, where: dict | None, result: WriteResult, tried: dict) -> bool:
        payload = result.payload
        step_id = payload.get("step_id")
        if step_id is None and where is not None:
            current = self.store.select(table, where, limit=1)
            step_id = current[0].get("step_id") if current else None

        rejected = tried.setdefault("recipient_id", [])
        if payload.get("recipient_id") is not None and payload["recipient_id"] not in rejected:
            rejected.append(payload["recipient_id"])

        for candidate in free_recipients(self.store, table, step_id):
            if candidate in rejected:
                continue
            rejected.append(candidate)
            payload["recipient_id"] = candidate
            result.substitutions["recipient_id"] = candidate
            current_app.logger.info("Reassigned %s to free recipient %s at step %s", table, candidate, step_id)
            return True

        raise CapacityError(
            f"No recipient is free at step {step_id}",
            details={"table": table, "step_id": step_id, "rejected_recipients": list(rejected)},
        )

    def _insert_shim(self, err: StoreError, result: WriteResult) -> bool:
        key = (err.referenced_table, err.value)
        if err.value is None or key in result.shims:
            return False
        try:
            self.store.insert(err.referenced_table, {err.referenced_column: err.value})
        except StoreError as shim_err:
            if shim_err.code != StoreErrorCode.UNIQUE_VIOLATION:
                current_app.logger.warning("Shim insert into %s failed: %s", err.referenced_table, shim_err)
                return False
        result.shims.append(key)
        current_app.logger.info("Inserted shim row %s.%s=%s", err.referenced_table, err.referenced_column, err.value)
        return True


def get_writer(store: StoreClient | None = None) -> SchemaAdaptiveWriter:
    return SchemaAdaptiveWriter(
        store or dispatch_store(),
        max_attempts=int(current_app.config.get("WRITER_MAX_ATTEMPTS", 50)),
        shim_tables=current_app.config.get("WRITER_SHIM_TABLES", ("jobs",)),
    )


def write(table: str, payload: dict, *, where: dict | None = None) -> WriteResult:
    return get_writer().write(table, payload, where=where)
