from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
import uuid
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, TypeVar

from flexkids.core.errors import DuplicateKeyError, NotInitializedError, UnknownCollectionError
from flexkids.domain.models import (
    COLLECTIONS,
    STATUS_DEAD_LETTER,
    STATUS_PENDING,
    STATUS_SYNCED,
    Record,
    SyncOperation,
    SyncQueueEntry,
    generate_local_id,
)
from flexkids.domain.sync_models import QueueStats
from flexkids.infrastructure.db import DEFAULT_BUSY_TIMEOUT_MS, get_connection
from flexkids.infrastructure.migrations import MigrationRunner
from flexkids.infrastructure.sqlite_uow import transaccion

logger = logging.getLogger(__name__)

_LOCKED_RETRY_BACKOFF_SECONDS = (0.05, 0.15, 0.3)
_T = TypeVar("_T")

_QUEUE_COLUMNS = "seq, id, collection, operation, data, timestamp, synced, status, retry_count, last_error, next_attempt_at"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _json_default(value: object) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Tipo no serializable en el Local Store: {type(value).__name__}")


def _dump_payload(record: Record) -> str:
    payload = {key: value for key, value in record.items() if key != "synced"}
    return json.dumps(payload, ensure_ascii=False, default=_json_default)


def _is_locked_operational_error(error: sqlite3.OperationalError) -> bool:
    return "locked" in str(error).lower()


def _run_with_locked_retry(operation: Callable[[], _T], *, context: str) -> _T:
    for attempt, delay_seconds in enumerate(_LOCKED_RETRY_BACKOFF_SECONDS, start=1):
        try:
            return operation()
        except sqlite3.OperationalError as error:
            if not _is_locked_operational_error(error):
                raise
            logger.warning(
                "SQLite locked in %s (attempt=%s/%s); retrying in %.0fms",
                context,
                attempt,
                len(_LOCKED_RETRY_BACKOFF_SECONDS),
                delay_seconds * 1000,
            )
            time.sleep(delay_seconds)

    return operation()


def _row_to_record(row: sqlite3.Row) -> Record:
    record = json.loads(row["payload"])
    record["id"] = row["id"]
    record["synced"] = bool(row["synced"])
    return record


def _row_to_entry(row: sqlite3.Row) -> SyncQueueEntry:
    return SyncQueueEntry(
        id=row["id"],
        collection=row["collection"],
        operation=row["operation"],
        data=json.loads(row["data"]),
        timestamp=int(row["timestamp"]),
        synced=bool(row["synced"]),
        seq=int(row["seq"]),
        status=row["status"],
        retry_count=int(row["retry_count"]),
        last_error=row["last_error"],
        next_attempt_at=row["next_attempt_at"],
    )


class LocalStoreSQLite:
    """Local Store sobre un único fichero SQLite.

    Cada colección es una tabla `(id, payload JSON, synced, updated_at)`; los
    índices secundarios son índices de expresión sobre `json_extract`. La cola
    de sincronización vive en `sync_queue` y se recorre por `seq`, que es el
    orden de inserción.

    Una sola conexión compartida entre hilos, protegida por un RLock. Todas
    las operaciones confirman al terminar, así que lo escrito sobrevive a un
    cierre inesperado de la aplicación.
    """

    def __init__(
        self,
        db_path: Path | str,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        clock_ms: Callable[[], int] | None = None,
    ) -> None:
        self._db_path = Path(db_path)
        self._busy_timeout_ms = busy_timeout_ms
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def db_path(self) -> Path:
        return self._db_path

    @property
    def is_initialized(self) -> bool:
        return self._connection is not None

    def init(self) -> None:
        with self._lock:
            if self._connection is not None:
                return
            connection = get_connection(self._db_path, busy_timeout_ms=self._busy_timeout_ms)
            applied = MigrationRunner(connection).apply_all()
            self._connection = connection
            logger.info(
                "local_store_initialized",
                extra={"extra": {"db_path": str(self._db_path), "migrations_applied": applied}},
            )

    def close(self) -> None:
        with self._lock:
            if self._connection is None:
                return
            self._connection.close()
            self._connection = None

    def _conn(self) -> sqlite3.Connection:
        if self._connection is None:
            raise NotInitializedError("LocalStore")
        return self._connection

    @staticmethod
    def _table(collection: str) -> str:
        if collection not in COLLECTIONS:
            raise UnknownCollectionError(f"Colección desconocida: {collection}")
        return collection

    # --- registros ---------------------------------------------------------

    def add(self, collection: str, record: Record) -> str:
        table = self._table(collection)
        record_id = str(record.get("id") or generate_local_id(self._clock_ms()))
        payload = _dump_payload({**record, "id": record_id})
        with self._lock:
            connection = self._conn()

            def _insert() -> None:
                with connection:
                    connection.execute(
                        f"INSERT INTO {table} (id, payload, synced, updated_at) VALUES (?, ?, 0, ?)",
                        (record_id, payload, _now_iso()),
                    )

            try:
                _run_with_locked_retry(_insert, context=f"{table}.add")
            except sqlite3.IntegrityError as exc:
                raise DuplicateKeyError(collection, record_id) from exc
        return record_id

    def get(self, collection: str, record_id: str) -> Record | None:
        table = self._table(collection)
        with self._lock:
            row = self._conn().execute(
                f"SELECT id, payload, synced FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
        return _row_to_record(row) if row is not None else None

    def get_all(self, collection: str) -> list[Record]:
        table = self._table(collection)
        with self._lock:
            rows = self._conn().execute(f"SELECT id, payload, synced FROM {table} ORDER BY rowid").fetchall()
        return [_row_to_record(row) for row in rows]

    def get_all_by_index(self, collection: str, index_name: str, value: Any) -> list[Record]:
        table = self._table(collection)
        attribute = COLLECTIONS[collection].attribute_for(index_name)
        if attribute is None:
            raise UnknownCollectionError(f"Índice desconocido '{index_name}' en {collection}")
        if attribute == "synced":
            sql = f"SELECT id, payload, synced FROM {table} WHERE synced = ? ORDER BY rowid"
            params: tuple[Any, ...] = (1 if value else 0,)
        else:
            sql = (
                f"SELECT id, payload, synced FROM {table} "
                f"WHERE json_extract(payload, '$.{attribute}') = ? ORDER BY rowid"
            )
            params = (value,)
        with self._lock:
            rows = self._conn().execute(sql, params).fetchall()
        return [_row_to_record(row) for row in rows]

    def update(self, collection: str, record_id: str, partial: Record) -> None:
        table = self._table(collection)
        with self._lock:
            connection = self._conn()
            current = self.get(collection, record_id)
            if current is None:
                logger.debug("local_store_update_missing", extra={"extra": {"collection": collection, "id": record_id}})
                return
            merged = {**current, **partial, "id": record_id}
            payload = _dump_payload(merged)

            def _write() -> None:
                with connection:
                    connection.execute(
                        f"UPDATE {table} SET payload = ?, synced = 0, updated_at = ? WHERE id = ?",
                        (payload, _now_iso(), record_id),
                    )

            _run_with_locked_retry(_write, context=f"{table}.update")

    def delete(self, collection: str, record_id: str) -> None:
        table = self._table(collection)
        with self._lock:
            connection = self._conn()
            with connection:
                connection.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))

    def mark_item_as_synced(self, collection: str, record_id: str) -> None:
        table = self._table(collection)
        with self._lock:
            connection = self._conn()
            with connection:
                connection.execute(
                    f"UPDATE {table} SET synced = 1, updated_at = ? WHERE id = ?",
                    (_now_iso(), record_id),
                )

    def migrate_identity(self, collection: str, old_id: str, new_id: str, record: Record) -> None:
        """Sustituye el registro `old_id` por `record` bajo `new_id`, ya sincronizado.

        Borrado, inserción y alta en `identity_map` van en la misma
        transacción: o se ven los tres cambios o ninguno.
        """
        table = self._table(collection)
        payload = _dump_payload({**record, "id": new_id})
        with self._lock:
            connection = self._conn()
            with transaccion(connection):
                connection.execute(f"DELETE FROM {table} WHERE id = ?", (old_id,))
                connection.execute(
                    f"""
                    INSERT INTO {table} (id, payload, synced, updated_at) VALUES (?, ?, 1, ?)
                    ON CONFLICT(id) DO UPDATE SET payload = excluded.payload, synced = 1,
                        updated_at = excluded.updated_at
                    """,
                    (new_id, payload, _now_iso()),
                )
                connection.execute(
                    """
                    INSERT OR REPLACE INTO identity_map (collection, local_id, remote_id, migrated_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (collection, old_id, new_id, _now_iso()),
                )
        logger.info(
            "identity_migrated",
            extra={"extra": {"collection": collection, "local_id": old_id, "remote_id": new_id}},
        )

    def resolve_alias(self, collection: str, record_id: str) -> str | None:
        self._table(collection)
        with self._lock:
            row = self._conn().execute(
                "SELECT remote_id FROM identity_map WHERE collection = ? AND local_id = ?",
                (collection, record_id),
            ).fetchone()
        return row["remote_id"] if row is not None else None

    # --- cola de sincronización --------------------------------------------

    def add_to_sync_queue(self, collection: str, operation: SyncOperation, data: Record) -> SyncQueueEntry:
        self._table(collection)
        entry_id = str(uuid.uuid4())
        timestamp = self._clock_ms()
        payload = json.dumps(
            {key: value for key, value in data.items() if key != "synced"},
            ensure_ascii=False,
            default=_json_default,
        )
        with self._lock:
            connection = self._conn()

            def _insert() -> int:
                with connection:
                    cursor = connection.execute(
                        """
                        INSERT INTO sync_queue (id, collection, operation, data, timestamp, synced, status)
                        VALUES (?, ?, ?, ?, ?, 0, ?)
                        """,
                        (entry_id, collection, operation, payload, timestamp, STATUS_PENDING),
                    )
                return int(cursor.lastrowid)

            seq = _run_with_locked_retry(_insert, context="sync_queue.add")
        return SyncQueueEntry(
            id=entry_id,
            collection=collection,
            operation=operation,
            data=json.loads(payload),
            timestamp=timestamp,
            seq=seq,
        )

    def get_pending_sync_items(self, now_ms: int | None = None) -> list[SyncQueueEntry]:
        """Entradas pendientes en orden FIFO.

        Con `now_ms` se omiten las que aún están esperando su backoff.
        """
        sql = f"SELECT {_QUEUE_COLUMNS} FROM sync_queue WHERE status = ?"
        params: list[Any] = [STATUS_PENDING]
        if now_ms is not None:
            sql += " AND (next_attempt_at IS NULL OR next_attempt_at <= ?)"
            params.append(now_ms)
        sql += " ORDER BY seq"
        with self._lock:
            rows = self._conn().execute(sql, params).fetchall()
        return [_row_to_entry(row) for row in rows]

    def get_sync_entry(self, entry_id: str) -> SyncQueueEntry | None:
        with self._lock:
            row = self._conn().execute(
                f"SELECT {_QUEUE_COLUMNS} FROM sync_queue WHERE id = ?", (entry_id,)
            ).fetchone()
        return _row_to_entry(row) if row is not None else None

    def get_all_sync_entries(self) -> list[SyncQueueEntry]:
        with self._lock:
            rows = self._conn().execute(f"SELECT {_QUEUE_COLUMNS} FROM sync_queue ORDER BY seq").fetchall()
        return [_row_to_entry(row) for row in rows]

    def mark_as_synced(self, entry_id: str) -> None:
        with self._lock:
            connection = self._conn()
            with connection:
                connection.execute(
                    """
                    UPDATE sync_queue
                    SET synced = 1, status = ?, last_error = NULL, next_attempt_at = NULL
                    WHERE id = ?
                    """,
                    (STATUS_SYNCED, entry_id),
                )

    def record_sync_failure(self, entry_id: str, error: str, next_attempt_at: int | None) -> int:
        with self._lock:
            connection = self._conn()
            with connection:
                connection.execute(
                    """
                    UPDATE sync_queue
                    SET retry_count = retry_count + 1, last_error = ?, next_attempt_at = ?
                    WHERE id = ?
                    """,
                    (error, next_attempt_at, entry_id),
                )
                row = connection.execute("SELECT retry_count FROM sync_queue WHERE id = ?", (entry_id,)).fetchone()
        return int(row["retry_count"]) if row is not None else 0

    def move_to_dead_letter(self, entry_id: str, error: str) -> None:
        with self._lock:
            connection = self._conn()
            with connection:
                connection.execute(
                    "UPDATE sync_queue SET status = ?, last_error = ?, next_attempt_at = NULL WHERE id = ?",
                    (STATUS_DEAD_LETTER, error, entry_id),
                )
        logger.warning("sync_entry_dead_lettered", extra={"extra": {"entry_id": entry_id, "error": error}})

    def get_dead_letters(self) -> list[SyncQueueEntry]:
        with self._lock:
            rows = self._conn().execute(
                f"SELECT {_QUEUE_COLUMNS} FROM sync_queue WHERE status = ? ORDER BY seq",
                (STATUS_DEAD_LETTER,),
            ).fetchall()
        return [_row_to_entry(row) for row in rows]

    def requeue_dead_letters(self, entry_ids: Iterable[str] | None = None) -> int:
        """Devuelve entradas del estado dead-letter a pendientes.

        Si el id del registro de una entrada ya migró a un id remoto, se
        reescribe el payload con ese id antes de reencolar.
        """
        wanted = set(entry_ids) if entry_ids is not None else None
        requeued = 0
        with self._lock:
            connection = self._conn()
            with transaccion(connection):
                for entry in self.get_dead_letters():
                    if wanted is not None and entry.id not in wanted:
                        continue
                    data = dict(entry.data)
                    record_id = entry.record_id
                    if record_id is not None:
                        alias = self.resolve_alias(entry.collection, record_id)
                        if alias is not None:
                            data["id"] = alias
                    connection.execute(
                        """
                        UPDATE sync_queue
                        SET status = ?, synced = 0, retry_count = 0, last_error = NULL,
                            next_attempt_at = NULL, data = ?
                        WHERE id = ?
                        """,
                        (STATUS_PENDING, json.dumps(data, ensure_ascii=False, default=_json_default), entry.id),
                    )
                    requeued += 1
        if requeued:
            logger.info("dead_letters_requeued", extra={"extra": {"count": requeued}})
        return requeued

    def clear_synced_entries(self) -> int:
        with self._lock:
            connection = self._conn()
            with connection:
                cursor = connection.execute("DELETE FROM sync_queue WHERE synced = 1")
        return int(cursor.rowcount)

    def clear_sync_queue(self) -> None:
        with self._lock:
            connection = self._conn()
            with connection:
                connection.execute("DELETE FROM sync_queue")

    def sync_queue_stats(self) -> QueueStats:
        with self._lock:
            connection = self._conn()
            rows = connection.execute("SELECT status, COUNT(*) AS total FROM sync_queue GROUP BY status").fetchall()
            pending_rows = connection.execute(
                "SELECT collection, COUNT(*) AS total FROM sync_queue WHERE status = ? GROUP BY collection",
                (STATUS_PENDING,),
            ).fetchall()
        counts = {row["status"]: int(row["total"]) for row in rows}
        return QueueStats(
            pending=counts.get(STATUS_PENDING, 0),
            synced=counts.get(STATUS_SYNCED, 0),
            dead_letter=counts.get(STATUS_DEAD_LETTER, 0),
            by_collection={row["collection"]: int(row["total"]) for row in pending_rows},
        )
