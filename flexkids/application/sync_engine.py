from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, Literal

from flexkids.application.connectivity import ConnectivityMonitor
from flexkids.bootstrap.logging import log_operational_error
from flexkids.core.errors import StaleIdentityError, ValidationError
from flexkids.core.event_bus import AppEvents, DataUpdated
from flexkids.core.metrics import (
    SYNC_DEAD_LETTERS,
    SYNC_DRAINS_SKIPPED,
    SYNC_ENTRIES_FAILED,
    SYNC_ENTRIES_HELD,
    SYNC_ENTRIES_SYNCED,
    SYNC_IDENTITY_MIGRATIONS,
    MetricsRegistry,
    medir_tiempo,
    metrics_registry,
)
from flexkids.core.observability import OperationContext, log_event
from flexkids.domain.models import SETTINGS, Record, SyncQueueEntry, generate_local_id, is_local_id
from flexkids.domain.ports import ExecutorPort, LocalStorePort, RemoteDocumentStorePort
from flexkids.domain.sync_models import IdentityMigration, QueueStats, RetryPolicy, SyncSummary

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL_SECONDS = 30.0
STALE_IDENTITY_ERROR = "stale_identity"

_WRITE_OPERATIONS = ("create", "update")

EntryOutcome = Literal["synced", "held", "stale", "failed", "dead_letter"]
RecordKey = tuple[str, str]


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def _remote_payload(data: Record) -> Record:
    return {key: value for key, value in data.items() if key not in ("id", "synced")}


class PeriodicDrain:
    """Temporizador que invoca `tick` cada `interval_seconds` en un hilo daemon."""

    def __init__(self, interval_seconds: float, tick: Callable[[], object], *, name: str = "sync-periodic") -> None:
        self._interval_seconds = interval_seconds
        self._tick = tick
        self._name = name
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        thread = self._thread
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval_seconds):
            try:
                self._tick()
            except Exception:  # noqa: BLE001
                logger.exception("Fallo en el drenado periódico")


@dataclass
class _DrainState:
    remaining: Counter = field(default_factory=Counter)
    blocked: set[RecordKey] = field(default_factory=set)
    unresolved_creates: set[RecordKey] = field(default_factory=set)
    migrations: list[IdentityMigration] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class SyncEngine:
    """Punto único de escritura y drenado de la cola de sincronización.

    `save_locally` escribe en el Local Store, encola la mutación y, si hay
    conexión, pide un drenado sin bloquear al llamador. `sync_all` recorre
    las entradas pendientes en orden de inserción; un fallo en una entrada
    no detiene el resto, solo retiene las entradas posteriores del mismo
    registro para no desordenarlas.
    """

    def __init__(
        self,
        local_store: LocalStorePort,
        remote_store: RemoteDocumentStorePort,
        monitor: ConnectivityMonitor,
        *,
        executor: ExecutorPort | None = None,
        events: AppEvents | None = None,
        retry_policy: RetryPolicy | None = None,
        sync_interval_seconds: float = DEFAULT_SYNC_INTERVAL_SECONDS,
        clock_ms: Callable[[], int] = _epoch_ms,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._local_store = local_store
        self._remote_store = remote_store
        self._monitor = monitor
        self._owns_executor = executor is None
        self._executor: ExecutorPort = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="sync-drain")
        self._events = events or AppEvents()
        self._retry_policy = retry_policy or RetryPolicy()
        self._clock_ms = clock_ms
        self._metrics = metrics or metrics_registry
        self._drain_lock = threading.Lock()
        self._destroyed = False
        self._periodic = PeriodicDrain(sync_interval_seconds, self._periodic_tick)
        monitor.bind_drain(self.schedule_drain)

    @property
    def events(self) -> AppEvents:
        return self._events

    @property
    def is_draining(self) -> bool:
        return self._drain_lock.locked()

    # --- escritura -----------------------------------------------------------

    def save_locally(self, collection: str, operation: str, record: Record) -> str:
        if operation not in _WRITE_OPERATIONS:
            raise ValidationError(f"Operación no soportada en save_locally: {operation}")
        data = {key: value for key, value in record.items() if key != "synced"}
        if operation == "create":
            record_id = str(data.get("id") or generate_local_id(self._clock_ms()))
            data["id"] = record_id
            if self._local_store.get(collection, record_id) is None:
                self._local_store.add(collection, data)
            else:
                self._local_store.update(collection, record_id, data)
        else:
            if not data.get("id"):
                raise ValidationError("Una actualización necesita el id del registro.")
            record_id = str(data["id"])
            if self._local_store.get(collection, record_id) is None:
                alias = self._local_store.resolve_alias(collection, record_id)
                if alias is not None:
                    record_id = alias
                    data["id"] = alias
            if self._local_store.get(collection, record_id) is not None:
                self._local_store.update(collection, record_id, data)
            elif collection == SETTINGS:
                # Los ajustes se identifican por clave: actualizar uno nuevo lo crea.
                self._local_store.add(collection, data)
            else:
                logger.warning(
                    "sync_update_without_local_record",
                    extra={"extra": {"collection": collection, "id": record_id}},
                )

        entry = self._local_store.add_to_sync_queue(collection, operation, data)
        logger.debug(
            "sync_entry_enqueued",
            extra={"extra": {"collection": collection, "operation": operation, "id": record_id, "entry": entry.id}},
        )
        if self._monitor.is_online():
            self.schedule_drain()
        return record_id

    # --- drenado -------------------------------------------------------------

    def schedule_drain(self) -> Future | None:
        if self._destroyed:
            return None
        try:
            return self._executor.submit(self._sync_all_logged)
        except RuntimeError:
            logger.debug("Executor cerrado; no se programa drenado")
            return None

    def sync_all(self) -> SyncSummary:
        if not self._monitor.is_online():
            self._metrics.incrementar(SYNC_DRAINS_SKIPPED)
            return SyncSummary.skipped_because("offline")
        if not self._drain_lock.acquire(blocking=False):
            self._metrics.incrementar(SYNC_DRAINS_SKIPPED)
            return SyncSummary.skipped_because("in_progress")
        try:
            with OperationContext("sync_all"), medir_tiempo("latency.sync_all_ms", self._metrics):
                summary = self._drain()
                log_event(logger, "sync_all_finished", summary.to_dict())
                return summary
        finally:
            self._drain_lock.release()

    def _sync_all_logged(self) -> SyncSummary | None:
        try:
            return self.sync_all()
        except Exception:  # noqa: BLE001
            logger.exception("Drenado de la cola abortado")
            return None

    def _drain(self) -> SyncSummary:
        started = self._clock_ms()
        pending = self._local_store.get_pending_sync_items()
        state = _DrainState()
        for entry in pending:
            key = self._key(entry)
            state.remaining[key] += 1
            if entry.operation == "create" and is_local_id(entry.record_id):
                state.unresolved_creates.add(key)

        outcomes: Counter = Counter()
        for entry in pending:
            key = self._key(entry)
            if entry.next_attempt_at is not None and entry.next_attempt_at > started:
                state.blocked.add(key)
                continue
            if key in state.blocked:
                outcomes["held"] += 1
                continue
            outcome = self._process_entry(entry, state)
            outcomes[outcome] += 1
            if outcome in ("held", "failed", "dead_letter"):
                state.blocked.add(key)

        self._publish_migrations(state.migrations)
        self._metrics.incrementar(SYNC_ENTRIES_SYNCED, outcomes["synced"])
        self._metrics.incrementar(SYNC_ENTRIES_FAILED, outcomes["failed"] + outcomes["dead_letter"])
        self._metrics.incrementar(SYNC_ENTRIES_HELD, outcomes["held"])
        self._metrics.incrementar(SYNC_DEAD_LETTERS, outcomes["dead_letter"] + outcomes["stale"])
        self._metrics.incrementar(SYNC_IDENTITY_MIGRATIONS, len(state.migrations))
        return SyncSummary(
            processed=outcomes["synced"] + outcomes["failed"] + outcomes["dead_letter"] + outcomes["stale"],
            synced=outcomes["synced"],
            failed=outcomes["failed"],
            held=outcomes["held"],
            dead_lettered=outcomes["dead_letter"],
            stale_identity=outcomes["stale"],
            migrations=tuple(state.migrations),
            errors=tuple(state.errors),
            duration_ms=max(0, self._clock_ms() - started),
        )

    @staticmethod
    def _key(entry: SyncQueueEntry) -> RecordKey:
        return entry.collection, entry.record_id or entry.id

    def _process_entry(self, entry: SyncQueueEntry, state: _DrainState) -> EntryOutcome:
        key = self._key(entry)
        try:
            if entry.operation == "create":
                self._sync_create(entry, state)
            elif entry.operation == "update":
                self._sync_update(entry)
            else:
                # Borrados: todavía sin contrapartida remota.
                self._local_store.mark_as_synced(entry.id)
        except StaleIdentityError as exc:
            if key in state.unresolved_creates:
                logger.info(
                    "sync_entry_held",
                    extra={"extra": {"entry_id": entry.id, "collection": entry.collection, "id": exc.record_id}},
                )
                return "held"
            self._local_store.move_to_dead_letter(entry.id, STALE_IDENTITY_ERROR)
            state.errors.append(str(exc))
            state.remaining[key] -= 1
            return "stale"
        except Exception as exc:  # noqa: BLE001
            return self._register_failure(entry, exc, state)

        state.remaining[key] -= 1
        if entry.operation == "update" and state.remaining[key] == 0:
            self._local_store.mark_item_as_synced(entry.collection, entry.record_id or "")
        return "synced"

    def _sync_create(self, entry: SyncQueueEntry, state: _DrainState) -> None:
        record_id = entry.record_id
        key = self._key(entry)
        if record_id is None or not is_local_id(record_id):
            # Ya tiene id remoto (p. ej. viene de un refresco): no hay nada que subir.
            self._local_store.mark_as_synced(entry.id)
            if record_id is not None and state.remaining[key] == 1:
                self._local_store.mark_item_as_synced(entry.collection, record_id)
            return

        alias = self._local_store.resolve_alias(entry.collection, record_id)
        if alias is not None:
            # Segundo alta del mismo id local: el documento ya existe en remoto.
            self._remote_store.update_document(entry.collection, alias, _remote_payload(entry.data))
            current = self._local_store.get(entry.collection, record_id)
            if current is not None:
                existing = self._local_store.get(entry.collection, alias) or {}
                merged = {**_remote_payload(existing), **_remote_payload(current)}
                self._local_store.migrate_identity(entry.collection, record_id, alias, merged)
            self._local_store.mark_as_synced(entry.id)
            return

        remote_id = self._remote_store.create_document(entry.collection, _remote_payload(entry.data))
        current = self._local_store.get(entry.collection, record_id)
        migrated = _remote_payload(current if current is not None else entry.data)
        self._local_store.migrate_identity(entry.collection, record_id, remote_id, migrated)
        self._local_store.mark_as_synced(entry.id)
        state.unresolved_creates.discard(key)
        state.migrations.append(IdentityMigration(entry.collection, record_id, remote_id))

    def _sync_update(self, entry: SyncQueueEntry) -> None:
        record_id = entry.record_id
        if record_id is None:
            raise ValidationError(f"Entrada {entry.id} sin id de registro")
        if is_local_id(record_id):
            raise StaleIdentityError(entry.collection, record_id)
        self._remote_store.update_document(entry.collection, record_id, _remote_payload(entry.data))
        self._local_store.mark_as_synced(entry.id)

    def _register_failure(self, entry: SyncQueueEntry, exc: Exception, state: _DrainState) -> EntryOutcome:
        attempts = entry.retry_count + 1
        error_text = f"{type(exc).__name__}: {exc}"
        state.errors.append(error_text)
        log_operational_error(
            logger,
            "sync_entry_failed",
            exc=exc,
            extra={
                "entry_id": entry.id,
                "collection": entry.collection,
                "operation": entry.operation,
                "attempt": attempts,
            },
        )
        if self._retry_policy.exhausted(attempts):
            self._local_store.record_sync_failure(entry.id, error_text, None)
            self._local_store.move_to_dead_letter(entry.id, error_text)
            return "dead_letter"
        backoff_ms = int(self._retry_policy.backoff_for(attempts) * 1000)
        self._local_store.record_sync_failure(entry.id, error_text, self._clock_ms() + backoff_ms)
        return "failed"

    def _publish_migrations(self, migrations: list[IdentityMigration]) -> None:
        by_collection: dict[str, list[str]] = {}
        for migration in migrations:
            by_collection.setdefault(migration.collection, []).extend([migration.local_id, migration.remote_id])
        for collection, ids in by_collection.items():
            self._events.data_updated.publish(DataUpdated(collection, "identity_migrated", tuple(ids)))

    # --- operación -----------------------------------------------------------

    def requeue_dead_letters(self, entry_ids: Iterable[str] | None = None) -> int:
        requeued = self._local_store.requeue_dead_letters(entry_ids)
        if requeued and self._monitor.is_online():
            self.schedule_drain()
        return requeued

    def dead_letters(self) -> list[SyncQueueEntry]:
        return self._local_store.get_dead_letters()

    def clear_synced(self) -> int:
        removed = self._local_store.clear_synced_entries()
        logger.info("sync_queue_cleared", extra={"extra": {"removed": removed}})
        return removed

    def stats(self) -> QueueStats:
        return self._local_store.sync_queue_stats()

    # --- ciclo de vida -------------------------------------------------------

    def start_periodic(self) -> None:
        if not self._destroyed:
            self._periodic.start()

    def stop_periodic(self) -> None:
        self._periodic.stop()

    def _periodic_tick(self) -> None:
        if self._monitor.is_online():
            self.sync_all()

    def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        self._periodic.stop()
        self._monitor.bind_drain(None)
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
