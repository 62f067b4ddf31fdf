from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Callable

from flexkids.application.connectivity import ConnectivityMonitor
from flexkids.application.sync_engine import SyncEngine
from flexkids.core.errors import RemoteWriteFailedError
from flexkids.core.event_bus import AppEvents, DataUpdated
from flexkids.core.metrics import CACHE_REFRESH_FAILED, CACHE_REFRESH_OK, MetricsRegistry, medir_tiempo, metrics_registry
from flexkids.core.observability import OperationContext
from flexkids.domain.filters import SharedFilter
from flexkids.domain.models import Record
from flexkids.domain.ports import ExecutorPort, LocalStorePort, RemoteDocumentStorePort
from flexkids.domain.remote_query import RemoteQuery, apply_remote_query

logger = logging.getLogger(__name__)

DEFAULT_REMOTE_TIMEOUT_SECONDS = 10.0

Predicate = Callable[[Record], bool]


class CacheFirstReader:
    """Lecturas que responden siempre desde el Local Store.

    Con conexión, cada lectura lanza además un refresco en segundo plano
    contra el remoto; lo que llega se guarda vía `SyncEngine.save_locally`
    y se avisa por `events.data_updated`. Un fallo o timeout del remoto
    solo se registra en el log: la caché queda como estaba.
    """

    def __init__(
        self,
        local_store: LocalStorePort,
        engine: SyncEngine,
        monitor: ConnectivityMonitor,
        remote_store: RemoteDocumentStorePort,
        *,
        executor: ExecutorPort | None = None,
        remote_executor: ExecutorPort | None = None,
        events: AppEvents | None = None,
        timeout_seconds: float = DEFAULT_REMOTE_TIMEOUT_SECONDS,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._local_store = local_store
        self._engine = engine
        self._monitor = monitor
        self._remote_store = remote_store
        self._owned_executors: list[ExecutorPort] = []
        if executor is None:
            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cache-refresh")
            self._owned_executors.append(executor)
        if remote_executor is None:
            remote_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="remote-query")
            self._owned_executors.append(remote_executor)
        self._executor = executor
        self._remote_executor = remote_executor
        self._events = events or engine.events
        self._timeout_seconds = timeout_seconds
        self._metrics = metrics or metrics_registry

    def read_cached(
        self,
        collection: str,
        predicate: Predicate | None = None,
        index: tuple[str, Any] | None = None,
    ) -> list[Record]:
        if index is not None and index[1] is not None:
            records = self._local_store.get_all_by_index(collection, index[0], index[1])
        else:
            records = self._local_store.get_all(collection)
        if predicate is None:
            return records
        return [record for record in records if predicate(record)]

    def read_one(self, collection: str, record_id: str) -> Record | None:
        return self._local_store.get(collection, record_id)

    def refresh_in_background(
        self,
        collection: str,
        query: RemoteQuery | None = None,
        *,
        filter_key: str | None = None,
    ) -> Future | None:
        if not self._monitor.is_online():
            return None
        try:
            return self._executor.submit(self._refresh, collection, query or RemoteQuery(), filter_key)
        except RuntimeError:
            logger.debug("Executor de refresco cerrado; se omite %s", collection)
            return None

    def read(self, shared_filter: SharedFilter, *, refresh: bool = True) -> list[Record]:
        records = self.read_cached(shared_filter.collection, shared_filter.matches, shared_filter.index)
        order_by = shared_filter.remote_query.order_by
        if order_by is not None:
            records = apply_remote_query(records, RemoteQuery(order_by=order_by))
        if refresh:
            self.refresh_in_background(
                shared_filter.collection, shared_filter.remote_query, filter_key=shared_filter.key
            )
        return records

    def shutdown(self) -> None:
        for executor in self._owned_executors:
            executor.shutdown(wait=False, cancel_futures=True)
        self._owned_executors.clear()

    def _refresh(self, collection: str, query: RemoteQuery, filter_key: str | None = None) -> int:
        with OperationContext(f"refresh:{collection}"):
            try:
                with medir_tiempo("latency.cache_refresh_ms", self._metrics):
                    remote_records = self._query_with_timeout(collection, query)
                    refreshed = self._merge(collection, remote_records)
            except Exception as exc:  # noqa: BLE001
                self._metrics.incrementar(CACHE_REFRESH_FAILED)
                logger.warning(
                    "cache_refresh_failed",
                    extra={
                        "extra": {
                            "collection": collection,
                            "filter": filter_key,
                            "error": f"{type(exc).__name__}: {exc}",
                        }
                    },
                )
                return 0
        self._metrics.incrementar(CACHE_REFRESH_OK)
        if refreshed:
            self._events.data_updated.publish(DataUpdated(collection, "refreshed", tuple(refreshed)))
        logger.info(
            "cache_refreshed",
            extra={"extra": {"collection": collection, "filter": filter_key, "records": len(refreshed)}},
        )
        return len(refreshed)

    def _query_with_timeout(self, collection: str, query: RemoteQuery) -> list[Record]:
        future = self._remote_executor.submit(self._remote_store.query_documents, collection, query)
        try:
            return future.result(timeout=self._timeout_seconds)
        except FuturesTimeoutError as exc:
            future.cancel()
            raise RemoteWriteFailedError(
                f"Timeout consultando '{collection}' tras {self._timeout_seconds} segundos"
            ) from exc

    def _merge(self, collection: str, remote_records: list[Record]) -> list[str]:
        refreshed: list[str] = []
        for remote in remote_records:
            record_id = remote.get("id")
            if not record_id:
                continue
            local = self._local_store.get(collection, str(record_id))
            if local is not None and not local.get("synced", False):
                # Cambios locales pendientes de subir: mandan sobre el remoto.
                continue
            self._engine.save_locally(collection, "create", remote)
            refreshed.append(str(record_id))
        return refreshed
