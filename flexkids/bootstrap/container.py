from __future__ import annotations

import logging
from dataclasses import dataclass

from flexkids.application.bulk_import import BulkImporter
from flexkids.application.cache_first import CacheFirstReader
from flexkids.application.connectivity import ConnectivityMonitor
from flexkids.application.sync_engine import SyncEngine
from flexkids.application.use_cases import (
    CustomersAccessor,
    PackagesAccessor,
    PaymentsAccessor,
    SettingsAccessor,
    VisitsAccessor,
)
from flexkids.bootstrap.settings import SyncSettings, load_sync_settings
from flexkids.core.event_bus import AppEvents
from flexkids.core.metrics import metrics_registry
from flexkids.domain.ports import ConnectivitySignalPort, ExecutorPort, RemoteDocumentStorePort
from flexkids.infrastructure.connectivity_signal import PollingReachabilitySignal
from flexkids.infrastructure.health_probes import DefaultConnectivityProbe, LocalStoreProbe
from flexkids.infrastructure.local_config import RemoteConfigStore
from flexkids.infrastructure.local_store_sqlite import LocalStoreSQLite
from flexkids.infrastructure.sheets_client import SheetsClient
from flexkids.infrastructure.sheets_document_store import SheetsDocumentStore

logger = logging.getLogger(__name__)


@dataclass
class AppContainer:
    """Todas las piezas del subsistema offline, ya cableadas.

    Sustituye a los singletons de módulo: cada test o proceso construye el
    suyo, llama a `start()` y termina con `shutdown()`.
    """

    settings: SyncSettings
    events: AppEvents
    local_store: LocalStoreSQLite
    remote_store: RemoteDocumentStorePort
    monitor: ConnectivityMonitor
    sync_engine: SyncEngine
    reader: CacheFirstReader
    visits: VisitsAccessor
    customers: CustomersAccessor
    payments: PaymentsAccessor
    packages: PackagesAccessor
    app_settings: SettingsAccessor
    bulk_importer: BulkImporter
    local_store_probe: LocalStoreProbe

    def start(self, *, periodic: bool = True) -> None:
        self.monitor.start()
        if periodic:
            self.sync_engine.start_periodic()
        if self.monitor.is_online():
            self.sync_engine.schedule_drain()
        logger.info("sync_subsystem_started", extra={"extra": {"online": self.monitor.is_online()}})

    def shutdown(self) -> None:
        self.sync_engine.destroy()
        self.reader.shutdown()
        self.monitor.stop()
        self.events.clear()
        self.local_store.close()
        logger.info("sync_subsystem_stopped", extra={"extra": metrics_registry.snapshot()})


def build_remote_store(config_store: RemoteConfigStore | None = None) -> SheetsDocumentStore:
    return SheetsDocumentStore(SheetsClient(), config_store or RemoteConfigStore())


def build_connectivity_signal(settings: SyncSettings) -> ConnectivitySignalPort:
    """Señal del sistema si hay una aplicación Qt viva; si no, sondeo TCP."""
    polling = PollingReachabilitySignal(
        DefaultConnectivityProbe(),
        poll_interval_seconds=settings.connectivity_poll_seconds,
    )
    from PySide6.QtCore import QCoreApplication

    if QCoreApplication.instance() is None:
        return polling
    from flexkids.ui.connectivity_qt import QtReachabilitySignal

    return QtReachabilitySignal(fallback=polling)


def build_container(
    settings: SyncSettings | None = None,
    *,
    remote_store: RemoteDocumentStorePort | None = None,
    signal: ConnectivitySignalPort | None = None,
    initial_online: bool | None = None,
    drain_executor: ExecutorPort | None = None,
    refresh_executor: ExecutorPort | None = None,
    remote_executor: ExecutorPort | None = None,
) -> AppContainer:
    resolved = settings or load_sync_settings()
    local_store = LocalStoreSQLite(resolved.db_path)
    local_store.init()

    events = AppEvents()
    remote = remote_store or build_remote_store()
    if signal is None:
        signal = build_connectivity_signal(resolved)
    monitor = ConnectivityMonitor(signal, initial_online=initial_online)

    engine = SyncEngine(
        local_store,
        remote,
        monitor,
        executor=drain_executor,
        events=events,
        retry_policy=resolved.retry_policy,
        sync_interval_seconds=resolved.sync_interval_seconds,
    )
    reader = CacheFirstReader(
        local_store,
        engine,
        monitor,
        remote,
        executor=refresh_executor,
        remote_executor=remote_executor,
        events=events,
        timeout_seconds=resolved.remote_timeout_seconds,
    )

    return AppContainer(
        settings=resolved,
        events=events,
        local_store=local_store,
        remote_store=remote,
        monitor=monitor,
        sync_engine=engine,
        reader=reader,
        visits=VisitsAccessor(engine, reader),
        customers=CustomersAccessor(engine, reader),
        payments=PaymentsAccessor(engine, reader),
        packages=PackagesAccessor(engine, reader),
        app_settings=SettingsAccessor(engine, reader),
        bulk_importer=BulkImporter(
            engine,
            pause_every=resolved.import_pause_every,
            pause_seconds=resolved.import_pause_seconds,
        ),
        local_store_probe=LocalStoreProbe(local_store),
    )
