from __future__ import annotations

import logging
import traceback

from PySide6.QtCore import QObject, Signal, Slot

from flexkids.application.connectivity import ConnectivityMonitor
from flexkids.application.sync_engine import SyncEngine
from flexkids.core.event_bus import AppEvents, DataUpdated
from flexkids.domain.sync_models import SyncSummary

logger = logging.getLogger(__name__)


class SyncStatusBridge(QObject):
    """Reemite en señales Qt los avisos del subsistema de sincronización.

    Los avisos llegan desde hilos de fondo; al emitirse como señales de un
    QObject que vive en el hilo de la UI, Qt los entrega encolados.
    """

    connectivity_changed = Signal(bool)
    data_updated = Signal(str, str, object)

    def __init__(self, monitor: ConnectivityMonitor, events: AppEvents, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._monitor = monitor
        self._unsubscribers = [
            monitor.on_connection_change(self._on_connection_change),
            events.data_updated.subscribe(self._on_data_updated),
        ]

    def is_online(self) -> bool:
        return self._monitor.is_online()

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def _on_connection_change(self, online: bool) -> None:
        self.connectivity_changed.emit(online)

    def _on_data_updated(self, message: DataUpdated) -> None:
        self.data_updated.emit(message.collection, message.reason, list(message.ids))


class DrainWorker(QObject):
    finished = Signal(SyncSummary)
    failed = Signal(object)

    def __init__(self, engine: SyncEngine) -> None:
        super().__init__()
        self._engine = engine

    @Slot()
    def run(self) -> None:
        try:
            summary = self._engine.sync_all()
        except Exception as exc:
            logger.exception("Error durante el drenado manual de la cola")
            self.failed.emit({"error": exc, "details": traceback.format_exc()})
            return
        self.finished.emit(summary)
