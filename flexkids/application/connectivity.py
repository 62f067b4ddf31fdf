from __future__ import annotations

import logging
import threading
from typing import Callable

from flexkids.domain.ports import ConnectivitySignalPort

logger = logging.getLogger(__name__)

ConnectionCallback = Callable[[bool], None]


class ConnectivityMonitor:
    """Estado Online/Offline derivado de la señal de la plataforma.

    Solo los cambios reales de estado notifican: dos `set_online(True)`
    seguidos producen una única notificación. Al pasar a online se dispara
    además el drenado de la cola registrado con `bind_drain`.
    """

    def __init__(self, signal: ConnectivitySignalPort | None = None, *, initial_online: bool | None = None) -> None:
        self._signal = signal
        self._lock = threading.Lock()
        self._subscribers: list[ConnectionCallback] = []
        self._drain_trigger: Callable[[], object] | None = None
        self._started = False
        if initial_online is None:
            initial_online = signal.current() if signal is not None else False
        self._online = bool(initial_online)

    def is_online(self) -> bool:
        with self._lock:
            return self._online

    def on_connection_change(self, callback: ConnectionCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def bind_drain(self, trigger: Callable[[], object] | None) -> None:
        with self._lock:
            self._drain_trigger = trigger

    def set_online(self, online: bool) -> None:
        online = bool(online)
        with self._lock:
            if online == self._online:
                return
            self._online = online
            subscribers = list(self._subscribers)
            drain_trigger = self._drain_trigger
        logger.info("connectivity_changed", extra={"extra": {"online": online}})
        for callback in subscribers:
            try:
                callback(online)
            except Exception:  # noqa: BLE001
                logger.exception("Suscriptor de conectividad falló")
        if online and drain_trigger is not None:
            try:
                drain_trigger()
            except Exception:  # noqa: BLE001
                logger.exception("No se pudo lanzar el drenado tras recuperar conexión")

    def start(self) -> None:
        if self._started or self._signal is None:
            return
        self._started = True
        self._signal.start(self.set_online)

    def stop(self) -> None:
        if self._signal is not None and self._started:
            self._signal.stop()
        self._started = False
        with self._lock:
            self._subscribers.clear()
            self._drain_trigger = None
