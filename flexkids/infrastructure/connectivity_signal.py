from __future__ import annotations

import logging
import threading
from typing import Callable

from flexkids.domain.ports import ConnectivityProbePort

logger = logging.getLogger(__name__)


class PollingReachabilitySignal:
    """Señal de conectividad basada en sondear un endpoint TCP.

    Para procesos sin bucle de eventos Qt (CLI, servicios). El sondeo corre
    en un hilo daemon; el callback solo se invoca cuando el resultado cambia
    respecto al anterior.
    """

    def __init__(
        self,
        probe: ConnectivityProbePort,
        *,
        poll_interval_seconds: float = 15.0,
        timeout_seconds: float = 3.0,
    ) -> None:
        self._probe = probe
        self._poll_interval_seconds = poll_interval_seconds
        self._timeout_seconds = timeout_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._callback: Callable[[bool], None] | None = None
        self._last: bool | None = None

    def current(self) -> bool:
        online = self._poll()
        self._last = online
        return online

    def start(self, callback: Callable[[bool], None]) -> None:
        if self._thread is not None:
            return
        self._callback = callback
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="connectivity-poll", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        thread = self._thread
        self._thread = None
        self._callback = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self._timeout_seconds + 1)

    def poll_once(self) -> None:
        online = self._poll()
        changed = online != self._last
        self._last = online
        callback = self._callback
        if changed and callback is not None:
            callback(online)

    def _poll(self) -> bool:
        internet_ok, _api_ok, _latency, _message = self._probe.check(timeout_seconds=self._timeout_seconds)
        return internet_ok

    def _run(self) -> None:
        while not self._stop_event.wait(self._poll_interval_seconds):
            try:
                self.poll_once()
            except Exception:  # noqa: BLE001
                logger.exception("Fallo sondeando la conectividad")
