from __future__ import annotations

import logging
from typing import Callable

from PySide6.QtCore import QObject, Slot
from PySide6.QtNetwork import QNetworkInformation

from flexkids.domain.ports import ConnectivitySignalPort

logger = logging.getLogger(__name__)

_OFFLINE_STATES = (
    QNetworkInformation.Reachability.Disconnected,
    QNetworkInformation.Reachability.Local,
)


def is_reachable(reachability: QNetworkInformation.Reachability) -> bool:
    # Unknown cuenta como online: el monitor es orientativo y el drenado ya
    # tolera fallos del remoto.
    return reachability not in _OFFLINE_STATES


class QtReachabilitySignal(QObject):
    """Señal de conectividad del sistema operativo vía `QNetworkInformation`.

    Si la plataforma no ofrece backend de reachability se delega en
    `fallback` (normalmente un `PollingReachabilitySignal`).
    """

    def __init__(self, fallback: ConnectivitySignalPort | None = None, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._fallback = fallback
        self._info: QNetworkInformation | None = None
        self._backend_checked = False
        self._callback: Callable[[bool], None] | None = None

    def _backend(self) -> QNetworkInformation | None:
        if not self._backend_checked:
            self._backend_checked = True
            if QNetworkInformation.loadDefaultBackend():
                self._info = QNetworkInformation.instance()
            else:
                logger.warning("QNetworkInformation sin backend en esta plataforma")
        return self._info

    def current(self) -> bool:
        info = self._backend()
        if info is None:
            return self._fallback.current() if self._fallback is not None else True
        return is_reachable(info.reachability())

    def start(self, callback: Callable[[bool], None]) -> None:
        info = self._backend()
        if info is None:
            if self._fallback is not None:
                self._fallback.start(callback)
            return
        self._callback = callback
        info.reachabilityChanged.connect(self._on_reachability_changed)

    def stop(self) -> None:
        if self._info is not None and self._callback is not None:
            self._info.reachabilityChanged.disconnect(self._on_reachability_changed)
        elif self._fallback is not None:
            self._fallback.stop()
        self._callback = None

    @Slot(QNetworkInformation.Reachability)
    def _on_reachability_changed(self, reachability: QNetworkInformation.Reachability) -> None:
        callback = self._callback
        if callback is not None:
            callback(is_reachable(reachability))
