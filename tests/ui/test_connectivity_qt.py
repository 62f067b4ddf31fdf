from __future__ import annotations

from pathlib import Path

import pytest
from fakes import ManualConnectivitySignal
from PySide6.QtNetwork import QNetworkInformation

from flexkids.bootstrap.container import build_connectivity_signal
from flexkids.bootstrap.settings import SyncSettings
from flexkids.ui import connectivity_qt
from flexkids.ui.connectivity_qt import QtReachabilitySignal

Reachability = QNetworkInformation.Reachability


class _FakeReachabilityChanged:
    def __init__(self) -> None:
        self.slots: list = []

    def connect(self, slot) -> None:
        self.slots.append(slot)

    def disconnect(self, slot) -> None:
        self.slots.remove(slot)

    def emit(self, reachability: Reachability) -> None:
        for slot in list(self.slots):
            slot(reachability)


class _FakeInfo:
    def __init__(self, reachability: Reachability) -> None:
        self._reachability = reachability
        self.reachabilityChanged = _FakeReachabilityChanged()

    def reachability(self) -> Reachability:
        return self._reachability


def _fake_backend(monkeypatch: pytest.MonkeyPatch, info: _FakeInfo | None) -> None:
    class _FakeNetworkInformation:
        @staticmethod
        def loadDefaultBackend() -> bool:
            return info is not None

        @staticmethod
        def instance() -> _FakeInfo | None:
            return info

    monkeypatch.setattr(connectivity_qt, "QNetworkInformation", _FakeNetworkInformation)


def test_cambios_de_reachability_llegan_al_callback(qt_app, monkeypatch: pytest.MonkeyPatch) -> None:
    info = _FakeInfo(Reachability.Online)
    _fake_backend(monkeypatch, info)
    signal = QtReachabilitySignal()
    received: list[bool] = []

    assert signal.current() is True
    signal.start(received.append)
    info.reachabilityChanged.emit(Reachability.Disconnected)
    info.reachabilityChanged.emit(Reachability.Local)
    info.reachabilityChanged.emit(Reachability.Online)

    assert received == [False, False, True]

    signal.stop()
    assert info.reachabilityChanged.slots == []


def test_sin_backend_delega_en_el_respaldo(qt_app, monkeypatch: pytest.MonkeyPatch) -> None:
    _fake_backend(monkeypatch, None)
    fallback = ManualConnectivitySignal(online=False)
    signal = QtReachabilitySignal(fallback=fallback)
    received: list[bool] = []

    assert signal.current() is False
    signal.start(received.append)
    fallback.emit(True)
    signal.stop()

    assert received == [True]
    assert fallback.stopped is True


def test_container_usa_la_senal_qt_con_aplicacion_viva(qt_app, tmp_path: Path) -> None:
    signal = build_connectivity_signal(SyncSettings(db_path=tmp_path / "qt.db"))

    assert isinstance(signal, QtReachabilitySignal)
