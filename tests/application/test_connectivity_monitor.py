from __future__ import annotations

from fakes import ManualConnectivitySignal

from flexkids.application.connectivity import ConnectivityMonitor


def test_estado_inicial_desde_la_senal() -> None:
    assert ConnectivityMonitor(ManualConnectivitySignal(online=True)).is_online() is True
    assert ConnectivityMonitor(ManualConnectivitySignal(online=False)).is_online() is False
    assert ConnectivityMonitor().is_online() is False
    assert ConnectivityMonitor(ManualConnectivitySignal(online=False), initial_online=True).is_online() is True


def test_solo_notifica_transiciones() -> None:
    signal = ManualConnectivitySignal(online=False)
    monitor = ConnectivityMonitor(signal)
    seen: list[bool] = []
    monitor.on_connection_change(seen.append)
    monitor.start()

    signal.emit(False)
    signal.emit(True)
    signal.emit(True)
    signal.emit(False)

    assert seen == [True, False]
    assert monitor.is_online() is False


def test_unsubscribe_deja_de_notificar() -> None:
    monitor = ConnectivityMonitor(initial_online=False)
    seen: list[bool] = []
    unsubscribe = monitor.on_connection_change(seen.append)

    monitor.set_online(True)
    unsubscribe()
    unsubscribe()
    monitor.set_online(False)

    assert seen == [True]


def test_suscriptor_que_falla_no_corta_al_resto() -> None:
    monitor = ConnectivityMonitor(initial_online=False)
    seen: list[bool] = []

    def _boom(_online: bool) -> None:
        raise RuntimeError("boom")

    monitor.on_connection_change(_boom)
    monitor.on_connection_change(seen.append)

    monitor.set_online(True)

    assert seen == [True]
    assert monitor.is_online() is True


def test_drenado_solo_al_pasar_a_online() -> None:
    monitor = ConnectivityMonitor(initial_online=False)
    drains: list[str] = []
    monitor.bind_drain(lambda: drains.append("drain"))

    monitor.set_online(True)
    monitor.set_online(True)
    monitor.set_online(False)
    monitor.set_online(True)

    assert drains == ["drain", "drain"]


def test_stop_libera_senal_y_suscriptores() -> None:
    signal = ManualConnectivitySignal(online=False)
    monitor = ConnectivityMonitor(signal)
    seen: list[bool] = []
    drains: list[str] = []
    monitor.on_connection_change(seen.append)
    monitor.bind_drain(lambda: drains.append("drain"))
    monitor.start()

    monitor.stop()
    monitor.set_online(True)

    assert signal.stopped is True
    assert seen == []
    assert drains == []
