from __future__ import annotations

from flexkids.domain.models import CUSTOMERS
from flexkids.infrastructure.health_probes import DefaultConnectivityProbe, LocalStoreProbe
from flexkids.infrastructure.local_store_sqlite import LocalStoreSQLite


class _Socket:
    def close(self) -> None:
        return None


def _connect_only(*reachable: tuple[str, int]):
    calls: list[tuple[tuple[str, int], float]] = []

    def _connect(endpoint: tuple[str, int], timeout: float):
        calls.append((endpoint, timeout))
        if endpoint not in reachable:
            raise OSError("unreachable")
        return _Socket()

    return _connect, calls


def test_probe_con_internet_y_api() -> None:
    connect, calls = _connect_only(("8.8.8.8", 53), ("sheets.googleapis.com", 443))
    probe = DefaultConnectivityProbe(connect=connect)

    internet_ok, api_ok, latency_ms, message = probe.check(timeout_seconds=1.5)

    assert internet_ok and api_ok
    assert latency_ms is not None and latency_ms >= 0
    assert "Latencia aproximada" in message
    assert [timeout for _endpoint, timeout in calls] == [1.5, 1.5]


def test_probe_sin_red() -> None:
    connect, _calls = _connect_only()
    probe = DefaultConnectivityProbe(connect=connect)

    assert probe.check() == (False, False, None, "Latencia no disponible (sin conexión API).")
    assert probe.is_online() is False


def test_local_store_probe_avisa_de_dead_letters(local_store: LocalStoreSQLite) -> None:
    entry = local_store.add_to_sync_queue(CUSTOMERS, "create", {"id": "c1"})
    local_store.add_to_sync_queue(CUSTOMERS, "create", {"id": "c2"})
    probe = LocalStoreProbe(local_store)

    ok_checks = probe.check()
    assert ok_checks["local_db"][0] is True
    assert "2 cambios pendientes" in ok_checks["local_db"][1]
    assert ok_checks["dead_letters"][0] is True

    local_store.move_to_dead_letter(entry.id, "boom")
    checks = probe.check()

    assert checks["dead_letters"][0] is False
    assert "requeue" in checks["dead_letters"][1]


def test_local_store_probe_con_store_cerrado(tmp_path) -> None:
    checks = LocalStoreProbe(LocalStoreSQLite(tmp_path / "cerrado.db")).check()

    assert checks["local_db"][0] is False
    assert checks["dead_letters"][0] is False
