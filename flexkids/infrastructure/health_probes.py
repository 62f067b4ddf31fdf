from __future__ import annotations

import socket
import time
from typing import Callable

from flexkids.domain.ports import LocalStorePort

DEFAULT_INTERNET_ENDPOINT = ("8.8.8.8", 53)
DEFAULT_API_ENDPOINT = ("sheets.googleapis.com", 443)

ConnectionFactory = Callable[..., socket.socket]


class DefaultConnectivityProbe:
    def __init__(
        self,
        *,
        internet_endpoint: tuple[str, int] = DEFAULT_INTERNET_ENDPOINT,
        api_endpoint: tuple[str, int] = DEFAULT_API_ENDPOINT,
        connect: ConnectionFactory = socket.create_connection,
    ) -> None:
        self._internet_endpoint = internet_endpoint
        self._api_endpoint = api_endpoint
        self._connect = connect

    def check(self, *, timeout_seconds: float = 3.0) -> tuple[bool, bool, float | None, str]:
        internet_ok = self._reachable(self._internet_endpoint, timeout_seconds)
        latency_ms: float | None = None
        started = time.perf_counter()
        api_reachable = self._reachable(self._api_endpoint, timeout_seconds)
        if api_reachable:
            latency_ms = (time.perf_counter() - started) * 1000

        if latency_ms is None:
            return internet_ok, api_reachable, None, "Latencia no disponible (sin conexión API)."
        return internet_ok, api_reachable, latency_ms, f"Latencia aproximada API: {latency_ms:.0f} ms."

    def is_online(self, *, timeout_seconds: float = 3.0) -> bool:
        return self._reachable(self._internet_endpoint, timeout_seconds)

    def _reachable(self, endpoint: tuple[str, int], timeout_seconds: float) -> bool:
        try:
            self._connect(endpoint, timeout=timeout_seconds).close()
        except OSError:
            return False
        return True


class LocalStoreProbe:
    """Diagnóstico del Local Store para el comando `status`."""

    def __init__(self, local_store: LocalStorePort) -> None:
        self._local_store = local_store

    def check(self) -> dict[str, tuple[bool, str, str]]:
        try:
            stats = self._local_store.sync_queue_stats()
        except Exception as exc:  # noqa: BLE001
            return {
                "local_db": (False, f"Local Store no accesible: {exc}", "open_db_help"),
                "dead_letters": (False, "No se pudo consultar la cola de sincronización.", "open_sync_panel"),
            }
        dead_ok = stats.dead_letter == 0
        return {
            "local_db": (True, f"Local Store accesible. {stats.pending} cambios pendientes de sincronizar.", "open_db_help"),
            "dead_letters": (
                dead_ok,
                "Sin cambios descartados por la sincronización."
                if dead_ok
                else f"{stats.dead_letter} cambios requieren revisión (usa `requeue`).",
                "open_sync_panel",
            ),
        }
