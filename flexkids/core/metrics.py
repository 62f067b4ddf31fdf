from __future__ import annotations

from collections import deque
from contextlib import contextmanager
from functools import wraps
from threading import Lock
from time import perf_counter
from typing import Any, Callable, Iterator

SYNC_ENTRIES_SYNCED = "sync.entries_synced"
SYNC_ENTRIES_FAILED = "sync.entries_failed"
SYNC_ENTRIES_HELD = "sync.entries_held"
SYNC_DEAD_LETTERS = "sync.dead_letters"
SYNC_IDENTITY_MIGRATIONS = "sync.identity_migrations"
SYNC_DRAINS_SKIPPED = "sync.drains_skipped"
CACHE_REFRESH_OK = "cache.refresh_ok"
CACHE_REFRESH_FAILED = "cache.refresh_failed"

# La caja puede estar abierta días seguidos: solo se guardan las últimas muestras.
_MAX_SAMPLES = 500


class MetricsRegistry:
    """Contadores y tiempos en memoria del proceso.

    No se persiste nada; `snapshot()` es lo que consultan el CLI y los logs
    al cerrar la aplicación.
    """

    def __init__(self, max_samples: int = _MAX_SAMPLES) -> None:
        self._lock = Lock()
        self._max_samples = max_samples
        self._counters: dict[str, int] = {}
        self._timings: dict[str, deque[float]] = {}

    def contador(self, nombre: str) -> int:
        with self._lock:
            return self._counters.get(nombre, 0)

    def incrementar(self, nombre: str, valor: int = 1) -> None:
        if valor == 0:
            return
        with self._lock:
            self._counters[nombre] = self._counters.get(nombre, 0) + valor

    def registrar_tiempo(self, nombre: str, milisegundos: float) -> None:
        with self._lock:
            bucket = self._timings.get(nombre)
            if bucket is None:
                bucket = deque(maxlen=self._max_samples)
                self._timings[nombre] = bucket
            bucket.append(milisegundos)

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._timings.clear()

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            counters = dict(self._counters)
            timings = {name: list(values) for name, values in self._timings.items()}
        return {
            "counters": counters,
            "timings_ms": {
                name: {
                    "count": len(values),
                    "last": values[-1] if values else 0.0,
                    "avg": (sum(values) / len(values)) if values else 0.0,
                    "max": max(values) if values else 0.0,
                }
                for name, values in timings.items()
            },
        }


metrics_registry = MetricsRegistry()


@contextmanager
def medir_tiempo(nombre_metrica: str, registry: MetricsRegistry | None = None) -> Iterator[None]:
    """Registra la duración del bloque, termine bien o con excepción."""
    target = registry or metrics_registry
    inicio = perf_counter()
    try:
        yield
    finally:
        target.registrar_tiempo(nombre_metrica, (perf_counter() - inicio) * 1000)


def cronometrado(nombre_metrica: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            with medir_tiempo(nombre_metrica):
                return func(*args, **kwargs)

        return wrapper

    return decorator
