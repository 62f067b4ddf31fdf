from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Channel(Generic[T]):
    """Canal pub/sub tipado por payload.

    Sustituye los eventos "por nombre" de la versión web: cada canal transporta
    un único tipo de mensaje y los suscriptores reciben instancias de ese tipo.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._handlers: list[Callable[[T], None]] = []

    def subscribe(self, handler: Callable[[T], None]) -> Callable[[], None]:
        with self._lock:
            self._handlers.append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return _unsubscribe

    def publish(self, message: T) -> int:
        with self._lock:
            handlers = list(self._handlers)
        delivered = 0
        for handler in handlers:
            try:
                handler(message)
                delivered += 1
            except Exception:  # noqa: BLE001
                logger.exception("Suscriptor del canal '%s' falló", self.name)
        return delivered

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._handlers)


@dataclass(frozen=True)
class DataUpdated:
    collection: str
    reason: str
    ids: tuple[str, ...] = ()


@dataclass
class AppEvents:
    data_updated: Channel[DataUpdated] = field(default_factory=lambda: Channel("data_updated"))

    def clear(self) -> None:
        self.data_updated.clear()
