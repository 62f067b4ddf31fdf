from __future__ import annotations

from concurrent.futures import Future
from datetime import datetime
from typing import Any, Callable, Iterable, Protocol

from flexkids.domain.models import Record, RemoteConfig, SyncOperation, SyncQueueEntry
from flexkids.domain.remote_query import RemoteQuery
from flexkids.domain.sync_models import QueueStats


class LocalStorePort(Protocol):
    def init(self) -> None:
        ...

    def close(self) -> None:
        ...

    def add(self, collection: str, record: Record) -> str:
        ...

    def get(self, collection: str, record_id: str) -> Record | None:
        ...

    def get_all(self, collection: str) -> list[Record]:
        ...

    def get_all_by_index(self, collection: str, index_name: str, value: Any) -> list[Record]:
        ...

    def update(self, collection: str, record_id: str, partial: Record) -> None:
        ...

    def delete(self, collection: str, record_id: str) -> None:
        ...

    def mark_item_as_synced(self, collection: str, record_id: str) -> None:
        ...

    def migrate_identity(self, collection: str, old_id: str, new_id: str, record: Record) -> None:
        ...

    def resolve_alias(self, collection: str, record_id: str) -> str | None:
        ...

    def add_to_sync_queue(self, collection: str, operation: SyncOperation, data: Record) -> SyncQueueEntry:
        ...

    def get_pending_sync_items(self, now_ms: int | None = None) -> list[SyncQueueEntry]:
        ...

    def get_sync_entry(self, entry_id: str) -> SyncQueueEntry | None:
        ...

    def mark_as_synced(self, entry_id: str) -> None:
        ...

    def record_sync_failure(self, entry_id: str, error: str, next_attempt_at: int | None) -> int:
        ...

    def move_to_dead_letter(self, entry_id: str, error: str) -> None:
        ...

    def get_dead_letters(self) -> list[SyncQueueEntry]:
        ...

    def requeue_dead_letters(self, entry_ids: Iterable[str] | None = None) -> int:
        ...

    def clear_synced_entries(self) -> int:
        ...

    def clear_sync_queue(self) -> None:
        ...

    def sync_queue_stats(self) -> QueueStats:
        ...


class RemoteDocumentStorePort(Protocol):
    def create_document(self, collection: str, data: Record) -> str:
        ...

    def update_document(self, collection: str, document_id: str, partial: Record) -> None:
        ...

    def query_documents(self, collection: str, query: RemoteQuery) -> list[Record]:
        ...


class ConnectivitySignalPort(Protocol):
    def current(self) -> bool:
        ...

    def start(self, callback: Callable[[bool], None]) -> None:
        ...

    def stop(self) -> None:
        ...


class ConnectivityProbePort(Protocol):
    def check(self, *, timeout_seconds: float = 3.0) -> tuple[bool, bool, float | None, str]:
        """Retorna: internet_ok, api_reachable, latency_ms, mensaje."""


class ExecutorPort(Protocol):
    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future:
        ...

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        ...


class RemoteConfigStorePort(Protocol):
    def load(self) -> RemoteConfig | None:
        ...

    def save(self, config: RemoteConfig) -> RemoteConfig:
        ...


Clock = Callable[[], datetime]
