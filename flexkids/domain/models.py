from __future__ import annotations

import random
import string
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

Record = dict[str, Any]
SyncOperation = Literal["create", "update", "delete"]
QueueStatus = Literal["pending", "synced", "dead_letter"]

LOCAL_ID_PREFIX = "local_"
SYNC_QUEUE = "syncQueue"

VISITS = "visits"
CUSTOMERS = "customers"
CHILDREN = "children"
PAYMENTS = "payments"
PACKAGES = "packages"
SETTINGS = "settings"

STATUS_PENDING: QueueStatus = "pending"
STATUS_SYNCED: QueueStatus = "synced"
STATUS_DEAD_LETTER: QueueStatus = "dead_letter"

_BASE36 = string.digits + string.ascii_lowercase


@dataclass(frozen=True)
class CollectionSchema:
    name: str
    indexes: dict[str, str] = field(default_factory=dict)

    def attribute_for(self, index_name: str) -> str | None:
        return self.indexes.get(index_name)


# Índice -> atributo del registro. "by-sync" apunta a la columna synced.
COLLECTIONS: dict[str, CollectionSchema] = {
    VISITS: CollectionSchema(VISITS, {"by-sync": "synced", "by-unit": "unitId", "by-child": "childId"}),
    CUSTOMERS: CollectionSchema(CUSTOMERS, {"by-sync": "synced"}),
    CHILDREN: CollectionSchema(CHILDREN, {"by-sync": "synced", "by-customer": "customerId"}),
    PAYMENTS: CollectionSchema(
        PAYMENTS, {"by-sync": "synced", "by-date": "date", "by-customer": "customerId"}
    ),
    PACKAGES: CollectionSchema(PACKAGES, {"by-sync": "synced", "by-customer": "customerId"}),
    SETTINGS: CollectionSchema(SETTINGS),
}

SYNC_QUEUE_SCHEMA = CollectionSchema(SYNC_QUEUE, {"by-synced": "synced"})


def generate_local_id(now_ms: int | None = None, rng: random.Random | None = None) -> str:
    timestamp = int(time.time() * 1000) if now_ms is None else now_ms
    chooser = rng or random.SystemRandom()
    suffix = "".join(chooser.choice(_BASE36) for _ in range(9))
    return f"{LOCAL_ID_PREFIX}{timestamp}_{suffix}"


def is_local_id(value: object) -> bool:
    return isinstance(value, str) and value.startswith(LOCAL_ID_PREFIX)


@dataclass(frozen=True)
class SyncQueueEntry:
    id: str
    collection: str
    operation: SyncOperation
    data: Record
    timestamp: int
    synced: bool = False
    seq: int = 0
    status: QueueStatus = STATUS_PENDING
    retry_count: int = 0
    last_error: str | None = None
    next_attempt_at: int | None = None

    @property
    def record_id(self) -> str | None:
        value = self.data.get("id")
        return str(value) if value is not None else None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RemoteConfig:
    spreadsheet_id: str
    credentials_path: str
    device_id: str = ""
