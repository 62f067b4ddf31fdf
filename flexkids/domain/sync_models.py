from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 10
    base_backoff_seconds: float = 5.0
    max_backoff_seconds: float = 300.0

    def backoff_for(self, retry_count: int) -> float:
        if retry_count <= 0:
            return 0.0
        return min(self.base_backoff_seconds * (2 ** (retry_count - 1)), self.max_backoff_seconds)

    def exhausted(self, retry_count: int) -> bool:
        return retry_count >= self.max_retries


@dataclass(frozen=True)
class IdentityMigration:
    collection: str
    local_id: str
    remote_id: str


@dataclass(frozen=True)
class SyncSummary:
    skipped: bool = False
    skip_reason: str = ""
    processed: int = 0
    synced: int = 0
    failed: int = 0
    held: int = 0
    dead_lettered: int = 0
    stale_identity: int = 0
    migrations: tuple[IdentityMigration, ...] = ()
    errors: tuple[str, ...] = ()
    duration_ms: int = 0

    @classmethod
    def skipped_because(cls, reason: str) -> "SyncSummary":
        return cls(skipped=True, skip_reason=reason)

    @property
    def has_failures(self) -> bool:
        return self.failed > 0 or self.dead_lettered > 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class QueueStats:
    pending: int = 0
    synced: int = 0
    dead_letter: int = 0
    by_collection: dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.pending + self.synced + self.dead_letter
