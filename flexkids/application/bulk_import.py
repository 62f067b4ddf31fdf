from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable

from flexkids.application.sync_engine import SyncEngine
from flexkids.core.errors import AppError
from flexkids.core.observability import OperationContext, log_event
from flexkids.domain.models import Record

logger = logging.getLogger(__name__)

DEFAULT_PAUSE_EVERY = 50
DEFAULT_PAUSE_SECONDS = 0.5


@dataclass
class ImportReport:
    collection: str
    imported: int = 0
    failed: int = 0
    pauses: int = 0
    ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class BulkImporter:
    """Carga masiva de registros a través de `save_locally`.

    Cada `pause_every` registros se cede el paso durante `pause_seconds`
    para que el drenado de la cola y la UI no se queden sin turno.
    """

    def __init__(
        self,
        engine: SyncEngine,
        *,
        pause_every: int = DEFAULT_PAUSE_EVERY,
        pause_seconds: float = DEFAULT_PAUSE_SECONDS,
        sleeper: Callable[[float], None] = time.sleep,
    ) -> None:
        if pause_every <= 0:
            raise ValueError("pause_every debe ser positivo")
        self._engine = engine
        self._pause_every = pause_every
        self._pause_seconds = pause_seconds
        self._sleeper = sleeper

    def import_records(self, collection: str, records: Iterable[Record]) -> ImportReport:
        report = ImportReport(collection=collection)
        with OperationContext(f"bulk_import:{collection}"):
            for position, record in enumerate(records, start=1):
                try:
                    report.ids.append(self._engine.save_locally(collection, "create", record))
                    report.imported += 1
                except AppError as exc:
                    report.failed += 1
                    report.errors.append(f"#{position}: {exc}")
                    logger.warning("bulk_import_record_failed", extra={"extra": {"position": position, "error": str(exc)}})
                if position % self._pause_every == 0:
                    report.pauses += 1
                    self._sleeper(self._pause_seconds)
            log_event(
                logger,
                "bulk_import_finished",
                {"collection": collection, "imported": report.imported, "failed": report.failed},
            )
        return report
