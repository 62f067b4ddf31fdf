from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

from gspread.utils import rowcol_to_a1

from flexkids.core.metrics import medir_tiempo
from flexkids.domain.models import Record
from flexkids.domain.ports import RemoteConfigStorePort
from flexkids.domain.remote_query import RemoteQuery, apply_remote_query
from flexkids.domain.sheets_errors import SheetsNotConfiguredError, SheetsNotFoundError
from flexkids.infrastructure.sheets_client import SheetsClient

logger = logging.getLogger(__name__)

ID_COLUMN = "id"
SERVER_CREATED_AT = "serverCreatedAt"
SERVER_UPDATED_AT = "serverUpdatedAt"


def _server_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def encode_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return json.dumps(value.isoformat())
    return json.dumps(value, ensure_ascii=False)


def decode_cell(raw: str) -> Any:
    if raw == "":
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        # Celda editada a mano en la hoja: se devuelve el texto tal cual.
        return raw


def rows_to_records(values: list[list[str]]) -> list[Record]:
    if not values:
        return []
    headers = values[0]
    records: list[Record] = []
    for row in values[1:]:
        if not any(cell.strip() for cell in row):
            continue
        record: Record = {}
        for index, header in enumerate(headers):
            if not header:
                continue
            raw = row[index] if index < len(row) else ""
            value = decode_cell(raw)
            if value is not None:
                record[header] = value
        if record.get(ID_COLUMN):
            record[ID_COLUMN] = str(record[ID_COLUMN])
            records.append(record)
    return records


class SheetsDocumentStore:
    """Almacén de documentos remoto sobre Google Sheets.

    Cada colección es una hoja cuya primera fila son los nombres de campo;
    cada documento es una fila y cada celda guarda el valor en JSON. El id
    lo asigna este adaptador (uuid4) y actúa como clave de la fila. Los
    filtros de `RemoteQuery` se evalúan tras leer la hoja completa.
    """

    def __init__(
        self,
        client: SheetsClient,
        config_store: RemoteConfigStorePort,
        *,
        upsert_missing: bool = True,
    ) -> None:
        self._client = client
        self._config_store = config_store
        self._upsert_missing = upsert_missing
        self._lock = threading.Lock()

    def create_document(self, collection: str, data: Record) -> str:
        document_id = str(uuid.uuid4())
        now = _server_timestamp()
        document = {
            **{key: value for key, value in data.items() if key not in ("id", "synced")},
            ID_COLUMN: document_id,
            SERVER_CREATED_AT: now,
            SERVER_UPDATED_AT: now,
        }
        with self._lock, medir_tiempo("latency.remote_create_ms"):
            self._ensure_open()
            headers = self._ensure_headers(collection, document.keys())
            row = [encode_cell(document.get(header)) for header in headers]
            self._client.append_rows(collection, [row])
        logger.info("remote_document_created", extra={"extra": {"collection": collection, "id": document_id}})
        return document_id

    def update_document(self, collection: str, document_id: str, partial: Record) -> None:
        changes = {key: value for key, value in partial.items() if key not in ("id", "synced")}
        changes[SERVER_UPDATED_AT] = _server_timestamp()
        with self._lock, medir_tiempo("latency.remote_update_ms"):
            self._ensure_open()
            headers = self._ensure_headers(collection, changes.keys())
            values = self._client.read_all_values(collection)
            row_number = self._find_row(values, headers, document_id)
            if row_number is None:
                if not self._upsert_missing:
                    raise SheetsNotFoundError(f"No existe el documento {collection}/{document_id} en el remoto.")
                # Documentos con id fijo (ajustes): se crean con el primer update.
                changes.setdefault(SERVER_CREATED_AT, changes[SERVER_UPDATED_AT])
                changes[ID_COLUMN] = document_id
                headers = self._ensure_headers(collection, changes.keys())
                self._client.append_rows(collection, [[encode_cell(changes.get(header)) for header in headers]])
                return
            current = values[row_number - 1]
            row = []
            for index, header in enumerate(headers):
                if header in changes:
                    row.append(encode_cell(changes[header]))
                else:
                    row.append(current[index] if index < len(current) else "")
            self._client.batch_update(
                collection,
                [{"range": f"A{row_number}:{rowcol_to_a1(row_number, len(headers))}", "values": [row]}],
            )

    def query_documents(self, collection: str, query: RemoteQuery) -> list[Record]:
        with self._lock, medir_tiempo("latency.remote_query_ms"):
            self._ensure_open()
            self._client.invalidate(collection)
            values = self._client.read_all_values(collection)
        return apply_remote_query(rows_to_records(values), query)

    def _ensure_open(self) -> None:
        if self._client.is_open:
            return
        config = self._config_store.load()
        if config is None:
            raise SheetsNotConfiguredError("No hay Spreadsheet configurado para sincronizar.")
        self._client.open_spreadsheet(Path(config.credentials_path), config.spreadsheet_id)

    def _ensure_headers(self, collection: str, fields: Any) -> list[str]:
        values = self._client.read_all_values(collection)
        headers = list(values[0]) if values else []
        missing = [field for field in fields if field not in headers]
        if ID_COLUMN not in headers and ID_COLUMN not in missing:
            missing.insert(0, ID_COLUMN)
        if not missing:
            return headers
        headers.extend(missing)
        self._client.batch_update(
            collection,
            [{"range": f"A1:{rowcol_to_a1(1, len(headers))}", "values": [headers]}],
        )
        logger.info("remote_headers_extended", extra={"extra": {"collection": collection, "added": missing}})
        return headers

    @staticmethod
    def _find_row(values: list[list[str]], headers: list[str], document_id: str) -> int | None:
        id_index = headers.index(ID_COLUMN)
        for offset, row in enumerate(values[1:], start=2):
            if id_index < len(row) and decode_cell(row[id_index]) == document_id:
                return offset
        return None
