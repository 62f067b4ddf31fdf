from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, TypeVar

import gspread
from google.auth.exceptions import DefaultCredentialsError

from flexkids.bootstrap.logging import log_operational_error
from flexkids.core.observability import get_correlation_id
from flexkids.domain.sheets_errors import SheetsPermissionError, SheetsRateLimitError
from flexkids.infrastructure.sheets_errors import map_gspread_exception

logger = logging.getLogger(__name__)

_MAX_RETRIES = 5
_BASE_BACKOFF_SECONDS = 1.0
_NEW_WORKSHEET_ROWS = 1000
_NEW_WORKSHEET_COLS = 26

T = TypeVar("T")


def backoff_seconds(attempt: int, base_seconds: float = _BASE_BACKOFF_SECONDS) -> float:
    return base_seconds * (2 ** (attempt - 1))


class SheetsClient:
    """Acceso a un Spreadsheet con reintentos ante rate limit y caché de lecturas.

    La caché de valores por hoja se invalida en cada escritura sobre esa
    hoja, así una consulta posterior nunca ve datos anteriores a un alta
    hecha desde este mismo proceso.
    """

    def __init__(self, *, sleeper: Callable[[float], None] = time.sleep) -> None:
        self._spreadsheet: gspread.Spreadsheet | None = None
        self._worksheet_cache: dict[str, gspread.Worksheet] = {}
        self._values_cache: dict[str, list[list[str]]] = {}
        self._sleeper = sleeper
        self._read_calls_count = 0
        self._write_calls_count = 0

    @property
    def is_open(self) -> bool:
        return self._spreadsheet is not None

    def open_spreadsheet(self, credentials_path: Path, spreadsheet_id: str) -> gspread.Spreadsheet:
        logger.info("Conectando a Google Sheets", extra={"extra": {"spreadsheet_id": spreadsheet_id}})
        try:
            client = gspread.service_account(filename=str(credentials_path))
            spreadsheet = self._with_rate_limit_retry(
                "open_spreadsheet",
                lambda: client.open_by_key(spreadsheet_id),
            )
        except (
            gspread.exceptions.GSpreadException,
            FileNotFoundError,
            json.JSONDecodeError,
            DefaultCredentialsError,
            OSError,
        ) as exc:
            mapped_error = map_gspread_exception(exc)
            if isinstance(mapped_error, SheetsPermissionError):
                self._log_permission_error(mapped_error, spreadsheet_id=spreadsheet_id)
            raise mapped_error from exc
        self._spreadsheet = spreadsheet
        self._worksheet_cache = {}
        self._values_cache = {}
        return spreadsheet

    def get_worksheet(self, name: str, *, create: bool = False) -> gspread.Worksheet:
        if name in self._worksheet_cache:
            return self._worksheet_cache[name]
        spreadsheet = self._require_spreadsheet()
        try:
            worksheet = self._with_rate_limit_retry(
                f"spreadsheet.worksheet({name})",
                lambda: spreadsheet.worksheet(name),
            )
        except gspread.exceptions.WorksheetNotFound:
            if not create:
                raise
            logger.info("Creando hoja '%s' en el Spreadsheet", name)
            worksheet = self._with_rate_limit_retry(
                f"spreadsheet.add_worksheet({name})",
                lambda: spreadsheet.add_worksheet(title=name, rows=_NEW_WORKSHEET_ROWS, cols=_NEW_WORKSHEET_COLS),
            )
        self._worksheet_cache[name] = worksheet
        return worksheet

    def read_all_values(self, worksheet_name: str) -> list[list[str]]:
        if worksheet_name in self._values_cache:
            return self._values_cache[worksheet_name]
        worksheet = self.get_worksheet(worksheet_name, create=True)
        values = self._with_rate_limit_retry(
            f"worksheet.get_all_values({worksheet_name})",
            worksheet.get_all_values,
        )
        self._values_cache[worksheet_name] = values
        self._read_calls_count += 1
        return values

    def append_rows(self, worksheet_name: str, rows: list[list[Any]], *, value_input_option: str = "RAW") -> None:
        if not rows:
            return
        worksheet = self.get_worksheet(worksheet_name, create=True)
        self._with_rate_limit_retry(
            f"worksheet.append_rows({worksheet_name})",
            lambda: worksheet.append_rows(rows, value_input_option=value_input_option),
        )
        self._after_write(worksheet_name)

    def batch_update(
        self,
        worksheet_name: str,
        data: list[dict[str, Any]],
        *,
        value_input_option: str = "RAW",
    ) -> None:
        if not data:
            return
        worksheet = self.get_worksheet(worksheet_name, create=True)
        self._with_rate_limit_retry(
            f"worksheet.batch_update({worksheet_name})",
            lambda: worksheet.batch_update(data, value_input_option=value_input_option),
        )
        self._after_write(worksheet_name)

    def invalidate(self, worksheet_name: str | None = None) -> None:
        if worksheet_name is None:
            self._values_cache.clear()
            return
        self._values_cache.pop(worksheet_name, None)

    def get_read_calls_count(self) -> int:
        return self._read_calls_count

    def get_write_calls_count(self) -> int:
        return self._write_calls_count

    def _after_write(self, worksheet_name: str) -> None:
        self._write_calls_count += 1
        self.invalidate(worksheet_name)

    def _require_spreadsheet(self) -> gspread.Spreadsheet:
        if self._spreadsheet is None:
            raise RuntimeError("Spreadsheet no inicializado. Llama a open_spreadsheet primero.")
        return self._spreadsheet

    def _with_rate_limit_retry(self, operation_name: str, operation: Callable[[], T]) -> T:
        for attempt in range(1, _MAX_RETRIES + 1):
            try:
                return operation()
            except gspread.exceptions.APIError as exc:
                mapped_error = map_gspread_exception(exc)
                if not isinstance(mapped_error, SheetsRateLimitError):
                    if isinstance(mapped_error, SheetsPermissionError):
                        self._log_permission_error(
                            mapped_error,
                            spreadsheet_id=getattr(self._spreadsheet, "id", None),
                            operation_name=operation_name,
                        )
                    raise mapped_error from exc
                if attempt >= _MAX_RETRIES:
                    logger.error("Google Sheets rate limit persistente en %s tras %s intentos.", operation_name, attempt)
                    raise mapped_error from exc
                wait_seconds = backoff_seconds(attempt)
                logger.warning(
                    "Rate limit en Google Sheets (%s). intento=%s/%s backoff=%.3fs",
                    operation_name,
                    attempt,
                    _MAX_RETRIES,
                    wait_seconds,
                )
                self._sleeper(wait_seconds)
        raise RuntimeError("No se pudo completar la operación de Google Sheets.")

    @staticmethod
    def _log_permission_error(
        error: SheetsPermissionError,
        *,
        spreadsheet_id: str | None = None,
        operation_name: str | None = None,
    ) -> None:
        log_operational_error(
            logger,
            "Permisos insuficientes en Google Sheets",
            exc=error,
            extra={
                "correlation_id": get_correlation_id(),
                "operation": operation_name or "open_spreadsheet",
                "spreadsheet_id": spreadsheet_id,
            },
        )
