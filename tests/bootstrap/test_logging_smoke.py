from __future__ import annotations

import json
import logging
import sys

from flexkids.bootstrap.logging import (
    CRASH_LOG_NAME,
    ERROR_OPERATIVO_LOG_NAME,
    MAIN_LOG_NAME,
    configure_logging,
    install_exception_hook,
    log_operational_error,
)
from flexkids.core.observability import OperationContext


def _last_event(path) -> dict:
    return json.loads(path.read_text(encoding="utf-8").strip().splitlines()[-1])


def test_configure_logging_writes_jsonl_log_file(tmp_path) -> None:
    configure_logging(tmp_path)

    logger = logging.getLogger("tests.logging_smoke")
    with OperationContext("sync_all", correlation_id="cid-42"):
        logger.info("smoke log message", extra={"extra": {"pending": 3}})

    event = _last_event(tmp_path / MAIN_LOG_NAME)
    assert event["mensaje"] == "smoke log message"
    assert event["correlation_id"] == "cid-42"
    assert event["operation"] == "sync_all"
    assert event["extra"] == {"pending": 3}
    assert event["logger"] == "tests.logging_smoke"


def test_error_operativo_solo_recibe_errores(tmp_path) -> None:
    configure_logging(tmp_path)
    logger = logging.getLogger("tests.logging_smoke")

    logger.warning("solo aviso")
    log_operational_error(logger, "sync_entry_failed", exc=RuntimeError("remoto caído"), extra={"entry_id": "e1"})

    lines = (tmp_path / ERROR_OPERATIVO_LOG_NAME).read_text(encoding="utf-8").strip().splitlines()
    assert len(lines) == 1
    event = json.loads(lines[0])
    assert event["mensaje"] == "sync_entry_failed"
    assert event["extra"] == {"entry_id": "e1"}
    assert "RuntimeError: remoto caído" in event["exc_info"]


def test_install_exception_hook_writes_crash_log(tmp_path) -> None:
    original_hook = sys.excepthook
    configure_logging(tmp_path)
    install_exception_hook(tmp_path)

    try:
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            exc_type, exc, tb = sys.exc_info()
            assert exc_type is not None and exc is not None and tb is not None
            sys.excepthook(exc_type, exc, tb)

        crash_event = _last_event(tmp_path / CRASH_LOG_NAME)
        assert crash_event["level"] == "CRITICAL"
        assert "RuntimeError: boom" in crash_event["exc_info"]
    finally:
        sys.excepthook = original_hook
