from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping

from flexkids.domain.sync_models import RetryPolicy
from flexkids.infrastructure.db import DB_FILENAME

logger = logging.getLogger(__name__)

APP_DIR_NAME = "FlexKids"


def project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def resolve_appdata_dir(environ: Mapping[str, str] | None = None) -> Path:
    env = os.environ if environ is None else environ
    env_dir = env.get("LOCALAPPDATA")
    if env_dir:
        base_dir = Path(env_dir)
    else:
        base_dir = Path.home() / ".local" / "share"
    return base_dir / APP_DIR_NAME


def resolve_log_dir() -> Path:
    candidates: list[Path] = []
    env_dir = os.environ.get("FLEXKIDS_LOG_DIR")
    if env_dir:
        candidates.append(Path(env_dir))
    candidates.append(resolve_appdata_dir() / "logs")
    candidates.append(Path(tempfile.gettempdir()) / APP_DIR_NAME / "logs")

    for candidate in candidates:
        try:
            candidate.mkdir(parents=True, exist_ok=True)
            test_file = candidate / "_write_test.tmp"
            test_file.write_text("ok", encoding="utf-8")
            test_file.unlink(missing_ok=True)
            return candidate
        except OSError:
            continue

    fallback = project_root()
    fallback.mkdir(parents=True, exist_ok=True)
    return fallback


@dataclass(frozen=True)
class SyncSettings:
    """Parámetros de la sincronización y del Local Store.

    Los valores por defecto reproducen el comportamiento de la aplicación
    de caja: drenado cada 30 s y 10 s de espera máxima al remoto.
    """

    db_path: Path
    sync_interval_seconds: float = 30.0
    remote_timeout_seconds: float = 10.0
    retry_policy: RetryPolicy = RetryPolicy()
    connectivity_poll_seconds: float = 15.0
    import_pause_every: int = 50
    import_pause_seconds: float = 0.5


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw_value = env.get(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        value = float(raw_value)
    except ValueError:
        logger.warning("Valor inválido en %s=%r; se usa %s", name, raw_value, default)
        return default
    if value <= 0:
        logger.warning("%s debe ser positivo; se usa %s", name, default)
        return default
    return value


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw_value = env.get(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        value = int(raw_value)
    except ValueError:
        logger.warning("Valor inválido en %s=%r; se usa %s", name, raw_value, default)
        return default
    return value if value > 0 else default


def load_sync_settings(environ: Mapping[str, str] | None = None) -> SyncSettings:
    env = os.environ if environ is None else environ
    raw_db_path = env.get("FLEXKIDS_DB_PATH")
    db_path = Path(raw_db_path) if raw_db_path else resolve_appdata_dir(env) / DB_FILENAME
    defaults = SyncSettings(db_path=db_path)
    retry_policy = replace(
        defaults.retry_policy,
        max_retries=_env_int(env, "FLEXKIDS_MAX_RETRIES", defaults.retry_policy.max_retries),
    )
    return replace(
        defaults,
        sync_interval_seconds=_env_float(env, "FLEXKIDS_SYNC_INTERVAL_SECONDS", defaults.sync_interval_seconds),
        remote_timeout_seconds=_env_float(env, "FLEXKIDS_REMOTE_TIMEOUT_SECONDS", defaults.remote_timeout_seconds),
        retry_policy=retry_policy,
    )
