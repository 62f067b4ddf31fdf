from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path

from flexkids.bootstrap.settings import resolve_appdata_dir
from flexkids.domain.models import RemoteConfig

logger = logging.getLogger(__name__)


class RemoteConfigStore:
    """Guarda en `config.json` qué Spreadsheet usa este equipo como remoto."""

    def __init__(self, base_dir: Path | None = None) -> None:
        self._base_dir = base_dir or resolve_appdata_dir()
        self._config_path = self._base_dir / "config.json"

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(self) -> RemoteConfig | None:
        if not self._config_path.exists():
            return None
        try:
            payload = json.loads(self._config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.exception("No se pudo leer config.json: %s", exc)
            return None
        spreadsheet_id = str(payload.get("spreadsheet_id", "")).strip()
        credentials_path = str(payload.get("credentials_path", "")).strip()
        device_id = str(payload.get("device_id", "")).strip()
        if not device_id:
            device_id = self._generate_device_id()
            payload["device_id"] = device_id
            self._write_payload(payload)
        if not spreadsheet_id or not credentials_path:
            return None
        return RemoteConfig(spreadsheet_id=spreadsheet_id, credentials_path=credentials_path, device_id=device_id)

    def save(self, config: RemoteConfig) -> RemoteConfig:
        payload = {
            "spreadsheet_id": config.spreadsheet_id.strip(),
            "credentials_path": config.credentials_path.strip(),
            "device_id": config.device_id or self._generate_device_id(),
        }
        self._write_payload(payload)
        return RemoteConfig(**payload)

    def _write_payload(self, payload: dict[str, str]) -> None:
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        self._config_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

    @staticmethod
    def _generate_device_id() -> str:
        return str(uuid.uuid4())
