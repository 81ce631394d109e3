# Per-device settings that an operator changes at runtime (persisted as JSON)
# assessment_sync/candidate/device_config.py
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError

from assessment_sync.utils.config import settings
from assessment_sync.utils.logger import logger


class DeviceConfig(BaseModel):
    server_url: Optional[str] = None
    updated_at: Optional[str] = None


def normalize_server_url(url: str) -> str:
    url = (url or "").strip().rstrip("/")
    if not url.startswith(("http://", "https://")) or len(url.split("://", 1)[1]) == 0:
        raise ValueError(f"Server URL must start with http:// or https:// and name a host, got '{url}'")
    return url


def load_device_config(path: str | None = None) -> DeviceConfig:
    """Reads the device config, falling back to defaults from the environment."""
    config_path = Path(path or settings.device_config_path)
    if not config_path.exists():
        return DeviceConfig(server_url=settings.sync_server_url)
    try:
        return DeviceConfig.model_validate_json(config_path.read_text(encoding="utf-8"))
    except (ValidationError, ValueError) as e:
        logger.error(f"Ignoring unreadable device config at {config_path}: {e}")
        return DeviceConfig(server_url=settings.sync_server_url)


def save_device_config(config: DeviceConfig, path: str | None = None):
    config_path = Path(path or settings.device_config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config.updated_at = datetime.now(timezone.utc).isoformat()
    tmp_path = config_path.with_suffix(config_path.suffix + ".tmp")
    tmp_path.write_text(config.model_dump_json(indent=2), encoding="utf-8")
    os.replace(tmp_path, config_path)
