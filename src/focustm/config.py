"""
User settings.

Settings come from an optional YAML file (``$FOCUSTM_CONFIG`` or
``~/.config/focustm/config.yml``) with a few environment overrides on top.
"""
import os
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .logs import get_logger
from .recovery import CorruptionError, FileOperationError

log = get_logger("config")

ENV_PREFIX = "FOCUSTM"

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "focustm" / "config.yml"
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "focustm" / "data"

def _k(suffix: str) -> str:
    return f"{ENV_PREFIX}_{suffix}"

def _env_path(name: str) -> Optional[Path]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return Path(raw).expanduser()

def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        log.warning(f"Ignoring {name}={raw!r}: not an integer")
        return None

class Settings(BaseModel):
    model_config = ConfigDict(frozen=True, extra='forbid')

    data_dir: Path = Field(default=DEFAULT_DATA_DIR, description="Where tasks.yml and history.yml live")
    history_limit: int = Field(default=50, ge=1, description="Undo steps kept in memory")
    record_debounce_seconds: float = Field(default=0.3, ge=0, description="Edits closer together than this become one undo step")
    sync_debounce_seconds: float = Field(default=0.3, ge=0, description="Delay before in-memory state is written to disk")
    history_retention_days: Optional[int] = Field(default=7, ge=1, description="Audit entries older than this are purged; null keeps everything")
    today_days_ahead: Optional[int] = Field(default=7, ge=0, description="Today view shows tasks due within this many days")
    completed_lookback_days: Optional[int] = Field(default=7, ge=0, description="Completed tasks older than this are hidden")

def config_path() -> Path:
    return _env_path(_k("CONFIG")) or DEFAULT_CONFIG_PATH

def load_settings(path: Union[Path, str, None] = None) -> Settings:
    """
    Build settings from the config file and environment.

    Raises:
        CorruptionError: The config file is malformed.
        FileOperationError: The config file cannot be read.
    """
    path = Path(path) if path is not None else config_path()
    values = {}

    if path.exists():
        try:
            with open(path, 'r', encoding='utf-8') as f:
                values = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise CorruptionError(f"Config file {path} is not valid YAML: {e}") from e
        except OSError as e:
            raise FileOperationError(f"Failed to read config file {path}: {e}") from e
        if not isinstance(values, dict):
            raise CorruptionError(f"Config file {path} must contain a mapping")
        log.debug(f"Loaded settings from {path}")

    data_dir = _env_path(_k("DATA_DIR"))
    if data_dir is not None:
        values["data_dir"] = data_dir
    history_limit = _env_int(_k("HISTORY_LIMIT"))
    if history_limit is not None:
        values["history_limit"] = history_limit

    try:
        settings = Settings.model_validate(values)
    except ValidationError as e:
        raise CorruptionError(f"Invalid settings in {path}: {e}") from e

    return settings.model_copy(update={"data_dir": settings.data_dir.expanduser()})
