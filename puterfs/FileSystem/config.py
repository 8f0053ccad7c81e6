"""
FileSystem Configuration.

Priority order for every setting:
1. Environment variables (a ``.env`` file is loaded first)
2. JSON config file
3. Defaults
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from puterfs.shared.gate import ConfigLoader, GateLogger
from puterfs.FileSystem.models import Environment, ReconnectPolicy

_log = GateLogger.get("FileSystem.Config")

DEFAULT_API_ORIGIN = "https://api.puter.com"
DEFAULT_CONFIG_PATH = Path("data/puterfs.json")

# env var -> (config key, reconnection sub-key)
ENV_VARS = {
    "PUTER_API_ORIGIN": ("api_origin", None),
    "PUTER_AUTH_TOKEN": ("auth_token", None),
    "PUTER_APP_ID": ("app_id", None),
    "PUTER_ENV": ("env", None),
    "PUTER_DEBUG": ("debug", None),
    "PUTER_TIMEOUT": ("timeout", None),
    "PUTER_CONNECT_TIMEOUT": ("connect_timeout", None),
    "PUTER_RECONNECTION": ("reconnection", "enabled"),
    "PUTER_RECONNECTION_ATTEMPTS": ("reconnection", "attempts"),
    "PUTER_RECONNECTION_DELAY": ("reconnection", "delay"),
    "PUTER_RECONNECTION_DELAY_MAX": ("reconnection", "delay_max"),
}


class FileSystemConfig(BaseModel):
    """Settings for a FileSystem client."""

    api_origin: str = Field(default=DEFAULT_API_ORIGIN)
    auth_token: Optional[str] = Field(default=None, repr=False)
    app_id: Optional[str] = Field(default=None)
    env: Environment = Field(default=Environment.APP)
    debug: bool = Field(default=False, description="Log socket lifecycle events")
    timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")
    connect_timeout: float = Field(default=10.0, gt=0, description="Socket handshake timeout")
    reconnection: ReconnectPolicy = Field(default_factory=ReconnectPolicy)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary. The credential is never included."""
        data = self.model_dump(mode="json", exclude={"auth_token"})
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileSystemConfig":
        """Create from dictionary."""
        return cls.model_validate(data)


def _convert_bool(value: str) -> bool:
    return str(value).lower() in ("true", "1", "yes", "on")


def _env_overrides() -> Dict[str, Any]:
    """Collect settings present in the environment."""
    overrides: Dict[str, Any] = {}

    for var, (key, sub_key) in ENV_VARS.items():
        value = os.environ.get(var)
        if value is None or value == "":
            continue

        if key == "debug" or sub_key == "enabled":
            value = _convert_bool(value)
        elif sub_key == "attempts" and value.lower() in ("none", "infinite", "unlimited"):
            value = None

        if sub_key:
            overrides.setdefault(key, {})[sub_key] = value
        else:
            overrides[key] = value

    return overrides


def load_config(
    path: Optional[Union[str, Path]] = None,
    env_file: Optional[Union[str, Path]] = None,
) -> FileSystemConfig:
    """
    Load client configuration.

    Args:
        path: JSON config file (defaults to data/puterfs.json)
        env_file: .env file to load (defaults to python-dotenv's search)

    Returns:
        FileSystemConfig instance
    """
    if env_file is not None:
        load_dotenv(dotenv_path=env_file)
    else:
        load_dotenv()

    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    data = ConfigLoader.read(config_path) or {}
    if data:
        _log.debug(f"Loaded config file {config_path}")

    for key, value in _env_overrides().items():
        if isinstance(value, dict):
            merged = dict(data.get(key) or {})
            merged.update(value)
            data[key] = merged
        else:
            data[key] = value

    return FileSystemConfig.from_dict(data)


def save_config(config: FileSystemConfig, path: Optional[Union[str, Path]] = None) -> bool:
    """
    Save client configuration to JSON. The credential is not written.

    Returns:
        True if saved successfully
    """
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    saved = ConfigLoader.save(config_path, config)
    if saved:
        _log.info(f"Saved FileSystem config to {config_path}")
    return saved


__all__ = [
    "DEFAULT_API_ORIGIN",
    "FileSystemConfig",
    "load_config",
    "save_config",
]
