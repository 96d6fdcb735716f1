"""Configuration: YAML config file, .env file and environment lookup.

The config file lives at ``$XDG_CONFIG_HOME/ffbox/config.yaml`` or
``~/.config/ffbox/config.yaml``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ffbox.errors import ConfigError

APP_NAME = "ffbox"
CONFIG_FILE_NAME = "config.yaml"
DEFAULT_TOKEN_FILE_NAME = "token.json"
DEFAULT_LOCAL_ADDR = ":3485"
DEFAULT_ENV_FILE = Path(".env")


def config_dirs() -> List[Path]:
    dirs: List[Path] = []
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        dirs.append(Path(xdg_config_home))
    home = os.environ.get("HOME")
    if home:
        dirs.append(Path(home) / ".config")
    return dirs


def config_path() -> Path:
    dirs = config_dirs()
    if dirs:
        return dirs[0] / APP_NAME / CONFIG_FILE_NAME
    return Path(CONFIG_FILE_NAME)


def default_token_file() -> Path:
    return config_path().parent / DEFAULT_TOKEN_FILE_NAME


def find_config_file() -> Optional[Path]:
    for directory in config_dirs():
        candidate = directory / APP_NAME / CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate
    return None


@dataclass
class Settings:
    token_file: Path = field(default_factory=default_token_file)
    local_addr: str = DEFAULT_LOCAL_ADDR
    company_id: int = 0

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Settings":
        settings = cls()
        oauth2 = payload.get("oauth2") or {}
        freee = payload.get("freee") or {}
        if oauth2.get("token_file"):
            settings.token_file = Path(oauth2["token_file"]).expanduser()
        if oauth2.get("local_addr"):
            settings.local_addr = str(oauth2["local_addr"])
        if freee.get("company_id"):
            settings.company_id = int(freee["company_id"])
        return settings

    def to_dict(self) -> Dict[str, Any]:
        return {
            "oauth2": {"token_file": str(self.token_file), "local_addr": self.local_addr},
            "freee": {"company_id": self.company_id},
        }

    def dump(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False)

    @property
    def callback_port(self) -> int:
        _, _, port = self.local_addr.rpartition(":")
        return int(port)


def load_settings(path: Optional[Path] = None) -> Settings:
    """Load settings from the config file.

    Raises :class:`ConfigError` when no file exists or it cannot be parsed.
    """
    path = path or find_config_file()
    if path is None:
        raise ConfigError(f"config file not found: {config_path()}")
    try:
        payload = yaml.safe_load(path.read_text()) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"parse config file {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"parse config file {path}: expected a mapping")
    try:
        return Settings.from_dict(payload)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"parse config file {path}: {exc}") from exc


def init_config_file(path: Optional[Path] = None) -> Path:
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(Settings().dump())
    return path


def select_editor() -> str:
    """Pick an editor: $VISUAL, then $EDITOR, then vi."""
    return os.environ.get("VISUAL") or os.environ.get("EDITOR") or "vi"


def load_env_file(path: Path) -> Dict[str, str]:
    env: Dict[str, str] = {}
    if not path.exists():
        return env
    for line in path.read_text().splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        env[key.strip()] = value.strip()
    return env
