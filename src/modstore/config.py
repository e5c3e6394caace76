from __future__ import annotations

import json
import os
import sys
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

from platformdirs import user_cache_path, user_config_path, user_data_path

APP_NAME = "modstore"

DEFAULT_REPOSITORY_URL = "https://thunderstore.io"
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_INSTALLER_TIMEOUT_S = 600.0
DEFAULT_MAX_WORKERS = 4
DEFAULT_PROFILE = "Default"


def default_installer_name() -> str:
    return "tcli-bepinex-installer.exe" if sys.platform == "win32" else "tcli-bepinex-installer"


@dataclass(frozen=True)
class Config:
    repository_url: str = DEFAULT_REPOSITORY_URL
    timeout_s: float = DEFAULT_TIMEOUT_S
    installer_path: str | None = None  # defaults to default_installer_name() on PATH
    installer_timeout_s: float | None = DEFAULT_INSTALLER_TIMEOUT_S  # None waits forever
    max_workers: int = DEFAULT_MAX_WORKERS
    cache_dir: str | None = None
    data_dir: str | None = None
    game: str | None = None
    profile: str = DEFAULT_PROFILE

    def resolved_cache_dir(self) -> Path:
        if self.cache_dir:
            return Path(self.cache_dir).expanduser()
        return user_cache_path(APP_NAME) / "archives"

    def resolved_data_dir(self) -> Path:
        if self.data_dir:
            return Path(self.data_dir).expanduser()
        return user_data_path(APP_NAME)

    def resolved_installer(self) -> str:
        return self.installer_path or default_installer_name()


def config_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv("MODSTORE_CONFIG_PATH"):
        return Path(env).expanduser()
    return user_config_path(APP_NAME) / "config.json"


def load_config(path_override: str | Path | None = None) -> Config:
    path = config_path(path_override)
    if not path.exists():
        return Config()

    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        return Config()

    allowed = {f.name for f in fields(Config)}
    filtered: dict[str, Any] = {k: v for k, v in raw.items() if k in allowed}
    return Config(**filtered)


def save_config(cfg: Config, path_override: str | Path | None = None) -> Path:
    path = config_path(path_override)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)
    return path
