from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Mapping

APP_DIR_NAME = "bodhi-stream-client"
SETTINGS_FILENAME = "settings.json"
CONFIG_ENV_VAR = "BODHI_STREAM_CONFIG"


def user_config_dir(
    app_name: str = APP_DIR_NAME,
    *,
    platform: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> Path:
    """%LOCALAPPDATA% on Windows, Application Support on macOS, $XDG_CONFIG_HOME elsewhere."""
    platform = platform or sys.platform
    env = os.environ if environ is None else environ
    home = Path.home()

    if platform.startswith("win"):
        root = env.get("LOCALAPPDATA") or env.get("APPDATA")
        base = Path(root) if root else home / "AppData" / "Local"
    elif platform == "darwin":
        base = home / "Library" / "Application Support"
    else:
        root = env.get("XDG_CONFIG_HOME")
        base = Path(root) if root else home / ".config"
    return base / app_name


def default_settings_path() -> Path:
    override = os.getenv(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return user_config_dir() / SETTINGS_FILENAME
