"""Platform-dependent locations of the maa-cli config and state directories."""

from __future__ import annotations

import os
import sys
from pathlib import Path


def default_config_dir() -> Path:
    explicit = os.getenv("MAA_CONFIG_DIR")
    if explicit:
        return Path(explicit).expanduser()

    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / "com.loong.maa"
    if sys.platform == "win32":
        app_data = os.getenv("APPDATA")
        return Path(app_data) / "maa" if app_data else home / "AppData" / "Roaming" / "maa"

    xdg_config = os.getenv("XDG_CONFIG_HOME")
    return Path(xdg_config) / "maa" if xdg_config else home / ".config" / "maa"


def default_state_dir() -> Path:
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / "com.loong.maa"
    if sys.platform == "win32":
        local_app_data = os.getenv("LOCALAPPDATA")
        if local_app_data:
            return Path(local_app_data) / "maa"
        return home / "AppData" / "Local" / "maa"

    xdg_state = os.getenv("XDG_STATE_HOME")
    return Path(xdg_state) / "maa" if xdg_state else home / ".local" / "state" / "maa"
