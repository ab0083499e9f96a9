"""Where pushflight keeps its files, and how it runs shell commands."""

from __future__ import annotations

import os
import sys
from pathlib import Path

APP_NAME = "pushflight"


def get_platform() -> str:
    if sys.platform == "win32":
        return "windows"
    if sys.platform == "darwin":
        return "macos"
    return "linux"


def _app_dir(override_env: str, windows_env: str, windows_default: Path,
             xdg_env: str, xdg_default: Path) -> Path:
    override = os.environ.get(override_env)
    if override:
        return Path(override)

    platform = get_platform()
    if platform == "windows":
        base = Path(os.environ.get(windows_env, windows_default))
    elif platform == "macos":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get(xdg_env, xdg_default))
    return base / APP_NAME


def get_config_dir() -> Path:
    """``config.yaml`` lives here unless PUSHFLIGHT_CONFIG points elsewhere."""
    return _app_dir(
        "PUSHFLIGHT_CONFIG_DIR",
        "APPDATA", Path.home() / "AppData" / "Roaming",
        "XDG_CONFIG_HOME", Path.home() / ".config",
    )


def get_data_dir() -> Path:
    """Default home of the rolling log database."""
    return _app_dir(
        "PUSHFLIGHT_DATA_DIR",
        "LOCALAPPDATA", Path.home() / "AppData" / "Local",
        "XDG_DATA_HOME", Path.home() / ".local" / "share",
    )


def get_default_shell() -> str:
    if get_platform() == "windows":
        return "powershell"
    return os.environ.get("SHELL", "/bin/sh")


def shell_args(command: str) -> list[str]:
    """Build the argv that runs ``command`` through the platform shell."""
    if get_platform() == "windows":
        return ["powershell", "-NoProfile", "-Command", command]
    return [get_default_shell(), "-c", command]
