from __future__ import annotations

from pathlib import Path
from typing import Final

import msgspec
from platformdirs import PlatformDirs

APP_NAME: Final[str] = "mirlib"
SETTINGS_NAME: Final[str] = "settings.json"

_LOG_LEVELS: Final[frozenset[str]] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


class SettingsError(ValueError):
    pass


class LibrarySettings(msgspec.Struct, forbid_unknown_fields=True):
    # Thumbnail edge in pixels.
    preview_size: int = 64
    # Pixels with alpha below this encode as transparent DXT1 texels.
    alpha_threshold: int = 128
    log_level: str = "WARNING"
    # Decode every layer when a library is loaded, then close the file.
    preload: bool = True


def _settings_dirs() -> PlatformDirs:
    return PlatformDirs(appname=APP_NAME, appauthor=False)


def default_settings_path() -> Path:
    return Path(_settings_dirs().user_config_path) / SETTINGS_NAME


def _validate(settings: LibrarySettings) -> LibrarySettings:
    if settings.preview_size < 1:
        raise SettingsError(f"preview_size must be positive, got {settings.preview_size}")
    if not 0 <= settings.alpha_threshold <= 256:
        raise SettingsError(f"alpha_threshold must be in 0..256, got {settings.alpha_threshold}")
    level = settings.log_level.upper()
    if level not in _LOG_LEVELS:
        raise SettingsError(f"unknown log_level: {settings.log_level!r}")
    settings.log_level = level
    return settings


def load_settings(path: str | Path | None = None) -> LibrarySettings:
    """Read settings from `path` (default: per-user config dir); missing file -> defaults."""
    path = default_settings_path() if path is None else Path(path)
    if not path.is_file():
        return LibrarySettings()
    try:
        settings = msgspec.json.decode(path.read_bytes(), type=LibrarySettings)
    except msgspec.DecodeError as exc:
        raise SettingsError(f"invalid settings file {path}: {exc}") from exc
    return _validate(settings)


def save_settings(settings: LibrarySettings, path: str | Path | None = None) -> Path:
    path = default_settings_path() if path is None else Path(path)
    _validate(settings)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(msgspec.json.format(msgspec.json.encode(settings), indent=2))
    return path
