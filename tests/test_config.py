from __future__ import annotations

from pathlib import Path

import pytest

from mirlib import config
from mirlib.config import LibrarySettings, SettingsError, load_settings, save_settings


def test_missing_settings_file_gives_defaults(settings_path: Path) -> None:
    settings = load_settings(settings_path)
    assert settings == LibrarySettings()
    assert settings.preview_size == 64
    assert settings.alpha_threshold == 128


def test_settings_roundtrip(settings_path: Path) -> None:
    save_settings(LibrarySettings(preview_size=48, log_level="debug", preload=False), settings_path)
    loaded = load_settings(settings_path)
    assert loaded.preview_size == 48
    assert loaded.log_level == "DEBUG"
    assert loaded.preload is False


def test_partial_settings_file_keeps_other_defaults(settings_path: Path) -> None:
    settings_path.write_text('{"alpha_threshold": 1}', encoding="utf-8")
    loaded = load_settings(settings_path)
    assert loaded.alpha_threshold == 1
    assert loaded.preview_size == 64


@pytest.mark.parametrize(
    "text",
    [
        "{not json",
        '{"preview_size": "big"}',
        '{"unknown": 1}',
        '{"preview_size": 0}',
        '{"alpha_threshold": 300}',
        '{"log_level": "chatty"}',
    ],
)
def test_invalid_settings_raise(settings_path: Path, text: str) -> None:
    settings_path.write_text(text, encoding="utf-8")
    with pytest.raises(SettingsError):
        load_settings(settings_path)


def test_default_path_uses_user_config_dir(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setattr(config, "default_settings_path", lambda: tmp_path / "cfg" / config.SETTINGS_NAME)
    written = save_settings(LibrarySettings(preview_size=16))
    assert written == tmp_path / "cfg" / "settings.json"
    assert load_settings().preview_size == 16
