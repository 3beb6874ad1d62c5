from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable

import pytest
from PIL import Image


def pytest_configure(config: pytest.Config) -> None:
    # Ensure the local `src/` tree wins over any other editable install that may exist
    # (e.g. a different git worktree pointing at the same project).
    src_dir = Path(__file__).resolve().parents[1] / "src"
    src_str = str(src_dir)
    if src_str not in sys.path:
        sys.path.insert(0, src_str)


def _quadrants(width: int, height: int) -> Image.Image:
    # Quadrant edges sit on 4-pixel boundaries so every DXT1 block is one colour.
    img = Image.new("RGBA", (width, height), (200, 40, 40, 255))
    half_w = (width // 2) // 4 * 4
    half_h = (height // 2) // 4 * 4
    img.paste((40, 200, 40, 255), (half_w, 0, width, half_h))
    img.paste((40, 40, 200, 255), (0, half_h, half_w, height))
    img.paste((220, 220, 60, 255), (half_w, half_h, width, height))
    return img


@pytest.fixture
def quadrants() -> Callable[[int, int], Image.Image]:
    return _quadrants


@pytest.fixture
def sprite() -> Image.Image:
    return _quadrants(16, 12)


@pytest.fixture
def settings_path(tmp_path: Path) -> Path:
    return tmp_path / "settings.json"
