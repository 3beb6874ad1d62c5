from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("mirlib")
except PackageNotFoundError:  # pragma: no cover
    # Allow running from source (e.g. `PYTHONPATH=src`) without installed package metadata.
    __version__ = "0.0.0+dev"

from .entry import Layer, LayerState, LibraryEntry
from .errors import InvalidDimensionError, LibraryError, MalformedHeaderError, StreamClosedError, TruncatedPayloadError
from .library import Library, load_library
from .pixels import PixelBuffer

__all__ = [
    "InvalidDimensionError",
    "Layer",
    "LayerState",
    "Library",
    "LibraryEntry",
    "LibraryError",
    "MalformedHeaderError",
    "PixelBuffer",
    "StreamClosedError",
    "TruncatedPayloadError",
    "load_library",
]
