from __future__ import annotations


class LibraryError(Exception):
    pass


class MalformedHeaderError(LibraryError, ValueError):
    """Header block length or slot count disagrees with the file."""


class TruncatedPayloadError(LibraryError, ValueError):
    """Fewer compressed bytes than the codec needs for the layer."""


class InvalidDimensionError(LibraryError, ValueError):
    """Dimensions the block codec cannot handle (unpadded or negative)."""


class StreamClosedError(LibraryError, ValueError):
    """A layer needed the backing file after it was closed."""
