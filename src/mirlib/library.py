from __future__ import annotations

"""
Sprite library container.

File layout (little-endian):
  - i32 header_length
  - header block (header_length bytes):
      - i32 slot_count
      - per slot: u8 present, followed by the 25-byte entry header when present
  - payloads: image, shadow and overlay bytes of every present slot, in slot order

Layout of a saved file, slots T/F/F/T:
  |header_length|count|T|header|F|F|T|header|image|shadow|overlay|image|...

Empty entries (no image payload) are written as absent slots.
"""

from collections.abc import Iterable, Iterator
import io
import logging
import os
from pathlib import Path
from typing import BinaryIO, Final

from construct import Array, ConstructError, Flag, If, Int32sl, Struct, this
from PIL import Image

from .config import LibrarySettings
from .entry import ENTRY_HEADER, HEADER_SIZE, ImageSource, Layer, LibraryEntry
from .errors import MalformedHeaderError, TruncatedPayloadError
from .pixels import PixelBuffer
from .preview import placeholder

logger = logging.getLogger(__name__)

LENGTH_PREFIX_SIZE: Final[int] = 4
COUNT_SIZE: Final[int] = 4

LIBRARY_SLOT = Struct(
    "present" / Flag,
    "header" / If(this.present, ENTRY_HEADER),
)

LIBRARY_HEADER = Struct(
    "count" / Int32sl,
    "slots" / Array(this.count, LIBRARY_SLOT),
)


def _remaining(stream: BinaryIO) -> int | None:
    try:
        here = stream.tell()
        end = stream.seek(0, os.SEEK_END)
        stream.seek(here)
    except (OSError, ValueError, AttributeError):
        return None
    return end - here


def header_size_for(entries: Iterable[LibraryEntry | None]) -> int:
    """Size of the header block (without the length prefix) for `entries`."""
    slots = list(entries)
    present = sum(1 for entry in slots if entry is not None and not entry.is_empty)
    return COUNT_SIZE + len(slots) + HEADER_SIZE * present


def read_header_block(stream: BinaryIO) -> list[LibraryEntry | None]:
    """Parse the length-prefixed header block at the stream's position."""
    prefix = stream.read(LENGTH_PREFIX_SIZE)
    if len(prefix) < LENGTH_PREFIX_SIZE:
        raise MalformedHeaderError(f"missing header length: got {len(prefix)} bytes")
    header_length = Int32sl.parse(prefix)
    if header_length < COUNT_SIZE:
        raise MalformedHeaderError(f"header length {header_length} is too small")
    remaining = _remaining(stream)
    if remaining is not None and header_length > remaining:
        raise MalformedHeaderError(f"header length {header_length} exceeds remaining {remaining} bytes")

    block = stream.read(header_length)
    if len(block) < header_length:
        raise MalformedHeaderError(f"header block truncated: {len(block)} of {header_length} bytes")

    count = Int32sl.parse(block[:COUNT_SIZE])
    if count < 0:
        raise MalformedHeaderError(f"negative slot count: {count}")
    if count > header_length - COUNT_SIZE:
        raise MalformedHeaderError(f"slot count {count} does not fit in a {header_length}-byte header")

    block_stream = io.BytesIO(block)
    try:
        parsed = LIBRARY_HEADER.parse_stream(block_stream)
    except ConstructError as exc:
        raise MalformedHeaderError(f"failed to parse header block: {exc}") from exc
    trailing = header_length - block_stream.tell()
    if trailing:
        logger.warning("ignoring %d trailing bytes in header block", trailing)

    data_start = LENGTH_PREFIX_SIZE + header_length
    slots: list[LibraryEntry | None] = []
    for index, slot in enumerate(parsed.slots):
        if not slot.present:
            slots.append(None)
            continue
        entry = LibraryEntry.from_header(slot.header)
        if 0 < entry.position < data_start:
            raise MalformedHeaderError(f"slot {index}: position {entry.position} lies inside the {data_start}-byte header")
        slots.append(entry)
    return slots


class Library:
    """Ordered sprite slots plus the file they are lazily read from."""

    def __init__(
        self,
        entries: Iterable[LibraryEntry | None] = (),
        *,
        file_name: str | Path | None = None,
        settings: LibrarySettings | None = None,
    ) -> None:
        self.entries: list[LibraryEntry | None] = list(entries)
        self.file_name = None if file_name is None else Path(file_name)
        self.settings = settings if settings is not None else LibrarySettings()
        self._reader: BinaryIO | None = None
        self._owns_reader = False

    def __repr__(self) -> str:
        return f"Library(file_name={self.file_name!s}, slots={len(self.entries)})"

    # -- reading -------------------------------------------------------------

    @classmethod
    def read(
        cls,
        stream: BinaryIO,
        *,
        file_name: str | Path | None = None,
        settings: LibrarySettings | None = None,
    ) -> Library:
        """Parse the header table from `stream` and keep it for lazy layer reads.

        The caller keeps ownership of `stream`; `close()` only forgets it.
        """
        entries = read_header_block(stream)
        library = cls(entries, file_name=file_name, settings=settings)
        library._reader = stream
        logger.debug(
            "read library %s: %d slots, %d present",
            file_name or "<stream>",
            len(entries),
            sum(1 for entry in entries if entry is not None),
        )
        return library

    @classmethod
    def from_bytes(cls, data: bytes, *, settings: LibrarySettings | None = None) -> Library:
        return cls.read(io.BytesIO(data), settings=settings)

    @classmethod
    def open(cls, path: str | Path, *, settings: LibrarySettings | None = None) -> Library:
        """Open a library file; it stays open until `close()` or the end of a `with` block."""
        path = Path(path)
        f = open(path, "rb")
        try:
            library = cls.read(f, file_name=path, settings=settings)
        except BaseException:
            f.close()
            raise
        library._owns_reader = True
        return library

    @property
    def closed(self) -> bool:
        return self._reader is None or bool(getattr(self._reader, "closed", False))

    def close(self) -> None:
        reader = self._reader
        self._reader = None
        if reader is not None and self._owns_reader:
            reader.close()
        self._owns_reader = False

    def __enter__(self) -> Library:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- access --------------------------------------------------------------

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[LibraryEntry | None]:
        return iter(self.entries)

    def get_entry(self, index: int) -> LibraryEntry | None:
        if index < 0 or index >= len(self.entries):
            return None
        return self.entries[index]

    def materialize(self, index: int, layer: Layer = Layer.IMAGE) -> PixelBuffer | None:
        entry = self.get_entry(index)
        if entry is None:
            return None
        return entry.materialize(layer, self._reader)

    def materialize_all(self) -> int:
        """Decode every layer of every entry. Returns how many layers were truncated.

        A truncated layer stays unloaded and is logged; the rest still decode.
        """
        truncated = 0
        for index, entry in enumerate(self.entries):
            if entry is None:
                continue
            for layer in Layer:
                try:
                    entry.materialize(layer, self._reader)
                except TruncatedPayloadError as exc:
                    logger.warning("slot %d: %s", index, exc)
                    truncated += 1
        return truncated

    def get_image(self, index: int, layer: Layer = Layer.IMAGE) -> Image.Image | None:
        """Decoded layer cropped to its reported size, or None when it has no data."""
        entry = self.get_entry(index)
        if entry is None or entry.materialize(layer, self._reader) is None:
            return None
        return entry.layer_image(layer)

    def get_preview(self, index: int, layer: Layer = Layer.IMAGE) -> Image.Image:
        """Thumbnail of an already decoded layer; 1x1 transparent when there is none."""
        entry = self.get_entry(index)
        if entry is None:
            return placeholder()
        return entry.preview(layer, self.settings.preview_size)

    # -- editing -------------------------------------------------------------

    def _make_entry(
        self,
        image: ImageSource | None,
        shadow: ImageSource | None,
        overlay: ImageSource | None,
        offset_x: int,
        offset_y: int,
        **kwargs: int,
    ) -> LibraryEntry:
        return LibraryEntry.from_images(
            image,
            shadow,
            overlay,
            offset_x=offset_x,
            offset_y=offset_y,
            alpha_threshold=self.settings.alpha_threshold,
            **kwargs,
        )

    def add_image(
        self,
        image: ImageSource | None,
        shadow: ImageSource | None = None,
        overlay: ImageSource | None = None,
        offset_x: int = 0,
        offset_y: int = 0,
        **kwargs: int,
    ) -> LibraryEntry:
        entry = self._make_entry(image, shadow, overlay, offset_x, offset_y, **kwargs)
        self.entries.append(entry)
        return entry

    def replace_image(
        self,
        index: int,
        image: ImageSource | None,
        shadow: ImageSource | None = None,
        overlay: ImageSource | None = None,
        offset_x: int = 0,
        offset_y: int = 0,
        **kwargs: int,
    ) -> LibraryEntry:
        entry = self._make_entry(image, shadow, overlay, offset_x, offset_y, **kwargs)
        self.entries[index] = entry
        return entry

    def insert_image(
        self,
        index: int,
        image: ImageSource | None,
        shadow: ImageSource | None = None,
        overlay: ImageSource | None = None,
        offset_x: int = 0,
        offset_y: int = 0,
        **kwargs: int,
    ) -> LibraryEntry:
        entry = self._make_entry(image, shadow, overlay, offset_x, offset_y, **kwargs)
        self.entries.insert(index, entry)
        return entry

    def remove_image(self, index: int) -> None:
        # Removing from a library of one (or none) always leaves it empty,
        # whatever the index; existing editors rely on this.
        if len(self.entries) <= 1:
            self.entries = []
            return
        del self.entries[index]

    def remove_blanks(self, safe: bool = False) -> int:
        """Drop absent and empty slots, last to first. Returns how many went.

        Safe mode leaves the library untouched for now.
        """
        if safe:
            logger.warning("safe blank removal is not supported; library left unchanged")
            return 0
        removed = 0
        for index in range(len(self.entries) - 1, -1, -1):
            entry = self.entries[index]
            if entry is None or entry.is_empty:
                self.remove_image(index)
                removed += 1
        logger.debug("removed %d blank slots", removed)
        return removed

    # -- writing -------------------------------------------------------------

    def plan_layout(self) -> int:
        """Assign file positions to every stored entry and return the header size.

        Payloads still sitting in the backing file are read first, so the
        library no longer depends on it once this returns. Headers that
        cannot be written fail before any position changes.
        """
        for entry in self.entries:
            if entry is not None and not entry.is_empty:
                entry.header_bytes()
                entry.load_payloads(self._reader)

        header_size = header_size_for(self.entries)
        position = header_size + LENGTH_PREFIX_SIZE
        for entry in self.entries:
            if entry is None or entry.is_empty:
                continue
            entry.position = position
            position += entry.data_size
        return header_size

    def to_bytes(self) -> bytes:
        header_size = self.plan_layout()
        slots = []
        for entry in self.entries:
            stored = entry is not None and not entry.is_empty
            slots.append({"present": stored, "header": entry.header_fields() if stored else None})
        try:
            block = LIBRARY_HEADER.build({"count": len(slots), "slots": slots})
        except ConstructError as exc:
            raise MalformedHeaderError(f"failed to build header block: {exc}") from exc
        if len(block) != header_size:
            raise MalformedHeaderError(f"header block is {len(block)} bytes, planned {header_size}")

        buf = io.BytesIO()
        buf.write(Int32sl.build(header_size))
        buf.write(block)
        for entry in self.entries:
            if entry is None or entry.is_empty:
                continue
            for payload in entry.iter_payloads():
                buf.write(payload)
        return buf.getvalue()

    def save(self, path: str | Path | None = None) -> Path:
        """Write the whole library in a single call to `path` (default: `file_name`)."""
        if path is None:
            if self.file_name is None:
                raise ValueError("no path given and library has no file name")
            path = self.file_name
        path = Path(path)
        data = self.to_bytes()
        path.write_bytes(data)
        logger.debug("saved %d slots (%d bytes) to %s", len(self.entries), len(data), path)
        return path


def load_library(
    path: str | Path,
    *,
    preload: bool | None = None,
    settings: LibrarySettings | None = None,
) -> Library:
    """Open a library the way the editor does.

    With `preload` (the default, from settings) every layer is decoded and the
    file is closed before returning. Otherwise the library is returned open
    and the caller must close it. A missing file gives a new, empty library.
    """
    settings = settings if settings is not None else LibrarySettings()
    if preload is None:
        preload = settings.preload
    path = Path(path)
    if not path.exists():
        logger.debug("%s does not exist; starting an empty library", path)
        return Library(file_name=path, settings=settings)

    library = Library.open(path, settings=settings)
    if not preload:
        return library
    try:
        library.materialize_all()
    finally:
        library.close()
    return library
