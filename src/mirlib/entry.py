from __future__ import annotations

"""
One slot of a sprite library.

Fixed header (25 bytes, little-endian):
  - i32 position: absolute file offset of the entry's payloads (0 = no data)
  - i16 width, height, offset_x, offset_y
  - u8  shadow_type
  - i16 shadow_width, shadow_height, shadow_offset_x, shadow_offset_y
  - i16 overlay_width, overlay_height

Payloads at `position`, packed back to back:
  - image   DXT1, required_bytes(padded image size)
  - shadow  DXT1, required_bytes(padded shadow size)
  - overlay DXT1, required_bytes(padded overlay size)
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum, IntEnum
import io
import logging
from typing import Any, BinaryIO, Final

from construct import Byte, ConstructError, Int16sl, Int32sl, Struct
from PIL import Image

from . import dxt1
from .errors import InvalidDimensionError, MalformedHeaderError, StreamClosedError, TruncatedPayloadError
from .pixels import NATIVE_ORDER, PixelBuffer, pad_to_4, padded, swizzle, swizzle_and_key_transparent
from .preview import DEFAULT_PREVIEW_SIZE, make_preview, placeholder

logger = logging.getLogger(__name__)

INT16_MIN: Final[int] = -0x8000
INT16_MAX: Final[int] = 0x7FFF
BYTE_MAX: Final[int] = 0xFF
UNPLACED: Final[int] = -1

ENTRY_HEADER = Struct(
    "position" / Int32sl,
    "width" / Int16sl,
    "height" / Int16sl,
    "offset_x" / Int16sl,
    "offset_y" / Int16sl,
    "shadow_type" / Byte,
    "shadow_width" / Int16sl,
    "shadow_height" / Int16sl,
    "shadow_offset_x" / Int16sl,
    "shadow_offset_y" / Int16sl,
    "overlay_width" / Int16sl,
    "overlay_height" / Int16sl,
)
HEADER_SIZE: Final[int] = ENTRY_HEADER.sizeof()

_HEADER_FIELDS: Final[tuple[str, ...]] = tuple(sub.name for sub in ENTRY_HEADER.subcons)


class Layer(IntEnum):
    IMAGE = 0
    SHADOW = 1
    OVERLAY = 2


class LayerState(Enum):
    UNLOADED = "unloaded"
    DECODED = "decoded"
    ENCODED = "encoded"
    BOTH = "both"


@dataclass(slots=True)
class LayerData:
    width: int = 0
    height: int = 0
    pixels: PixelBuffer | None = field(default=None, repr=False)
    payload: bytes | None = field(default=None, repr=False)
    preview: Image.Image | None = field(default=None, repr=False)

    @property
    def padded_width(self) -> int:
        return padded(self.width)

    @property
    def padded_height(self) -> int:
        return padded(self.height)

    @property
    def required_bytes(self) -> int:
        return dxt1.required_bytes(self.padded_width, self.padded_height)

    @property
    def has_data(self) -> bool:
        return self.padded_width != 0 and self.padded_height != 0

    @property
    def state(self) -> LayerState:
        if self.pixels is not None:
            return LayerState.BOTH if self.payload is not None else LayerState.DECODED
        if self.payload is not None:
            return LayerState.ENCODED
        return LayerState.UNLOADED

    def clear(self) -> None:
        self.width = 0
        self.height = 0
        self.pixels = None
        self.payload = None
        self.preview = None


ImageSource = Image.Image | PixelBuffer


class LibraryEntry:
    def __init__(
        self,
        *,
        position: int = 0,
        width: int = 0,
        height: int = 0,
        offset_x: int = 0,
        offset_y: int = 0,
        shadow_type: int = 0,
        shadow_width: int = 0,
        shadow_height: int = 0,
        shadow_offset_x: int = 0,
        shadow_offset_y: int = 0,
        overlay_width: int = 0,
        overlay_height: int = 0,
    ) -> None:
        self.position = int(position)
        self.offset_x = int(offset_x)
        self.offset_y = int(offset_y)
        self.shadow_type = int(shadow_type)
        self.shadow_offset_x = int(shadow_offset_x)
        self.shadow_offset_y = int(shadow_offset_y)
        self.layers: tuple[LayerData, LayerData, LayerData] = (
            LayerData(int(width), int(height)),
            LayerData(int(shadow_width), int(shadow_height)),
            LayerData(int(overlay_width), int(overlay_height)),
        )
        self.disposed = False

    def __repr__(self) -> str:
        return (
            f"LibraryEntry(position={self.position}, size={self.width}x{self.height}, "
            f"shadow={self.shadow_width}x{self.shadow_height}, overlay={self.overlay_width}x{self.overlay_height})"
        )

    # -- layer metadata ------------------------------------------------------

    def layer(self, layer: Layer) -> LayerData:
        return self.layers[Layer(layer)]

    @property
    def image(self) -> LayerData:
        return self.layers[Layer.IMAGE]

    @property
    def shadow(self) -> LayerData:
        return self.layers[Layer.SHADOW]

    @property
    def overlay(self) -> LayerData:
        return self.layers[Layer.OVERLAY]

    @property
    def width(self) -> int:
        return self.image.width

    @width.setter
    def width(self, value: int) -> None:
        self.image.width = int(value)

    @property
    def height(self) -> int:
        return self.image.height

    @height.setter
    def height(self, value: int) -> None:
        self.image.height = int(value)

    @property
    def shadow_width(self) -> int:
        return self.shadow.width

    @shadow_width.setter
    def shadow_width(self, value: int) -> None:
        self.shadow.width = int(value)

    @property
    def shadow_height(self) -> int:
        return self.shadow.height

    @shadow_height.setter
    def shadow_height(self, value: int) -> None:
        self.shadow.height = int(value)

    @property
    def overlay_width(self) -> int:
        return self.overlay.width

    @overlay_width.setter
    def overlay_width(self, value: int) -> None:
        self.overlay.width = int(value)

    @property
    def overlay_height(self) -> int:
        return self.overlay.height

    @overlay_height.setter
    def overlay_height(self, value: int) -> None:
        self.overlay.height = int(value)

    def state(self, layer: Layer) -> LayerState:
        return self.layer(layer).state

    def layer_offset(self, layer: Layer) -> int:
        """Offset of a layer's payload from `position`.

        Only the dimensions of the earlier layers matter; they need not be decoded.
        """
        layer = Layer(layer)
        return sum(self.layers[idx].required_bytes for idx in range(layer))

    @property
    def is_empty(self) -> bool:
        """True when there is no image payload (such slots are saved as absent)."""
        image = self.image
        if image.payload is not None:
            return len(image.payload) == 0
        return self.position == 0 or image.required_bytes == 0

    @property
    def data_size(self) -> int:
        size = 0
        for data in self.layers:
            if data.payload is not None:
                size += len(data.payload)
            elif self.position != 0 and data.has_data:
                size += data.required_bytes
        return size

    # -- header --------------------------------------------------------------

    def header_fields(self) -> dict[str, int]:
        return {
            "position": self.position,
            "width": self.width,
            "height": self.height,
            "offset_x": self.offset_x,
            "offset_y": self.offset_y,
            "shadow_type": self.shadow_type,
            "shadow_width": self.shadow_width,
            "shadow_height": self.shadow_height,
            "shadow_offset_x": self.shadow_offset_x,
            "shadow_offset_y": self.shadow_offset_y,
            "overlay_width": self.overlay_width,
            "overlay_height": self.overlay_height,
        }

    @classmethod
    def from_header(cls, header: Any) -> LibraryEntry:
        """Build an entry from a parsed `ENTRY_HEADER` container."""
        values = {name: int(header[name]) for name in _HEADER_FIELDS}
        if values["position"] < 0:
            raise MalformedHeaderError(f"negative position: {values['position']}")
        for name in ("width", "height", "shadow_width", "shadow_height", "overlay_width", "overlay_height"):
            if values[name] < 0:
                raise MalformedHeaderError(f"negative {name}: {values[name]}")
        return cls(**values)

    @classmethod
    def read_header(cls, stream: BinaryIO) -> LibraryEntry:
        try:
            header = ENTRY_HEADER.parse_stream(stream)
        except ConstructError as exc:
            raise MalformedHeaderError(f"failed to parse entry header: {exc}") from exc
        return cls.from_header(header)

    @classmethod
    def parse_header(cls, data: bytes) -> LibraryEntry:
        return cls.read_header(io.BytesIO(data))

    def header_bytes(self) -> bytes:
        try:
            return ENTRY_HEADER.build(self.header_fields())
        except ConstructError as exc:
            raise InvalidDimensionError(f"entry header out of range: {exc}") from exc

    def write_header(self, stream: BinaryIO) -> None:
        stream.write(self.header_bytes())

    # -- create path ---------------------------------------------------------

    @classmethod
    def from_images(
        cls,
        image: ImageSource | None,
        shadow: ImageSource | None = None,
        overlay: ImageSource | None = None,
        *,
        offset_x: int = 0,
        offset_y: int = 0,
        shadow_type: int = 0,
        shadow_offset_x: int = 0,
        shadow_offset_y: int = 0,
        alpha_threshold: int = dxt1.DEFAULT_ALPHA_THRESHOLD,
    ) -> LibraryEntry:
        """Encode caller images into a new, unplaced entry.

        Each layer is padded to 4-aligned dimensions (the padded buffer
        replaces the one passed in), swizzled, colour-keyed and compressed.
        The reported size stays the unpadded one. Without a base image the
        entry is empty and shadow/overlay are ignored.
        """
        placement = {
            "offset_x": offset_x,
            "offset_y": offset_y,
            "shadow_offset_x": shadow_offset_x,
            "shadow_offset_y": shadow_offset_y,
        }
        for name, value in placement.items():
            if not INT16_MIN <= value <= INT16_MAX:
                raise InvalidDimensionError(f"{name} out of range: {value}")
        if not 0 <= shadow_type <= BYTE_MAX:
            raise InvalidDimensionError(f"shadow_type out of range: {shadow_type}")

        entry = cls(
            offset_x=offset_x,
            offset_y=offset_y,
            shadow_type=shadow_type,
            shadow_offset_x=shadow_offset_x,
            shadow_offset_y=shadow_offset_y,
        )
        if image is None:
            entry.image.payload = b""
            return entry

        entry.position = UNPLACED
        entry.encode_layer(Layer.IMAGE, image, alpha_threshold=alpha_threshold)
        if shadow is not None:
            entry.encode_layer(Layer.SHADOW, shadow, alpha_threshold=alpha_threshold)
        if overlay is not None:
            entry.encode_layer(Layer.OVERLAY, overlay, alpha_threshold=alpha_threshold)
        return entry

    def encode_layer(
        self,
        layer: Layer,
        source: ImageSource,
        *,
        alpha_threshold: int = dxt1.DEFAULT_ALPHA_THRESHOLD,
    ) -> None:
        buffer = source if isinstance(source, PixelBuffer) else PixelBuffer.from_image(source)
        if buffer.order != NATIVE_ORDER:
            raise ValueError(f"expected {NATIVE_ORDER} pixels, got {buffer.order}")
        width, height = buffer.size
        if width > INT16_MAX or height > INT16_MAX:
            raise InvalidDimensionError(f"layer too large for the header: {width}x{height}")

        buffer = pad_to_4(buffer)
        work = PixelBuffer(buffer.width, buffer.height, bytearray(buffer.data), buffer.order)
        swizzle_and_key_transparent(work)
        payload = dxt1.compress(work, work.width, work.height, alpha_threshold=alpha_threshold)

        data = self.layer(layer)
        data.width = width
        data.height = height
        data.pixels = buffer
        data.payload = payload
        data.preview = None

    # -- load path -----------------------------------------------------------

    def _read_payload(self, layer: Layer, reader: BinaryIO | None) -> bytes:
        if reader is None or getattr(reader, "closed", False):
            raise StreamClosedError(f"cannot read {Layer(layer).name.lower()} layer: library stream is closed")
        name = Layer(layer).name.lower()
        need = self.layer(layer).required_bytes
        offset = self.position + self.layer_offset(layer)
        logger.debug("reading %d bytes of %s at %d", need, name, offset)
        reader.seek(offset)
        payload = reader.read(need)
        if len(payload) < need:
            raise TruncatedPayloadError(f"{name} layer at {offset}: need {need} bytes, got {len(payload)}")
        return bytes(payload)

    def materialize(self, layer: Layer, reader: BinaryIO | None = None) -> PixelBuffer | None:
        """Decode one layer, reading its payload from `reader` if needed.

        Returns the cached buffer when already decoded and None when the layer
        has no data (position 0 or a zero padded dimension). The buffer keeps
        the padded size; `layer_image` crops back to the reported size.
        """
        data = self.layer(layer)
        if data.pixels is not None:
            return data.pixels
        if self.position == 0 or not data.has_data:
            return None

        payload = data.payload if data.payload is not None else self._read_payload(layer, reader)
        pixels = dxt1.decompress(payload, data.padded_width, data.padded_height)
        swizzle(pixels)
        data.payload = payload
        data.pixels = pixels
        return pixels

    def load_payloads(self, reader: BinaryIO | None) -> None:
        """Read the compressed bytes of every layer without decoding them."""
        if self.position == 0:
            return
        for layer in Layer:
            data = self.layers[layer]
            if data.payload is None and data.has_data:
                data.payload = self._read_payload(layer, reader)

    def iter_payloads(self) -> Iterator[bytes]:
        for data in self.layers:
            if data.payload:
                yield data.payload

    # -- images --------------------------------------------------------------

    def layer_image(self, layer: Layer) -> Image.Image | None:
        data = self.layer(layer)
        if data.pixels is None:
            return None
        return data.pixels.to_image(data.width, data.height)

    def preview(self, layer: Layer, size: int = DEFAULT_PREVIEW_SIZE) -> Image.Image:
        data = self.layer(layer)
        if data.pixels is None:
            return placeholder()
        if data.preview is None or data.preview.size != (size, size):
            data.preview = make_preview(data.pixels.to_image(), data.width, data.height, size=size)
        return data.preview

    def reset(self) -> None:
        if self.disposed:
            return
        self.disposed = True
        self.position = 0
        self.offset_x = 0
        self.offset_y = 0
        self.shadow_type = 0
        self.shadow_offset_x = 0
        self.shadow_offset_y = 0
        for data in self.layers:
            data.clear()
