from __future__ import annotations

"""
Raw 32-bit pixel grids.

Buffers are row-major, 4 bytes per pixel. Sprites live in the client's native
BGRA byte order; the block codec works on RGBA, so the encode and decode paths
exchange bytes 0 and 2 of every pixel (`swizzle`). `order` records which of the
two layouts the bytes are currently in so conversions to Pillow stay correct.
"""

from dataclasses import dataclass, field
from typing import Final

from PIL import Image

BYTES_PER_PIXEL: Final[int] = 4
BLOCK_SIZE: Final[int] = 4

NATIVE_ORDER: Final[str] = "BGRA"
CODEC_ORDER: Final[str] = "RGBA"


def padded(value: int) -> int:
    """Round a dimension up to the next multiple of the 4x4 block size."""
    return value + (BLOCK_SIZE - value % BLOCK_SIZE) % BLOCK_SIZE


@dataclass(slots=True)
class PixelBuffer:
    width: int
    height: int
    data: bytearray = field(repr=False)
    order: str = NATIVE_ORDER

    def __post_init__(self) -> None:
        if self.width < 0 or self.height < 0:
            raise ValueError(f"negative size: {self.width}x{self.height}")
        expected = self.width * self.height * BYTES_PER_PIXEL
        if len(self.data) != expected:
            raise ValueError(f"pixel data is {len(self.data)} bytes, expected {expected}")
        if not isinstance(self.data, bytearray):
            self.data = bytearray(self.data)

    @classmethod
    def blank(cls, width: int, height: int, order: str = NATIVE_ORDER) -> PixelBuffer:
        return cls(width, height, bytearray(width * height * BYTES_PER_PIXEL), order)

    @classmethod
    def from_image(cls, image: Image.Image) -> PixelBuffer:
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        width, height = image.size
        return cls(width, height, bytearray(image.tobytes("raw", NATIVE_ORDER)), NATIVE_ORDER)

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    @property
    def is_aligned(self) -> bool:
        return self.width % BLOCK_SIZE == 0 and self.height % BLOCK_SIZE == 0

    def pixel(self, x: int, y: int) -> tuple[int, int, int, int]:
        """Return the four bytes of one pixel in the buffer's current order."""
        off = (y * self.width + x) * BYTES_PER_PIXEL
        return tuple(self.data[off : off + BYTES_PER_PIXEL])  # type: ignore[return-value]

    def to_image(self, width: int | None = None, height: int | None = None) -> Image.Image:
        """Convert to an RGBA Pillow image, cropped to `width` x `height` when given.

        Decoded layers are stored at their padded size; the entry's reported
        dimensions are passed here to drop the padding again.
        """
        if self.width == 0 or self.height == 0:
            return Image.new("RGBA", (max(self.width, 1), max(self.height, 1)), (0, 0, 0, 0))
        img = Image.frombytes("RGBA", (self.width, self.height), bytes(self.data), "raw", self.order)
        crop_w = self.width if width is None else min(int(width), self.width)
        crop_h = self.height if height is None else min(int(height), self.height)
        if (crop_w, crop_h) != img.size:
            img = img.crop((0, 0, crop_w, crop_h))
        return img


def pad_to_4(buffer: PixelBuffer) -> PixelBuffer:
    """Return `buffer` grown to 4-aligned dimensions.

    The padding is fully transparent and the source sits in the top-left
    corner. Aligned input is returned as-is, so callers must always use the
    return value in place of the buffer they passed in.
    """
    if buffer.is_aligned:
        return buffer
    width = padded(buffer.width)
    height = padded(buffer.height)
    out = PixelBuffer.blank(width, height, buffer.order)
    src_stride = buffer.width * BYTES_PER_PIXEL
    dst_stride = width * BYTES_PER_PIXEL
    for y in range(buffer.height):
        row = buffer.data[y * src_stride : (y + 1) * src_stride]
        out.data[y * dst_stride : y * dst_stride + src_stride] = row
    return out


def swizzle(buffer: PixelBuffer) -> PixelBuffer:
    """Exchange bytes 0 and 2 of every pixel in place (BGRA <-> RGBA)."""
    data = buffer.data
    data[0::4], data[2::4] = data[2::4], data[0::4]
    buffer.order = CODEC_ORDER if buffer.order == NATIVE_ORDER else NATIVE_ORDER
    return buffer


def swizzle_and_key_transparent(buffer: PixelBuffer) -> PixelBuffer:
    """Swizzle, then clear alpha on every pixel whose colour bytes are all zero.

    Pure black is the client's colour key. The test runs after the swap, so a
    pixel that is (0, 0, 1) keeps its alpha.
    """
    swizzle(buffer)
    data = buffer.data
    for i in range(0, len(data), BYTES_PER_PIXEL):
        if data[i] == 0 and data[i + 1] == 0 and data[i + 2] == 0:
            data[i + 3] = 0
    return buffer
