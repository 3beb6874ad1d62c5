from __future__ import annotations

"""
DXT1 (BC1) block codec.

Layout of one block (4x4 pixels, 8 bytes):
  - u16 color0, u16 color1: RGB565 endpoints
  - u32 indices: 2 bits per pixel, pixel 0 in the low bits, row-major

If color0 > color1 the block has four opaque colours (two endpoints plus two
interpolated at 1/3 and 2/3). Otherwise it has three colours (endpoints plus
midpoint) and index 3 decodes to transparent black. Libraries store one
block stream per layer, sized from the padded layer dimensions.

Both directions go through Pillow's `bcn` codec (the one behind its DDS
plugin). Alpha is cut to 0/255 at the threshold before encoding, so DXT1's
1-bit transparency is decided here and not by the encoder.
"""

from typing import Final

from PIL import Image

from .errors import InvalidDimensionError, TruncatedPayloadError
from .pixels import BLOCK_SIZE, BYTES_PER_PIXEL, CODEC_ORDER, PixelBuffer

BLOCK_BYTES: Final[int] = 8
DEFAULT_ALPHA_THRESHOLD: Final[int] = 128

# Pillow's `bcn` codec argument selecting BC1.
_BC1: Final[int] = 1


def required_bytes(width: int, height: int) -> int:
    """Storage needed for a `width` x `height` image (partial blocks round up)."""
    if width <= 0 or height <= 0:
        return 0
    blocks_x = (width + BLOCK_SIZE - 1) // BLOCK_SIZE
    blocks_y = (height + BLOCK_SIZE - 1) // BLOCK_SIZE
    return blocks_x * blocks_y * BLOCK_BYTES


def _check_dimensions(width: int, height: int) -> None:
    if width < 0 or height < 0:
        raise InvalidDimensionError(f"negative dimensions: {width}x{height}")
    if width % BLOCK_SIZE or height % BLOCK_SIZE:
        raise InvalidDimensionError(f"dimensions must be multiples of {BLOCK_SIZE}: {width}x{height}")


def _binary_alpha(img: Image.Image, alpha_threshold: int) -> Image.Image:
    alpha = img.getchannel("A").point(lambda a: 255 if a >= alpha_threshold else 0)
    img.putalpha(alpha)
    return img


def compress(
    pixels: PixelBuffer | bytes | bytearray,
    width: int,
    height: int,
    *,
    alpha_threshold: int = DEFAULT_ALPHA_THRESHOLD,
) -> bytes:
    """Compress an RGBA buffer of padded `width` x `height` into a DXT1 block stream.

    Pixels with alpha below `alpha_threshold` become transparent texels.
    """
    _check_dimensions(width, height)
    if isinstance(pixels, PixelBuffer):
        if pixels.order != CODEC_ORDER:
            raise ValueError(f"expected {CODEC_ORDER} pixel order, got {pixels.order}")
        data = pixels.data
    else:
        data = pixels
    if len(data) != width * height * BYTES_PER_PIXEL:
        raise InvalidDimensionError(f"pixel data is {len(data)} bytes, expected {width * height * BYTES_PER_PIXEL} for {width}x{height}")
    if width == 0 or height == 0:
        return b""

    img = _binary_alpha(Image.frombytes("RGBA", (width, height), bytes(data)), alpha_threshold)
    return img.tobytes("bcn", _BC1)


def decompress(data: bytes | bytearray | memoryview, width: int, height: int) -> PixelBuffer:
    """Decode a DXT1 block stream into an RGBA `PixelBuffer` of `width` x `height`."""
    _check_dimensions(width, height)
    need = required_bytes(width, height)
    if len(data) < need:
        raise TruncatedPayloadError(f"need {need} bytes for {width}x{height}, got {len(data)}")
    if need == 0:
        return PixelBuffer.blank(width, height, CODEC_ORDER)
    img = Image.frombytes("RGBA", (width, height), bytes(data[:need]), "bcn", _BC1)
    return PixelBuffer(width, height, bytearray(img.tobytes()), CODEC_ORDER)
