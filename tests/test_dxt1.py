from __future__ import annotations

import struct

from PIL import Image
import pytest

from mirlib import dxt1
from mirlib.errors import InvalidDimensionError, TruncatedPayloadError
from mirlib.pixels import CODEC_ORDER

TOLERANCE = 12


def _rgba(img: Image.Image) -> bytes:
    return img.convert("RGBA").tobytes()


def _block_means(data: bytes, width: int, height: int) -> list[tuple[float, float, float]]:
    means = []
    for by in range(0, height, 4):
        for bx in range(0, width, 4):
            total = [0, 0, 0]
            for y in range(by, by + 4):
                for x in range(bx, bx + 4):
                    off = (y * width + x) * 4
                    for c in range(3):
                        total[c] += data[off + c]
            means.append((total[0] / 16, total[1] / 16, total[2] / 16))
    return means


@pytest.mark.parametrize(
    ("width", "height", "expected"),
    [(4, 4, 8), (8, 4, 16), (64, 64, 2048), (5, 5, 32), (0, 8, 0), (1, 1, 8)],
)
def test_required_bytes(width: int, height: int, expected: int) -> None:
    assert dxt1.required_bytes(width, height) == expected


def test_required_bytes_matches_half_byte_per_pixel_when_aligned() -> None:
    assert dxt1.required_bytes(96, 128) == 96 * 128 // 2


def test_compress_rejects_unaligned_dimensions() -> None:
    with pytest.raises(InvalidDimensionError):
        dxt1.compress(bytes(6 * 4 * 4), 6, 4)


def test_compress_rejects_mismatched_buffer() -> None:
    with pytest.raises(InvalidDimensionError):
        dxt1.compress(bytes(10), 4, 4)


def test_decompress_rejects_short_payload() -> None:
    with pytest.raises(TruncatedPayloadError):
        dxt1.decompress(bytes(15), 8, 4)


def test_solid_block_round_trip_within_rgb565_precision() -> None:
    data = _rgba(Image.new("RGBA", (4, 4), (200, 100, 50, 255)))

    encoded = dxt1.compress(data, 4, 4)
    decoded = dxt1.decompress(encoded, 4, 4)

    assert len(encoded) == 8
    assert decoded.size == (4, 4)
    assert decoded.order == CODEC_ORDER
    r, g, b, a = decoded.pixel(2, 3)
    assert a == 255
    assert abs(r - 200) <= 4 and abs(g - 100) <= 4 and abs(b - 50) <= 4


def test_round_trip_keeps_block_means(quadrants) -> None:
    img = quadrants(16, 16)
    gradient = Image.new("RGBA", (16, 4))
    for x in range(16):
        for y in range(4):
            gradient.putpixel((x, y), (16 * x, 8 * x, 255 - 16 * x, 255))
    img.paste(gradient, (0, 4))
    data = _rgba(img)

    decoded = dxt1.decompress(dxt1.compress(data, 16, 16), 16, 16)

    assert decoded.size == (16, 16)
    assert len(decoded.data) == len(data)
    for before, after in zip(_block_means(data, 16, 16), _block_means(bytes(decoded.data), 16, 16)):
        for c0, c1 in zip(before, after):
            assert abs(c0 - c1) <= TOLERANCE


def test_transparent_pixels_use_three_colour_mode() -> None:
    img = Image.new("RGBA", (4, 4), (0, 0, 0, 0))
    img.paste((30, 160, 90, 255), (0, 0, 2, 4))

    encoded = dxt1.compress(_rgba(img), 4, 4)
    color0, color1, _indices = struct.unpack("<HHI", encoded)
    decoded = dxt1.decompress(encoded, 4, 4)

    assert color0 <= color1
    assert decoded.pixel(3, 0)[3] == 0
    assert decoded.pixel(0, 0)[3] == 255


def test_fully_transparent_block() -> None:
    encoded = dxt1.compress(bytes(4 * 4 * 4), 4, 4)
    decoded = dxt1.decompress(encoded, 4, 4)
    assert all(decoded.pixel(x, y)[3] == 0 for x in range(4) for y in range(4))


def test_opaque_two_colour_block_stays_opaque() -> None:
    img = Image.new("RGBA", (4, 4), (255, 0, 0, 255))
    img.paste((0, 0, 255, 255), (2, 0, 4, 4))

    decoded = dxt1.decompress(dxt1.compress(_rgba(img), 4, 4), 4, 4)

    r, g, b, a = decoded.pixel(0, 0)
    assert a == 255 and r > 200 and b < 60
    r, g, b, a = decoded.pixel(3, 3)
    assert a == 255 and b > 200 and r < 60


def test_partial_alpha_is_cut_at_threshold() -> None:
    img = Image.new("RGBA", (4, 4), (40, 200, 120, 200))
    img.paste((40, 200, 120, 20), (0, 0, 4, 2))

    decoded = dxt1.decompress(dxt1.compress(_rgba(img), 4, 4), 4, 4)

    assert decoded.pixel(1, 0)[3] == 0
    assert decoded.pixel(1, 3)[3] == 255


def test_alpha_threshold_decides_transparency() -> None:
    data = _rgba(Image.new("RGBA", (4, 4), (90, 90, 90, 100)))
    assert dxt1.decompress(dxt1.compress(data, 4, 4), 4, 4).pixel(0, 0)[3] == 0
    kept = dxt1.compress(data, 4, 4, alpha_threshold=64)
    assert dxt1.decompress(kept, 4, 4).pixel(0, 0)[3] == 255


def test_compress_is_deterministic(sprite) -> None:
    data = _rgba(sprite.crop((0, 0, 16, 12)))
    assert dxt1.compress(data, 16, 12) == dxt1.compress(data, 16, 12)
