from __future__ import annotations

from typing import Final

from PIL import Image

DEFAULT_PREVIEW_SIZE: Final[int] = 64


def placeholder() -> Image.Image:
    """1x1 transparent image returned for layers that have nothing to show."""
    return Image.new("RGBA", (1, 1), (0, 0, 0, 0))


def make_preview(image: Image.Image | None, width: int, height: int, size: int = DEFAULT_PREVIEW_SIZE) -> Image.Image:
    """Render a `size` x `size` thumbnail of the top-left `width` x `height` of `image`.

    The source rectangle (0, 0, width, height) lands in the destination
    rectangle ((size - w) // 2, (size - h) // 2, w, h) with w = min(width, size)
    and h = min(height, size). Small sprites are centered 1:1; an axis larger
    than `size` is squashed to fit on its own, without keeping the aspect ratio.
    """
    if image is None:
        return placeholder()
    canvas = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    w = min(int(width), size)
    h = min(int(height), size)
    if w <= 0 or h <= 0:
        return canvas
    if image.mode != "RGBA":
        image = image.convert("RGBA")
    src = image.crop((0, 0, int(width), int(height)))
    if src.size != (w, h):
        src = src.resize((w, h), Image.Resampling.NEAREST)
    canvas.paste(src, ((size - w) // 2, (size - h) // 2))
    return canvas
