from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

import typer
from PIL import Image

from .config import LibrarySettings, SettingsError, load_settings
from .entry import Layer, LibraryEntry
from .errors import LibraryError
from .library import Library, load_library

app = typer.Typer(add_completion=False)

PLACEMENTS_NAME = "placements.json"
_LAYER_SUFFIX = {Layer.IMAGE: "", Layer.SHADOW: "_shadow", Layer.OVERLAY: "_overlay"}
_PNG_RE = re.compile(r"^(\d+)(?:_shadow|_overlay)?\.png$")


def _settings(ctx: typer.Context) -> LibrarySettings:
    obj = ctx.obj if isinstance(ctx.obj, dict) else {}
    settings = obj.get("settings")
    return settings if isinstance(settings, LibrarySettings) else LibrarySettings()


def _fail(message: str) -> typer.Exit:
    typer.echo(message, err=True)
    return typer.Exit(code=1)


def _layer_name(index: int, layer: Layer) -> str:
    return f"{index:05d}{_LAYER_SUFFIX[layer]}.png"


def _load_rgba(path: Path) -> Image.Image:
    with Image.open(path) as img:
        return img.convert("RGBA")


def _placement(entry: LibraryEntry) -> dict[str, int]:
    return {
        "offset_x": entry.offset_x,
        "offset_y": entry.offset_y,
        "shadow_type": entry.shadow_type,
        "shadow_offset_x": entry.shadow_offset_x,
        "shadow_offset_y": entry.shadow_offset_y,
    }


def _format_slot(index: int, entry: LibraryEntry | None) -> str:
    if entry is None:
        return f"{index:05d}  -"
    text = (
        f"{index:05d}  {entry.width}x{entry.height}  offset=({entry.offset_x},{entry.offset_y})  "
        f"pos={entry.position}  size={entry.data_size}"
    )
    if entry.shadow_width or entry.shadow_height:
        text += (
            f"  shadow={entry.shadow_width}x{entry.shadow_height}"
            f"@({entry.shadow_offset_x},{entry.shadow_offset_y}) type={entry.shadow_type}"
        )
    if entry.overlay_width or entry.overlay_height:
        text += f"  overlay={entry.overlay_width}x{entry.overlay_height}"
    return text


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="log debug output"),
    settings_file: Path | None = typer.Option(None, "--settings", help="settings JSON (default: per-user config dir)"),
) -> None:
    """Inspect and edit sprite libraries."""
    try:
        settings = load_settings(settings_file)
    except SettingsError as exc:
        raise _fail(str(exc)) from exc
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, settings.log_level),
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"settings": settings}


@app.command("info")
def cmd_info(ctx: typer.Context, library_path: Path = typer.Argument(..., help="library file")) -> None:
    """List every slot with its dimensions and placement."""
    if not library_path.is_file():
        raise _fail(f"library not found: {library_path}")
    try:
        with Library.open(library_path, settings=_settings(ctx)) as library:
            present = sum(1 for entry in library if entry is not None)
            typer.echo(f"{library_path}: {len(library)} slots, {present} present")
            for index, entry in enumerate(library):
                typer.echo(_format_slot(index, entry))
    except LibraryError as exc:
        raise _fail(f"{library_path}: {exc}") from exc


@app.command("extract")
def cmd_extract(
    ctx: typer.Context,
    library_path: Path = typer.Argument(..., help="library file"),
    out_dir: Path = typer.Argument(..., help="output directory for PNGs"),
) -> None:
    """Write every layer as PNG plus a placements.json with offsets."""
    if not library_path.is_file():
        raise _fail(f"library not found: {library_path}")
    try:
        library = load_library(library_path, preload=True, settings=_settings(ctx))
    except LibraryError as exc:
        raise _fail(f"{library_path}: {exc}") from exc

    out_dir.mkdir(parents=True, exist_ok=True)
    placements: list[dict[str, Any] | None] = []
    written = 0
    for index, entry in enumerate(library):
        if entry is None:
            placements.append(None)
            continue
        placements.append(_placement(entry))
        for layer in Layer:
            img = entry.layer_image(layer)
            if img is None:
                continue
            img.save(out_dir / _layer_name(index, layer))
            written += 1
    (out_dir / PLACEMENTS_NAME).write_text(json.dumps(placements, indent=2) + "\n", encoding="utf-8")
    typer.echo(f"extracted {written} images from {len(library)} slots")


@app.command("pack")
def cmd_pack(
    ctx: typer.Context,
    src_dir: Path = typer.Argument(..., help="directory written by extract"),
    library_path: Path = typer.Argument(..., help="library file to write"),
) -> None:
    """Build a library from a directory of PNGs (inverse of extract)."""
    if not src_dir.is_dir():
        raise _fail(f"source dir not found: {src_dir}")
    placements: list[dict[str, Any] | None] = []
    placements_path = src_dir / PLACEMENTS_NAME
    if placements_path.is_file():
        try:
            placements = json.loads(placements_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise _fail(f"{placements_path}: {exc}") from exc
        if not isinstance(placements, list):
            raise _fail(f"{placements_path}: expected a list")

    indices = [int(m.group(1)) for p in src_dir.iterdir() if (m := _PNG_RE.match(p.name))]
    count = max([len(placements), *(i + 1 for i in indices)]) if indices or placements else 0

    library = Library(file_name=library_path, settings=_settings(ctx))
    for index in range(count):
        image_path = src_dir / _layer_name(index, Layer.IMAGE)
        if not image_path.is_file():
            library.entries.append(None)
            continue
        place = placements[index] if index < len(placements) and isinstance(placements[index], dict) else {}
        layers = {}
        for layer in (Layer.SHADOW, Layer.OVERLAY):
            layer_path = src_dir / _layer_name(index, layer)
            layers[layer] = _load_rgba(layer_path) if layer_path.is_file() else None
        library.add_image(
            _load_rgba(image_path),
            layers[Layer.SHADOW],
            layers[Layer.OVERLAY],
            int(place.get("offset_x", 0)),
            int(place.get("offset_y", 0)),
            shadow_type=int(place.get("shadow_type", 0)),
            shadow_offset_x=int(place.get("shadow_offset_x", 0)),
            shadow_offset_y=int(place.get("shadow_offset_y", 0)),
        )
    try:
        library.save(library_path)
    except LibraryError as exc:
        raise _fail(f"{library_path}: {exc}") from exc
    typer.echo(f"packed {count} slots into {library_path}")


@app.command("clean")
def cmd_clean(
    ctx: typer.Context,
    library_path: Path = typer.Argument(..., help="library file"),
    safe: bool = typer.Option(False, "--safe", help="safe mode (currently leaves the library unchanged)"),
    output: Path | None = typer.Option(None, "--output", "-o", help="write here instead of in place"),
) -> None:
    """Remove absent and empty slots."""
    if not library_path.is_file():
        raise _fail(f"library not found: {library_path}")
    try:
        library = load_library(library_path, preload=True, settings=_settings(ctx))
        removed = library.remove_blanks(safe=safe)
        dest = library.save(output or library_path)
    except LibraryError as exc:
        raise _fail(f"{library_path}: {exc}") from exc
    typer.echo(f"removed {removed} blank slots, {len(library)} left; wrote {dest}")


def main(argv: list[str] | None = None) -> None:
    app(prog_name="mirlib", args=argv)


if __name__ == "__main__":
    main()
