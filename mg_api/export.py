"""Cutting sprite frames out of atlas images and writing them as PNG files."""

import dataclasses
import io
import pathlib
import re

from loguru import logger
from PIL import Image
from tqdm import tqdm

from mg_api import utils
from mg_api.schema import SpriteFrame
from mg_api.upstream import Upstream

_IMAGE_SUFFIX = re.compile(r"\.(png|webp|jpg|jpeg)$", re.IGNORECASE)


def render_frame(atlas: Image.Image, sprite: SpriteFrame, restore_trim: bool = True) -> Image.Image:
    """Cut one frame out of its atlas.

    Rotated frames are stored turned 90 degrees clockwise, so the stored
    region has width and height swapped and is turned back after cropping.
    Trimmed frames are pasted back onto a transparent canvas of their
    original size when restore_trim is set.

    Args:
        atlas: Decoded atlas image
        sprite: Frame geometry
        restore_trim: Restore the padding removed by trimming

    Returns:
        RGBA image of the sprite
    """
    f = sprite.frame
    w, h = (f["h"], f["w"]) if sprite.rotated else (f["w"], f["h"])
    piece = atlas.crop((f["x"], f["y"], f["x"] + w, f["y"] + h)).convert("RGBA")
    if sprite.rotated:
        piece = piece.transpose(Image.Transpose.ROTATE_90)

    source_size = sprite.source_size or {}
    offset = sprite.sprite_source_size or {}
    if (
        restore_trim
        and sprite.trimmed
        and source_size.get("w")
        and source_size.get("h")
        and offset.get("x") is not None
        and offset.get("y") is not None
    ):
        canvas = Image.new("RGBA", (source_size["w"], source_size["h"]), (0, 0, 0, 0))
        canvas.alpha_composite(piece, (offset["x"], offset["y"]))
        return canvas
    return piece


def sprite_path(out_dir: str | pathlib.Path, sprite: SpriteFrame) -> pathlib.Path:
    """Where a frame is written: <out_dir>/sprite/<category>/<name>.png"""
    name = _IMAGE_SUFFIX.sub("", utils.safe_name(sprite.name or sprite.key or "sprite").strip())
    return pathlib.Path(out_dir) / "sprite" / utils.safe_name(sprite.category or "misc").strip() / f"{name}.png"


@dataclasses.dataclass
class ExportResult:
    exported: int
    atlases: int
    out_dir: str


async def export_sprites(
    upstream: Upstream,
    frames: list[SpriteFrame],
    out_dir: str | pathlib.Path,
    only_keys: set[str] | None = None,
    restore_trim: bool = True,
    progress: bool = False,
) -> ExportResult:
    """Export frames to PNG files, downloading each atlas image once.

    Args:
        upstream: HTTP access for the atlas images
        frames: Frames to consider
        out_dir: Root of the export tree
        only_keys: If given, only frames whose key is in this set are written
        restore_trim: Restore trimmed padding
        progress: Show a progress bar

    Returns:
        Export counts

    Raises:
        FetchError: If an atlas image cannot be downloaded
    """
    selected = [s for s in frames if only_keys is None or s.key in only_keys]
    by_atlas: dict[str, list[SpriteFrame]] = {}
    for sprite in selected:
        by_atlas.setdefault(sprite.url, []).append(sprite)

    out_dir = pathlib.Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    exported = 0
    with tqdm(total=len(selected), desc="Exporting sprites", disable=not progress) as bar:
        for url, sprites in by_atlas.items():
            data = await upstream.fetch_bytes(url)
            with Image.open(io.BytesIO(data)) as atlas:
                atlas.load()
                for sprite in sprites:
                    dest = sprite_path(out_dir, sprite)
                    dest.parent.mkdir(parents=True, exist_ok=True)
                    render_frame(atlas, sprite, restore_trim).save(dest, format="PNG")
                    exported += 1
                    bar.update(1)
            logger.debug("Atlas exported", url=url, frames=len(sprites))

    logger.info("Sprites exported", exported=exported, atlases=len(by_atlas), out_dir=str(out_dir))
    return ExportResult(exported=exported, atlases=len(by_atlas), out_dir=str(out_dir.resolve()))
