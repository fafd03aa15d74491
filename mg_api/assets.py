"""Game asset manifest, atlas discovery and the sprite, cosmetic and audio catalogs."""

import asyncio
import math
import re

from loguru import logger

from mg_api import utils
from mg_api.errors import FetchError
from mg_api.schema import Cosmetic, SfxSegment, SpriteAnimation, SpriteFrame
from mg_api.upstream import ATLAS_TIMEOUT, TEXT_TIMEOUT, Upstream

MANIFEST_FILENAME = "manifest.json"
ATLAS_PATH_MARKERS = ("sprite", "tiles", "weather")

_GROUP_CATEGORIES = {
    "ui": "ui",
    "seed": "seeds",
    "mutation": "mutations",
    "mutation-overlay": "mutations",
    "plant": "plants",
    "tallplant": "tallPlants",
    "pet": "pets",
    "decor": "decor",
    "object": "objects",
    "item": "items",
    "animation": "animations",
    "winter": "winter",
}


def asset_base_url(origin: str, version: str) -> str:
    return utils.join_url(origin, f"version/{version}/assets/")


class ManifestLoader:
    """Fetches manifest.json once per asset base URL.

    Concurrent loads of the same base URL share one request.
    """

    def __init__(self, upstream: Upstream):
        self.upstream = upstream
        self._manifests: dict[str, dict] = {}
        self._pending: dict[str, asyncio.Task] = {}

    async def load(self, base_url: str) -> dict:
        if base_url in self._manifests:
            return self._manifests[base_url]
        if base_url not in self._pending:
            self._pending[base_url] = asyncio.ensure_future(self._fetch(base_url))
        return await asyncio.shield(self._pending[base_url])

    async def _fetch(self, base_url: str) -> dict:
        url = utils.join_url(base_url, MANIFEST_FILENAME)
        try:
            manifest = await self.upstream.fetch_json(url, timeout=TEXT_TIMEOUT)
            if not isinstance(manifest, dict):
                raise FetchError(url, "Manifest is not an object")
            self._manifests[base_url] = manifest
            logger.debug("Manifest loaded", url=url, bundles=len(manifest.get("bundles") or []))
            return manifest
        finally:
            self._pending.pop(base_url, None)

    def clear(self):
        self._manifests.clear()


def get_bundle_by_name(manifest: dict | None, name: str = "default") -> dict | None:
    if not manifest or not isinstance(manifest.get("bundles"), list):
        return None
    return next((b for b in manifest["bundles"] if isinstance(b, dict) and b.get("name") == name), None)


def _bundle_or_raise(manifest: dict, base_url: str, name: str) -> dict:
    bundle = get_bundle_by_name(manifest, name)
    if bundle is None:
        raise FetchError(utils.join_url(base_url, MANIFEST_FILENAME), f"No '{name}' bundle in manifest")
    return bundle


def extract_all_sources(bundle: dict | None) -> list[str]:
    """Every asset source path of a manifest bundle, in manifest order, without duplicates."""
    sources: dict[str, None] = {}
    for asset in (bundle or {}).get("assets") or []:
        src = asset.get("src") if isinstance(asset, dict) else None
        for path in src if isinstance(src, list) else []:
            if isinstance(path, str):
                sources[path] = None
    return list(sources)


def extract_json_files(bundle: dict | None) -> list[str]:
    return [
        src
        for src in extract_all_sources(bundle)
        if src.endswith(".json") and src != MANIFEST_FILENAME
    ]


def _is_atlas_path(path: str) -> bool:
    return any(marker in path for marker in ATLAS_PATH_MARKERS)


def discover_atlas_files(bundle: dict | None) -> list[str]:
    """Atlas JSON files of a bundle.

    Listed JSON files under sprite/tiles/weather paths, plus a guessed .json
    for every such .webp, since some atlases only list their image.
    """
    files = {src: None for src in extract_json_files(bundle) if _is_atlas_path(src)}
    for src in extract_all_sources(bundle):
        if src.endswith(".webp") and _is_atlas_path(src):
            files.setdefault(src[: -len(".webp")] + ".json", None)
    return list(files)


async def fetch_atlases(
    upstream: Upstream, base_url: str, files: list[str], follow_related: bool = True
) -> dict[str, dict]:
    """Fetch atlas JSON files, skipping the ones that fail.

    Args:
        upstream: HTTP access
        base_url: Asset base URL of the game version
        files: Atlas source paths relative to base_url
        follow_related: Also load meta.related_multi_packs (best effort)

    Returns:
        Atlas source path -> atlas JSON, in discovery order
    """
    atlases: dict[str, dict] = {}
    queue = list(files)
    seen = set()
    while queue:
        source = queue.pop(0)
        if source in seen:
            continue
        seen.add(source)
        try:
            atlas = await upstream.fetch_json(utils.join_url(base_url, source), timeout=ATLAS_TIMEOUT)
        except FetchError as e:
            logger.warning("Failed to fetch atlas, skipping", source=source, error=str(e))
            continue
        if not isinstance(atlas, dict):
            logger.warning("Atlas is not an object, skipping", source=source)
            continue

        atlases[source] = atlas
        logger.debug("Atlas loaded", source=source, frame_count=len(atlas.get("frames") or {}))
        if follow_related:
            related = (atlas.get("meta") or {}).get("related_multi_packs") or []
            queue.extend(r for r in related if isinstance(r, str) and r not in seen)
    return atlases


def sprite_category(key: str, source_json: str = "") -> str:
    """Category directory of a frame, e.g. "sprite/seed/Carrot" -> "seeds"."""
    if not key:
        return "misc"
    if key.startswith("weather/"):
        return "weather"
    if "tiles" in source_json:
        return "tiles"
    if not key.startswith("sprite/"):
        return "misc"
    group = key.split("/")[1] or "misc"
    return _GROUP_CATEGORIES.get(group, group)


def normalize_name(key: str) -> str:
    return str(key).rsplit("/", 1)[-1] if key else ""


def resolve_meta_image_src(source_json: str, image: str | None) -> str | None:
    """Path of the atlas image, which meta.image gives relative to the JSON file."""
    if not source_json or not image:
        return None
    directory = source_json.rsplit("/", 1)[0] + "/" if "/" in source_json else ""
    return directory + image.lstrip("/")


def build_sprite_catalog(
    atlases: dict[str, dict], base_url: str
) -> tuple[list[SpriteFrame], list[SpriteAnimation]]:
    """Flatten atlases into frames and animations, keeping atlas and frame order."""
    frames: list[SpriteFrame] = []
    animations: list[SpriteAnimation] = []
    for source_json, atlas in atlases.items():
        image_src = resolve_meta_image_src(source_json, (atlas.get("meta") or {}).get("image"))
        if image_src is None:
            logger.warning("Atlas has no image, skipping", source=source_json)
            continue
        image_url = utils.join_url(base_url, image_src)

        for key, data in (atlas.get("frames") or {}).items():
            if not isinstance(data, dict) or not data.get("frame"):
                continue
            frames.append(
                SpriteFrame(
                    key=key,
                    name=normalize_name(key),
                    category=sprite_category(key, source_json),
                    source_json=source_json,
                    image_src=image_src,
                    url=image_url,
                    frame=data["frame"],
                    rotated=bool(data.get("rotated")),
                    trimmed=bool(data.get("trimmed")),
                    source_size=data.get("sourceSize"),
                    sprite_source_size=data.get("spriteSourceSize"),
                    anchor=data.get("anchor"),
                )
            )

        for name, keys in (atlas.get("animations") or {}).items():
            if isinstance(keys, list) and keys:
                animations.append(
                    SpriteAnimation(
                        key=name,
                        name=normalize_name(name),
                        category="animations",
                        source_json=source_json,
                        frames=keys,
                    )
                )
    return frames, animations


class SpriteCatalog:
    """Sprite listing for the current game version, rebuilt when the version changes."""

    def __init__(self, upstream: Upstream, manifests: ManifestLoader):
        self.upstream = upstream
        self.manifests = manifests
        self.base_url: str | None = None
        self.frames: list[SpriteFrame] = []
        self.animations: list[SpriteAnimation] = []
        self._lock = asyncio.Lock()

    async def load(self, base_url: str):
        async with self._lock:
            if self.base_url == base_url:
                return
            bundle = _bundle_or_raise(await self.manifests.load(base_url), base_url, "default")
            atlases = await fetch_atlases(self.upstream, base_url, extract_json_files(bundle))
            self.frames, self.animations = build_sprite_catalog(atlases, base_url)
            self.base_url = base_url
            logger.info(
                "Sprite catalog built",
                base_url=base_url,
                frames=len(self.frames),
                animations=len(self.animations),
            )

    def listing(self, category: str = "", search: str = "", flat: bool = False, full: bool = False) -> dict:
        """Filtered view of the catalog, grouped by category unless flat."""
        query = search.lower().strip()
        entries = []
        for item in [*self.frames, *self.animations]:
            if category and item.category != category:
                continue
            if query and query not in item.key.lower():
                continue
            if full:
                entry = {"type": "frame" if isinstance(item, SpriteFrame) else "animation", **item.model_dump()}
            elif isinstance(item, SpriteFrame):
                entry = {"type": "frame", "id": item.key, "name": item.name, "url": item.url, "frame": item.frame}
            else:
                entry = {"type": "animation", "id": item.key, "name": item.name, "frames": item.frames}
            entries.append((item.category, entry))

        if flat:
            return {"baseUrl": self.base_url, "count": len(entries), "items": [e for _, e in entries]}
        groups: dict[str, list] = {}
        for cat, entry in entries:
            groups.setdefault(cat, []).append(entry)
        return {
            "baseUrl": self.base_url,
            "count": len(entries),
            "categories": [{"cat": cat, "items": items} for cat, items in groups.items()],
        }


_COSMETIC_SRC = re.compile(r"^cosmetic/.+\.png$", re.IGNORECASE)
_THEME_SRC = re.compile(r"^audio/(ambience|music)/(.+)\.mp3$", re.IGNORECASE)
_SFX_AUDIO_SRC = re.compile(r"^audio/sfx/sfx\.mp3$", re.IGNORECASE)
_SFX_ATLAS_SRC = re.compile(r"^audio/sfx/sfx\.json$", re.IGNORECASE)


def parse_cosmetics(bundle: dict | None, base_url: str) -> list[Cosmetic]:
    """Cosmetic images named cosmetic/<cat>_<name>.png, in manifest order."""
    items = []
    for src in extract_all_sources(bundle):
        if not _COSMETIC_SRC.match(src):
            continue
        base = src.rsplit("/", 1)[-1][: -len(".png")]
        cat, sep, name = base.partition("_")
        if not sep:
            continue
        items.append(Cosmetic(cat=cat, name=name, base=base, src=src, url=utils.join_url(base_url, src)))
    return items


class CosmeticCatalog:
    """Cosmetics of the current game version, rebuilt when the version changes."""

    def __init__(self, manifests: ManifestLoader):
        self.manifests = manifests
        self.base_url: str | None = None
        self.items: list[Cosmetic] = []
        self._lock = asyncio.Lock()

    async def load(self, base_url: str):
        async with self._lock:
            if self.base_url == base_url:
                return
            bundle = _bundle_or_raise(await self.manifests.load(base_url), base_url, "cosmetic")
            self.items = parse_cosmetics(bundle, base_url)
            self.base_url = base_url
            logger.info("Cosmetic catalog built", base_url=base_url, cosmetics=len(self.items))

    def listing(self, full: bool = False) -> dict:
        groups: dict[str, list] = {}
        for item in self.items:
            entry = item.model_dump() if full else {"id": item.base, "name": item.name, "url": item.url}
            groups.setdefault(item.cat, []).append(entry)
        return {
            "baseUrl": self.base_url,
            "count": len(self.items),
            "categories": [{"cat": cat, "items": items} for cat, items in groups.items()],
        }


def _finite(value) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def normalize_segment(segment) -> tuple[float, float] | None:
    """(start, end) of one sfx atlas entry.

    Builds write entries as {start, end}, {start, duration} or [start, end].
    """
    if isinstance(segment, list) and len(segment) >= 2:
        start, end = _finite(segment[0]), _finite(segment[1])
    elif isinstance(segment, dict):
        start, end = _finite(segment.get("start")), _finite(segment.get("end"))
        duration = _finite(segment.get("duration"))
        if end is None and start is not None and duration is not None:
            end = start + duration
    else:
        return None
    if start is None or end is None:
        return None
    return start, end


class AudioCatalog:
    """Ambience and music themes plus the sfx sprite sheet of the 'audio' bundle.

    Args:
        upstream: HTTP access, used for the sfx atlas
        manifests: Manifest loader shared with the other catalogs
    """

    def __init__(self, upstream: Upstream, manifests: ManifestLoader):
        self.upstream = upstream
        self.manifests = manifests
        self.base_url: str | None = None
        self.themes: list[str] = []
        self.ambience: dict[str, str] = {}
        self.music: dict[str, str] = {}
        self.sfx_url: str | None = None
        self.sfx_atlas: dict | None = None
        self._lock = asyncio.Lock()

    async def load(self, base_url: str):
        async with self._lock:
            if self.base_url == base_url:
                return
            bundle = _bundle_or_raise(await self.manifests.load(base_url), base_url, "audio")

            themes: dict[str, None] = {}
            ambience, music = {}, {}
            sfx_url = sfx_atlas_url = None
            for src in extract_all_sources(bundle):
                m = _THEME_SRC.match(src)
                if m:
                    name = m.group(2)
                    themes.setdefault(name, None)
                    target = ambience if m.group(1).lower() == "ambience" else music
                    target[name] = utils.join_url(base_url, src)
                elif _SFX_AUDIO_SRC.match(src):
                    sfx_url = utils.join_url(base_url, src)
                elif _SFX_ATLAS_SRC.match(src):
                    sfx_atlas_url = utils.join_url(base_url, src)

            sfx_atlas = None
            if sfx_atlas_url:
                sfx_atlas = await self.upstream.fetch_json(sfx_atlas_url, timeout=TEXT_TIMEOUT)
                if not isinstance(sfx_atlas, dict):
                    logger.warning("Sfx atlas is not an object, ignoring", url=sfx_atlas_url)
                    sfx_atlas = None

            self.themes = list(themes)
            self.ambience, self.music = ambience, music
            self.sfx_url, self.sfx_atlas = sfx_url, sfx_atlas
            self.base_url = base_url
            logger.info(
                "Audio catalog built",
                base_url=base_url,
                themes=len(self.themes),
                sfx=len(sfx_atlas or {}),
            )

    def sfx_segments(self) -> list[SfxSegment]:
        if not self.sfx_atlas or not self.sfx_url:
            return []
        segments = []
        for name, raw in self.sfx_atlas.items():
            bounds = normalize_segment(raw)
            if bounds is None:
                continue
            start, end = bounds
            segments.append(
                SfxSegment(
                    name=name,
                    start=round(start, 2),
                    end=round(end, 2),
                    duration=round(max(0.0, end - start), 2),
                )
            )
        return segments

    def listing(self) -> dict:
        return {
            "baseUrl": self.base_url,
            "themes": [
                {"name": name, "ambience": self.ambience.get(name), "music": self.music.get(name)}
                for name in self.themes
            ],
            "sfx": {"url": self.sfx_url, "items": [s.model_dump() for s in self.sfx_segments()]},
        }
