"""Replacing sprite references in extracted data with servable sprite URLs."""

import pathlib
import re
from urllib.parse import quote

from loguru import logger

from mg_api import assets

DEFAULT_MIN_SIMILARITY = 0.6

COLOR_PREFIXES = (
    "Orange",
    "Red",
    "Blue",
    "Yellow",
    "Green",
    "Purple",
    "Pink",
    "White",
    "Black",
    "Dawn",
    "Moon",
    "Violet",
)
NAME_SUFFIXES = ("Plant", "Tree", "Bush", "Hedge", "Cutting", "Spore")

_SPRITE_KEY = re.compile(r"^sprite/([^/]+)/(.+)$")


def similarity(a: str, b: str) -> float:
    """Case-insensitive Levenshtein similarity in [0, 1]."""
    s1, s2 = a.lower(), b.lower()
    if s1 == s2:
        return 1.0
    previous = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1, 1):
        current = [i]
        for j, c2 in enumerate(s2, 1):
            current.append(
                min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + (c1 != c2))
            )
        previous = current
    longest = max(len(s1), len(s2))
    return 1.0 if longest == 0 else 1 - previous[-1] / longest


def base_name_variations(key: str) -> list[str]:
    """Plausible sprite names for a data key, e.g. "OrangeTulip" -> "Tulip"."""
    variations = [key]
    for color in COLOR_PREFIXES:
        if key.startswith(color) and len(key) > len(color):
            variations.append(key[len(color) :])
    for suffix in NAME_SUFFIXES:
        if key.endswith(suffix):
            variations.append(key[: -len(suffix)])
        else:
            variations.append(key + suffix)
    if "Celestial" in key:
        variations.append(key.replace("Celestial", "", 1))
        variations.append(key.replace("Celestial", "CelestialPlant", 1))
        variations.append(key.replace("Celestial", "CelestialCrop", 1))
    return list(dict.fromkeys(variations))


def find_best_match(
    key: str, available: list[str], min_similarity: float = DEFAULT_MIN_SIMILARITY
) -> str | None:
    """Pick the sprite for a data key.

    Order matters: an exact (case-insensitive) match wins, then an exact match
    on a base-name variation, then the most similar name scoring at least
    min_similarity.
    """
    by_lower = {}
    for sprite in available:
        by_lower.setdefault(sprite.lower(), sprite)
    if key.lower() in by_lower:
        return by_lower[key.lower()]

    variations = base_name_variations(key)
    for name in variations:
        if name.lower() in by_lower:
            return by_lower[name.lower()]

    best, best_score = None, -1.0
    for sprite in available:
        score = max(similarity(name, sprite) for name in variations)
        if score > best_score:
            best, best_score = sprite, score
    return best if best is not None and best_score >= min_similarity else None


class SpriteNameMatcher:
    """Matches data keys against the PNG files exported under sprite_root/<category>.

    Directory listings are cached until clear() is called.
    """

    def __init__(self, sprite_root: str | pathlib.Path, min_similarity: float = DEFAULT_MIN_SIMILARITY):
        self.sprite_root = pathlib.Path(sprite_root)
        self.min_similarity = min_similarity
        self._available: dict[str, list[str]] = {}

    def available(self, category: str) -> list[str]:
        if category not in self._available:
            directory = self.sprite_root / category
            if directory.is_dir():
                self._available[category] = sorted(p.stem for p in directory.glob("*.png"))
            else:
                logger.debug("Sprite directory missing", directory=str(directory))
                self._available[category] = []
        return self._available[category]

    def exact(self, key: str, category: str) -> str | None:
        return next((s for s in self.available(category) if s.lower() == key.lower()), None)

    def match(self, key: str, category: str) -> str | None:
        available = self.available(category)
        if not available:
            return None
        return find_best_match(key, available, self.min_similarity)

    def clear(self):
        self._available.clear()


def build_sprite_url(base_url: str, category: str, name: str | None, version: str | None = None) -> str | None:
    if not name:
        return None
    url = f"{base_url.rstrip('/')}/assets/sprites/{category}/{name}.png"
    if version:
        url += "?v=" + quote(version, safe="")
    return url


def resolve_sprite_path(sprite_key: str, base_url: str, version: str | None = None) -> str | None:
    """URL for a bundle sprite key such as "sprite/seed/Carrot"."""
    m = _SPRITE_KEY.match(sprite_key or "") if isinstance(sprite_key, str) else None
    if m is None:
        return None
    group, name = m.groups()
    category = assets.sprite_category(sprite_key)
    if category in ("misc", "tiles", "weather"):
        category = group
    return build_sprite_url(base_url, category, name, version)


class DataTransformer:
    """Rewrites tileRef / iconSpriteKey fields of extracted categories into sprite URLs.

    Args:
        matcher: Lookup over the exported sprite tree
        base_url: Public base URL of this service
        version: Sprite version appended for cache busting
    """

    def __init__(self, matcher: SpriteNameMatcher, base_url: str, version: str | None = None):
        self.matcher = matcher
        self.base_url = base_url
        self.version = version

    def _url(self, category: str, name: str | None) -> str | None:
        return build_sprite_url(self.base_url, category, name, self.version)

    def plant_sprite(self, tile_ref, part: str) -> str | None:
        if not isinstance(tile_ref, str) or not tile_ref:
            return None
        if part == "seed":
            return self._url("seeds", self.matcher.match(tile_ref, "seeds"))
        tall = self.matcher.exact(tile_ref, "tallPlants")
        if tall:
            return self._url("tallPlants", tall)
        return self._url("plants", self.matcher.match(tile_ref, "plants"))

    def _plant_part(self, data, part: str):
        if not isinstance(data, dict):
            return data
        out = dict(data)
        if "tileRef" in out:
            out["sprite"] = self.plant_sprite(out.pop("tileRef"), part)
        if "immatureTileRef" in out:
            out["immatureSprite"] = self.plant_sprite(out.pop("immatureTileRef"), "plant")
        if "topmostLayerTileRef" in out:
            out["topmostLayerSprite"] = self.plant_sprite(out.pop("topmostLayerTileRef"), "plant")
        if isinstance(out.get("activeState"), dict) and "tileRef" in out["activeState"]:
            active = dict(out["activeState"])
            active["sprite"] = self.plant_sprite(active.pop("tileRef"), "plant")
            out["activeState"] = active
        return out

    def plants(self, data: dict) -> dict:
        out = {}
        for key, plant in data.items():
            if not isinstance(plant, dict):
                out[key] = plant
                continue
            out[key] = {part: self._plant_part(plant[part], part) for part in ("seed", "plant", "crop") if plant.get(part)}
        return out

    def category(self, data: dict, category: str) -> dict:
        """Generic rewrite keyed on the entry name; eggs share the pets sprites."""
        sprite_category = "pets" if category == "eggs" else category
        out = {}
        for key, entry in data.items():
            if isinstance(entry, dict) and "tileRef" in entry:
                entry = dict(entry)
                del entry["tileRef"]
                entry["sprite"] = self._url(sprite_category, self.matcher.match(key, sprite_category))
            out[key] = entry
        return out

    def weathers(self, data: dict) -> dict:
        """Replace iconSpriteKey with a URL and make sure a Sunny entry exists."""
        out = {}
        for key, entry in data.items():
            out[key] = self._weather(entry)
        if "Sunny" not in out:
            out["Sunny"] = self._weather({"name": "Sunny", "iconSpriteKey": "sprite/ui/SunnyIcon"})
        return out

    def _weather(self, entry):
        if not isinstance(entry, dict):
            return entry
        entry = dict(entry)
        key = entry.pop("iconSpriteKey", None)
        entry["sprite"] = resolve_sprite_path(key, self.base_url, self.version) if key else None
        return entry

    def transform(self, category: str, data: dict) -> dict:
        if category == "plants":
            return self.plants(data)
        if category == "weathers":
            return self.weathers(data)
        if category in ("pets", "eggs", "items", "decor", "mutations"):
            return self.category(data, category)
        return data
