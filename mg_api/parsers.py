"""Live game state (shops and weather) reduced from room socket frames.

Reducers are pure: they take the previous state and one decoded message and
return the next state plus the event to publish, if any.
"""

import copy
import json
import re
from typing import Any, Callable

from loguru import logger

SHOPS_PATH = "/child/data/shops"
WEATHER_PATH = "/child/data/weather"
SHOP_TYPES = ("seed", "tool", "egg", "decor")

_INDEX = re.compile(r"^\d+$")
_ITEM_NAME_FIELDS = {"seed": "species", "tool": "toolId", "egg": "eggId", "decor": "decorId"}
_WEATHER_NAMES = {
    "sunny": "Clear Skies",
    "rain": "Rain",
    "frost": "Snow",
    "amber moon": "Amber Moon",
    "dawn": "Dawn",
}


def _set_item(container, key, value):
    if isinstance(container, list):
        while len(container) <= key:
            container.append(None)
    container[key] = value


def _key_of(container, part: str):
    """Key of one path segment in container; None when a list cannot take it.

    "-" addresses the end of a list, as in JSON Patch.
    """
    if not isinstance(container, list):
        return part
    if part == "-":
        return len(container)
    if _INDEX.match(part):
        return int(part)
    return None


def apply_patch(root: dict | list, path: str, value: Any = None, op: str = "replace"):
    """Apply one add/replace/remove patch in place.

    Missing intermediate containers are created as lists when the next path
    segment is an index and as dicts otherwise. An empty path is a no-op, as
    is a path that runs through a scalar or uses a non-index key on a list.

    Args:
        root: Document to patch
        path: Slash-separated path, e.g. "/seed/inventory/0/initialStock"
        value: New value for add/replace
        op: "add", "replace" or "remove"
    """
    parts = [p for p in str(path or "").split("/") if p]
    if not parts:
        return

    cur = root
    for part, following in zip(parts, parts[1:]):
        key = _key_of(cur, part)
        if key is None:
            logger.debug("Ignoring patch with non-index key on list", path=path, key=part)
            return
        if isinstance(cur, list):
            existing = cur[key] if key < len(cur) else None
        else:
            existing = cur.get(key)
        if existing is None:
            existing = [] if _INDEX.match(following) or following == "-" else {}
            _set_item(cur, key, existing)
        elif not isinstance(existing, (dict, list)):
            logger.debug("Ignoring patch through scalar value", path=path, key=part)
            return
        cur = existing

    last = _key_of(cur, parts[-1])
    if last is None:
        logger.debug("Ignoring patch with non-index key on list", path=path, key=parts[-1])
        return
    if op == "remove":
        if isinstance(cur, list):
            if last < len(cur):
                del cur[last]
        else:
            cur.pop(last, None)
        return
    _set_item(cur, last, value)


def format_weather(value: Any) -> str:
    """Display name of a weather value; None, empty and "Sunny" mean clear skies."""
    if value is None:
        return "Clear Skies"
    raw = str(value).strip()
    if not raw:
        return "Clear Skies"
    return _WEATHER_NAMES.get(raw.lower(), raw)


def _as_int(value) -> int:
    try:
        return int(float(value or 0))
    except (TypeError, ValueError):
        return 0


def simplify_shop(shop: dict | None, shop_type: str) -> dict | None:
    if not isinstance(shop, dict):
        return None
    inventory = shop.get("inventory") if isinstance(shop.get("inventory"), list) else []
    field = _ITEM_NAME_FIELDS.get(shop_type)
    items = []
    for item in inventory:
        if not isinstance(item, dict) or _as_int(item.get("initialStock")) <= 0:
            continue
        name = item.get(field) if field else None
        if name:
            items.append({"name": name, "stock": _as_int(item.get("initialStock"))})
    return {"secondsUntilRestock": _as_int(shop.get("secondsUntilRestock")), "items": items}


def simplify_shops(shops: dict | None) -> dict | None:
    """Slim view of the shops: restock timer and in-stock item names per shop."""
    if not isinstance(shops, dict):
        return None
    return {shop_type: simplify_shop(shops.get(shop_type), shop_type) for shop_type in SHOP_TYPES}


def _game_data(msg: dict) -> dict | None:
    data = ((msg.get("fullState") or {}).get("child") or {}).get("data")
    return data if isinstance(data, dict) else None


def _patches(msg: dict) -> list[dict]:
    if msg.get("type") != "PartialState" or not isinstance(msg.get("patches"), list):
        return []
    return [p for p in msg["patches"] if isinstance(p, dict) and isinstance(p.get("path"), str)]


def reduce_shops(state: dict | None, msg: Any) -> tuple[dict | None, dict | None]:
    """Fold one message into the raw shops state.

    Returns:
        Tuple of (next_state, slim_view_to_publish or None)
    """
    if not isinstance(msg, dict):
        return state, None

    if msg.get("type") == "Welcome" and msg.get("fullState"):
        game = _game_data(msg)
        if game is None or not game.get("shops"):
            return state, None
        shops = copy.deepcopy(game["shops"])
        return shops, simplify_shops(shops)

    next_state = state
    dirty = False
    for patch in _patches(msg):
        path = patch["path"]
        if path == SHOPS_PATH:
            next_state = copy.deepcopy(patch.get("value")) or {}
            dirty = True
        elif path.startswith(SHOPS_PATH + "/"):
            if not dirty or next_state is state:
                next_state = copy.deepcopy(next_state) if next_state is not None else {}
            apply_patch(next_state, path[len(SHOPS_PATH) :], patch.get("value"), patch.get("op", "replace"))
            dirty = True
    if not dirty:
        return state, None
    return next_state, simplify_shops(next_state)


def reduce_weather(state: str | None, msg: Any) -> tuple[str | None, str | None]:
    """Fold one message into the current weather; publishes only on change."""
    if not isinstance(msg, dict):
        return state, None

    if msg.get("type") == "Welcome" and msg.get("fullState"):
        game = _game_data(msg)
        if game is None or "weather" not in game:
            return state, None
        value = format_weather(game["weather"])
        return (value, value) if value != state else (state, None)

    for patch in _patches(msg):
        if patch["path"] == WEATHER_PATH:
            value = format_weather(patch.get("value"))
            return (value, value) if value != state else (state, None)
    return state, None


class Channel:
    """Fan-out of events on one topic to subscribed callbacks."""

    def __init__(self, topic: str):
        self.topic = topic
        self._subscribers: list[Callable[[Any], None]] = []

    def subscribe(self, callback: Callable[[Any], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: Any):
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Live subscriber failed", topic=self.topic)

    def __len__(self):
        return len(self._subscribers)


class LiveData:
    """Current shops and weather, fed with raw socket frames."""

    def __init__(self):
        self.shops_raw: dict | None = None
        self.weather: str | None = None
        self.shops_channel = Channel("shops")
        self.weather_channel = Channel("weather")

    @property
    def shops(self) -> dict | None:
        return simplify_shops(self.shops_raw)

    def handle_message(self, msg: Any):
        self.shops_raw, shops_event = reduce_shops(self.shops_raw, msg)
        self.weather, weather_event = reduce_weather(self.weather, msg)
        if shops_event is not None:
            self.shops_channel.publish(shops_event)
        if weather_event is not None:
            self.weather_channel.publish(weather_event)

    def handle_raw(self, raw: str | bytes):
        try:
            msg = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug("Ignoring non-JSON frame", size=len(raw))
            return
        self.handle_message(msg)

    def snapshot(self) -> dict:
        return {"weather": self.weather, "shops": self.shops}

    def on_shops_change(self, callback: Callable[[Any], None]) -> Callable[[], None]:
        return self.shops_channel.subscribe(callback)

    def on_weather_change(self, callback: Callable[[Any], None]) -> Callable[[], None]:
        return self.weather_channel.subscribe(callback)
