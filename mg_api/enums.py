"""Resolving minified enum objects to their real values.

Two idioms show up in the bundle:

- string enums, built by an immediately-invoked arrow function:
  `Xy=(t=>(t.Common="Common",t.Rare="Rare",t))(Xy||{})`
- numeric/helper enums, built by a helper call whose last argument is the
  object literal: `Xy=cc("Rarity",{Common:0,Rare:1})`
"""

import re

from loguru import logger

from mg_api import scanner
from mg_api.errors import EvaluationError, MatchError, MiningError
from mg_api.sandbox import Sandbox, run_object_literal

ENUM_TIMEOUT = 1.0

SPRITE_MAPPING_SIGNATURES = (
    '"sprite/seed/',
    '"sprite/plant/',
    '"sprite/pet/',
    '"sprite/decor/',
)
SPRITE_MAPPING_KEYS = ("Seed", "Plant", "Pet", "Decor")


def _has_keys(obj, required_keys) -> bool:
    return isinstance(obj, dict) and all(k in obj for k in required_keys)


def try_extract_string_enum(
    text: str, enum_id: str, required_keys: tuple[str, ...] | list[str] = ()
) -> dict | None:
    """Resolve a string enum built by an arrow-function IIFE.

    Every occurrence of `<enum_id>=(<param>=>` is tried in order. The factory
    and its invocation are evaluated with `<enum_id>` bound to an empty object.

    Args:
        text: Bundle source
        enum_id: Minified identifier of the enum
        required_keys: Keys the resolved object must contain

    Returns:
        The enum object, or None when no occurrence yields one
    """
    pattern = re.compile(r"(?<![\w$])" + re.escape(enum_id) + r"=\((?:[A-Za-z_$][\w$]*)=>")
    for m in pattern.finditer(text):
        paren = m.start() + len(enum_id) + 1
        try:
            factory = scanner.extract_balanced_parens(text, paren)
            after = paren + len(factory)
            if text[after : after + 1] == "(":
                invocation = scanner.extract_balanced_parens(text, after)
            else:
                invocation = f"({enum_id}||{{}})"
            obj = Sandbox({enum_id: {}}, timeout=ENUM_TIMEOUT).evaluate(factory + invocation)
        except (MatchError, EvaluationError) as e:
            logger.debug("Skipping enum candidate", enum_id=enum_id, offset=m.start(), error=str(e))
            continue
        if _has_keys(obj, required_keys):
            return obj
    return None


def try_extract_numeric_enum(
    text: str, enum_id: str, required_keys: tuple[str, ...] | list[str] = ()
) -> dict | None:
    """Resolve an enum built by a helper call such as `X=cc("Name",{A:0,B:1})`.

    The first object literal inside the call's argument list is evaluated.
    """
    pattern = re.compile(r"(?<![\w$])" + re.escape(enum_id) + r"=[A-Za-z_$][\w$]*\(")
    for m in pattern.finditer(text):
        paren = m.end() - 1
        try:
            args = scanner.extract_balanced_parens(text, paren)
            brace = args.find("{")
            if brace == -1:
                continue
            literal = scanner.extract_balanced_braces(args, brace)
            obj = Sandbox(timeout=ENUM_TIMEOUT).evaluate(literal)
        except (MatchError, EvaluationError) as e:
            logger.debug("Skipping enum candidate", enum_id=enum_id, offset=m.start(), error=str(e))
            continue
        if _has_keys(obj, required_keys):
            return obj
    return None


class SpriteMapping:
    def __init__(self, variable_name: str | None, mapping: dict):
        self.variable_name = variable_name
        self.mapping = mapping


class EnumResolver:
    """Memoizes enum and sprite-mapping lookups for one bundle build.

    Misses are memoized too. Call clear() when the bundle changes.
    """

    def __init__(self):
        self._memo: dict[tuple, dict | None] = {}
        self._sprite_mapping: SpriteMapping | None = None
        self._sprite_mapping_done = False

    def string_enum(self, text: str, enum_id: str, required_keys=()) -> dict | None:
        key = ("str", enum_id, tuple(sorted(required_keys)))
        if key not in self._memo:
            self._memo[key] = try_extract_string_enum(text, enum_id, required_keys)
            logger.debug("Resolved string enum", enum_id=enum_id, found=self._memo[key] is not None)
        return self._memo[key]

    def numeric_enum(self, text: str, enum_id: str, required_keys=()) -> dict | None:
        key = ("num", enum_id, tuple(sorted(required_keys)))
        if key not in self._memo:
            self._memo[key] = try_extract_numeric_enum(text, enum_id, required_keys)
            logger.debug("Resolved numeric enum", enum_id=enum_id, found=self._memo[key] is not None)
        return self._memo[key]

    def enum(self, text: str, enum_id: str, required_keys=()) -> dict | None:
        """String idiom first, then the helper-call idiom."""
        found = self.string_enum(text, enum_id, required_keys)
        if found is None:
            found = self.numeric_enum(text, enum_id, required_keys)
        return found

    def sprite_mapping(self, text: str) -> SpriteMapping | None:
        """Locate the table mapping sprite groups (Seed, Plant, ...) to sprite keys."""
        if self._sprite_mapping_done:
            return self._sprite_mapping
        self._sprite_mapping_done = True

        try:
            hit = scanner.locate_literal(text, SPRITE_MAPPING_SIGNATURES)
            if hit is None:
                logger.warning("Sprite mapping not found in bundle")
                return None
            mapping = run_object_literal(hit.source, Sandbox(), "sprite mapping")
        except MiningError as e:
            logger.warning("Sprite mapping could not be evaluated", error=str(e))
            return None
        if not all(isinstance(mapping.get(k), dict) for k in SPRITE_MAPPING_KEYS):
            logger.warning("Sprite mapping is missing expected groups", keys=list(mapping)[:20])
            return None

        self._sprite_mapping = SpriteMapping(hit.variable_name, mapping)
        return self._sprite_mapping

    def clear(self):
        self._memo.clear()
        self._sprite_mapping = None
        self._sprite_mapping_done = False
