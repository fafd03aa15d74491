"""Category extractors: one signature set and sandbox recipe per data category."""

import dataclasses
import re
from typing import Callable

from loguru import logger

from mg_api import scanner
from mg_api.enums import EnumResolver
from mg_api.errors import NotFoundError
from mg_api.sandbox import Placeholder, Sandbox, run_object_literal

BuildSandbox = Callable[[str, str], Sandbox]

RARITY_KEYS = ("Common", "Uncommon", "Rare")
WEATHER_KEYS = ("Rain", "Frost", "Dawn")
HARVEST_TYPE_KEYS = ("Single", "Multiple")

_RARITY_REF = re.compile(r"rarity:([A-Za-z_$][\w$]*)\.")
_WEATHER_REF = re.compile(
    r"\b(?:requiredWeather|weather|desiredWeather|triggeredWeather):([A-Za-z_$][\w$]*)\."
)
_HARVEST_TYPE_REF = re.compile(r"harvestType:([A-Za-z_$][\w$]*)\.")
_TILE_REF = re.compile(r"\btileRef:([A-Za-z_$][\w$]*)\.")


@dataclasses.dataclass(frozen=True)
class ExtractedCategory:
    variable_name: str | None
    data: dict


def extract_category(
    text: str, name: str, signatures: tuple[str, ...], build_sandbox: BuildSandbox
) -> ExtractedCategory:
    """Locate and evaluate the object literal holding one category.

    Raises:
        NotFoundError: If no literal matches the signatures
        InvalidShapeError: If the literal does not evaluate to a plain object
        EvaluationError: If the sandbox fails
        MatchError: If the literal cannot be balanced
    """
    hit = scanner.locate_literal(text, signatures)
    if hit is None:
        raise NotFoundError(name, signatures)

    sandbox = build_sandbox(text, hit.source)
    data = run_object_literal(hit.source, sandbox, name)
    logger.info(
        "Category extracted",
        category=name,
        variable=hit.variable_name,
        offset=hit.start,
        entries=len(data),
    )
    return ExtractedCategory(variable_name=hit.variable_name, data=data)


def _bind_enum(sandbox: Sandbox, resolver: EnumResolver, text: str, enum_id: str, keys):
    found = resolver.enum(text, enum_id, keys)
    if found is None:
        logger.debug("Enum unresolved, using placeholder", enum_id=enum_id)
        sandbox.bind_placeholder(enum_id)
    else:
        sandbox.bind(enum_id, found)


def apply_rarity_enum(sandbox: Sandbox, resolver: EnumResolver, text: str, literal: str):
    m = _RARITY_REF.search(literal)
    if m:
        _bind_enum(sandbox, resolver, text, m.group(1), RARITY_KEYS)


def apply_weather_enums(sandbox: Sandbox, resolver: EnumResolver, text: str, literal: str):
    for enum_id in dict.fromkeys(_WEATHER_REF.findall(literal)):
        _bind_enum(sandbox, resolver, text, enum_id, WEATHER_KEYS)


def apply_harvest_type_enum(sandbox: Sandbox, resolver: EnumResolver, text: str, literal: str):
    m = _HARVEST_TYPE_REF.search(literal)
    if m:
        _bind_enum(sandbox, resolver, text, m.group(1), HARVEST_TYPE_KEYS)


def apply_sprite_mapping(sandbox: Sandbox, resolver: EnumResolver, text: str, literal: str):
    mapping = resolver.sprite_mapping(text)
    if mapping is None or not mapping.variable_name:
        return
    if mapping.variable_name in sandbox.bindings:
        return
    if re.search(r"(?<![\w$])" + re.escape(mapping.variable_name) + r"\.", literal):
        sandbox.bind(mapping.variable_name, mapping.mapping)


def build_base_sandbox(text: str, literal: str, resolver: EnumResolver) -> Sandbox:
    """Sandbox shared by every category.

    Rarity and weather enums are resolved to real values when possible.
    tileRef identifiers always stay placeholders so that sprite references
    evaluate to sprite names ("Carrot") rather than numeric frame ids. The
    sprite mapping table is bound only when the literal reads from it.
    """
    sandbox = Sandbox()
    apply_rarity_enum(sandbox, resolver, text, literal)
    apply_weather_enums(sandbox, resolver, text, literal)
    for tile_id in dict.fromkeys(_TILE_REF.findall(literal)):
        sandbox.bind(tile_id, Placeholder(tile_id))
    apply_sprite_mapping(sandbox, resolver, text, literal)
    return sandbox


@dataclasses.dataclass(frozen=True)
class CategoryExtractor:
    name: str
    signatures: tuple[str, ...]
    harvest_type: bool = False

    def build_sandbox(self, resolver: EnumResolver) -> BuildSandbox:
        def build(text: str, literal: str) -> Sandbox:
            sandbox = build_base_sandbox(text, literal, resolver)
            if self.harvest_type:
                apply_harvest_type_enum(sandbox, resolver, text, literal)
            return sandbox

        return build

    def __call__(self, text: str, resolver: EnumResolver | None = None) -> dict:
        resolver = resolver if resolver is not None else EnumResolver()
        return extract_category(text, self.name, self.signatures, self.build_sandbox(resolver)).data


extract_plants = CategoryExtractor(
    "plants", ("seed:{tileRef", "plant:{tileRef", "crop:{tileRef"), harvest_type=True
)
extract_pets = CategoryExtractor(
    "pets", ("coinsToFullyReplenishHunger", "innateAbilityWeights", "hoursToMature")
)
extract_items = CategoryExtractor(
    "items", ("maxInventoryQuantity", "isOneTimePurchase", "grantedMutation")
)
extract_decor = CategoryExtractor(
    "decor", ("baseTileScale", "isOneTimePurchase", "rotationVariants")
)
extract_eggs = CategoryExtractor("eggs", ("secondsToHatch", "faunaSpawnWeights", "coinPrice"))
extract_abilities = CategoryExtractor(
    "abilities", ('trigger:"continuous"', "baseProbability", "baseParameters:{")
)
extract_mutations = CategoryExtractor(
    "mutations", ("coinMultiplier", "baseChance", 'name:"Gold"')
)
extract_weathers = CategoryExtractor("weathers", ("mutator:{mutation:",))

EXTRACTORS: dict[str, CategoryExtractor] = {
    e.name: e
    for e in (
        extract_plants,
        extract_pets,
        extract_items,
        extract_decor,
        extract_eggs,
        extract_abilities,
        extract_mutations,
        extract_weathers,
    )
}


def available_categories() -> list[str]:
    return list(EXTRACTORS)
