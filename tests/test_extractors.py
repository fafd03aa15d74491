import pytest

from mg_api import extractors
from mg_api.enums import EnumResolver
from mg_api.errors import EvaluationError, NotFoundError
from mg_api.sandbox import Placeholder, RealValue


class TestCategoryExtractors:
    def test_plants(self, bundle_text):
        plants = extractors.extract_plants(bundle_text)
        assert list(plants) == ["Carrot", "Sunflower"]
        carrot = plants["Carrot"]
        assert carrot["seed"] == {
            "tileRef": "Carrot",
            "name": "Carrot Seed",
            "coinPrice": 10,
            "rarity": "Common",
        }
        assert carrot["plant"] == {"tileRef": "CarrotPlant", "harvestType": "Single"}
        assert carrot["crop"]["baseSellPrice"] == 20
        assert plants["Sunflower"]["seed"]["rarity"] == "Mythical"
        assert plants["Sunflower"]["plant"]["harvestType"] == "Multiple"

    def test_pets(self, bundle_text):
        pets = extractors.extract_pets(bundle_text)
        assert pets["Bee"]["hoursToMature"] == 12
        assert pets["Bee"]["rarity"] == "Common"
        assert pets["Bee"]["tileRef"] == "Bee"
        assert pets["Bee"]["diet"] == ["Carrot"]

    def test_eggs(self, bundle_text):
        eggs = extractors.extract_eggs(bundle_text)
        assert eggs == {
            "CommonEgg": {
                "tileRef": "CommonEgg",
                "name": "Common Egg",
                "coinPrice": 100000,
                "secondsToHatch": 600,
                "faunaSpawnWeights": {"Bee": 100},
            }
        }

    def test_items(self, bundle_text):
        items = extractors.extract_items(bundle_text)
        assert items["WateringCan"]["isOneTimePurchase"] is False
        assert items["GoldPotion"]["grantedMutation"] == "Gold"

    def test_decor_reads_sprite_mapping(self, bundle_text):
        decor = extractors.extract_decor(bundle_text)
        assert decor["Bench"]["tileRef"] == "Bench"
        assert decor["Bench"]["spriteKey"] == "sprite/decor/Bench"
        assert decor["Bench"]["rotationVariants"] == [0, 90]

    def test_abilities(self, bundle_text):
        abilities = extractors.extract_abilities(bundle_text)
        assert abilities["ProduceScaleBoost"]["baseProbability"] == pytest.approx(0.3)

    def test_mutations(self, bundle_text):
        mutations = extractors.extract_mutations(bundle_text)
        assert set(mutations) == {"Gold", "Rainbow"}
        assert mutations["Rainbow"]["coinMultiplier"] == 50

    def test_weathers_resolve_weather_enum(self, bundle_text):
        weathers = extractors.extract_weathers(bundle_text)
        assert weathers["Frost"]["weather"] == "Frost"
        assert weathers["Rain"]["mutator"]["mutation"] == "Wet"

    def test_missing_category(self):
        with pytest.raises(NotFoundError) as e:
            extractors.extract_pets("var a={b:1};")
        assert e.value.category == "pets"

    def test_broken_literal(self):
        text = "var P={a:Foo(),coinsToFullyReplenishHunger:1,innateAbilityWeights:1,hoursToMature:1};"
        with pytest.raises(EvaluationError):
            extractors.extract_pets(text)

    def test_shared_resolver(self, bundle_text):
        resolver = EnumResolver()
        extractors.extract_plants(bundle_text, resolver)
        extractors.extract_pets(bundle_text, resolver)
        assert resolver.enum(bundle_text, "Rk", extractors.RARITY_KEYS)["Mythic"] == "Mythical"

    @pytest.mark.parametrize("name", list(extractors.EXTRACTORS))
    def test_repeated_extraction_is_identical(self, bundle_text, name):
        extract = extractors.EXTRACTORS[name]
        shared = EnumResolver()
        first = extract(bundle_text, shared)
        assert extract(bundle_text, shared) == first
        assert extract(bundle_text, EnumResolver()) == first
        assert extract(bundle_text) == first


class TestBaseSandbox:
    def test_tile_refs_stay_placeholders(self, bundle_text):
        literal = "{a:{tileRef:Tt.Carrot,rarity:Rk.Rare}}"
        sandbox = extractors.build_base_sandbox(bundle_text, literal, EnumResolver())
        assert sandbox.bindings["Tt"] == Placeholder("Tt")
        assert isinstance(sandbox.bindings["Rk"], RealValue)

    def test_unresolved_enum_becomes_placeholder(self):
        sandbox = extractors.build_base_sandbox("", "{a:{rarity:Zz.Rare}}", EnumResolver())
        assert sandbox.bindings["Zz"] == Placeholder("Zz")
        assert sandbox.evaluate("{a:{rarity:Zz.Rare}}") == {"a": {"rarity": "Rare"}}

    def test_sprite_mapping_bound_only_when_referenced(self, bundle_text):
        sandbox = extractors.build_base_sandbox(bundle_text, "{a:1}", EnumResolver())
        assert "Sm" not in sandbox.bindings


def test_available_categories():
    assert extractors.available_categories() == [
        "plants",
        "pets",
        "items",
        "decor",
        "eggs",
        "abilities",
        "mutations",
        "weathers",
    ]


def test_tile_ref_wins_over_sprite_mapping(bundle_text):
    literal = "{a:{tileRef:Sm.Decor}}"
    sandbox = extractors.build_base_sandbox(bundle_text, literal, EnumResolver())
    assert sandbox.bindings["Sm"] == Placeholder("Sm")
