import asyncio

import httpx
import pytest

from mg_api import assets
from mg_api.errors import FetchError
from mg_api.upstream import Upstream

BASE_URL = "https://magicgarden.gg/version/42/assets/"

MANIFEST = {
    "bundles": [
        {
            "name": "audio",
            "assets": [
                {"src": ["audio/ambience/Farm.mp3", "audio/music/Farm.mp3"]},
                {"src": ["audio/music/Winter.mp3", "audio/sfx/sfx.mp3", "audio/sfx/sfx.json"]},
                {"src": ["audio/other/ping.ogg"]},
            ],
        },
        {
            "name": "cosmetic",
            "assets": [
                {"src": ["cosmetic/Top_Crown.png", "cosmetic/Mid_Shirt_Blue.png"]},
                {"src": ["cosmetic/Top_Cap.PNG", "cosmetic/NoCategory.png", "cosmetic/Top_Hat.webp"]},
            ],
        },
        {
            "name": "default",
            "assets": [
                {"src": ["sprites/sprites-0.json", "sprites/sprites-0.webp"]},
                {"src": ["tiles/tiles.webp"]},
                {"src": ["fonts/font.json", "manifest.json"]},
                {"src": ["sprites/sprites-0.json"]},
                "garbage",
            ],
        },
    ]
}

SPRITES_0 = {
    "frames": {
        "sprite/seed/Carrot": {"frame": {"x": 0, "y": 0, "w": 4, "h": 4}},
        "sprite/tallplant/Bamboo": {"frame": {"x": 4, "y": 0, "w": 4, "h": 8}},
        "sprite/mutation-overlay/Gold": {"frame": {"x": 8, "y": 0, "w": 2, "h": 2}},
        "broken": {"rotated": True},
    },
    "animations": {"sprite/animation/BeeFly": ["sprite/pet/Bee1", "sprite/pet/Bee2"], "empty": []},
    "meta": {"image": "sprites-0.webp", "related_multi_packs": ["sprites/sprites-1.json"]},
}
SPRITES_1 = {
    "frames": {"sprite/pet/Bee": {"frame": {"x": 0, "y": 0, "w": 4, "h": 4}}},
    "meta": {"image": "sprites-1.webp", "related_multi_packs": ["sprites/sprites-0.json"]},
}

SFX_ATLAS = {
    "Click": {"start": 0, "end": 0.25},
    "Harvest": {"start": 1, "duration": 0.5},
    "Coin": [2, 2.333],
    "Broken": {"start": "x"},
    "Backwards": [3, 2],
}


def asset_upstream(calls: list[str] | None = None) -> Upstream:
    routes = {
        BASE_URL + "manifest.json": MANIFEST,
        BASE_URL + "sprites/sprites-0.json": SPRITES_0,
        BASE_URL + "sprites/sprites-1.json": SPRITES_1,
        BASE_URL + "audio/sfx/sfx.json": SFX_ATLAS,
    }

    async def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if calls is not None:
            calls.append(url)
        await asyncio.sleep(0)
        if url not in routes:
            return httpx.Response(404)
        return httpx.Response(200, json=routes[url])

    return Upstream(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def test_asset_base_url():
    assert assets.asset_base_url("https://magicgarden.gg/", "42") == BASE_URL


class TestManifestHelpers:
    def test_get_bundle_by_name(self):
        assert assets.get_bundle_by_name(MANIFEST)["name"] == "default"
        assert assets.get_bundle_by_name(MANIFEST, "missing") is None
        assert assets.get_bundle_by_name(None) is None
        assert assets.get_bundle_by_name({"bundles": "x"}) is None

    def test_sources_deduplicated(self):
        bundle = assets.get_bundle_by_name(MANIFEST)
        assert assets.extract_all_sources(bundle) == [
            "sprites/sprites-0.json",
            "sprites/sprites-0.webp",
            "tiles/tiles.webp",
            "fonts/font.json",
            "manifest.json",
        ]
        assert assets.extract_json_files(bundle) == ["sprites/sprites-0.json", "fonts/font.json"]

    def test_discover_atlas_files(self):
        bundle = assets.get_bundle_by_name(MANIFEST)
        assert assets.discover_atlas_files(bundle) == ["sprites/sprites-0.json", "tiles/tiles.json"]


@pytest.mark.parametrize(
    "key,source,expected",
    [
        ("sprite/seed/Carrot", "sprites/sprites-0.json", "seeds"),
        ("sprite/tallplant/Bamboo", "", "tallPlants"),
        ("sprite/mutation-overlay/Gold", "", "mutations"),
        ("sprite/pet/Bee", "", "pets"),
        ("sprite/newgroup/Thing", "", "newgroup"),
        ("weather/Rain", "", "weather"),
        ("Grass", "tiles/tiles.json", "tiles"),
        ("Other", "sprites/sprites-0.json", "misc"),
        ("", "", "misc"),
    ],
)
def test_sprite_category(key, source, expected):
    assert assets.sprite_category(key, source) == expected


@pytest.mark.parametrize(
    "source,image,expected",
    [
        ("sprites/sprites-0.json", "sprites-0.webp", "sprites/sprites-0.webp"),
        ("atlas.json", "/atlas.webp", "atlas.webp"),
        ("atlas.json", None, None),
        ("", "x.webp", None),
    ],
)
def test_resolve_meta_image_src(source, image, expected):
    assert assets.resolve_meta_image_src(source, image) == expected


class TestFetchAtlases:
    @pytest.mark.asyncio
    async def test_follows_related_and_skips_failures(self):
        calls = []
        atlases = await assets.fetch_atlases(
            asset_upstream(calls), BASE_URL, ["sprites/sprites-0.json", "tiles/tiles.json"]
        )
        assert list(atlases) == ["sprites/sprites-0.json", "sprites/sprites-1.json"]
        # Each file is requested once even though the packs reference each other
        assert calls.count(BASE_URL + "sprites/sprites-0.json") == 1

    @pytest.mark.asyncio
    async def test_without_related(self):
        atlases = await assets.fetch_atlases(
            asset_upstream(), BASE_URL, ["sprites/sprites-0.json"], follow_related=False
        )
        assert list(atlases) == ["sprites/sprites-0.json"]


class TestBuildSpriteCatalog:
    def test_frames_and_animations(self):
        frames, animations = assets.build_sprite_catalog({"sprites/sprites-0.json": SPRITES_0}, BASE_URL)
        assert [f.key for f in frames] == [
            "sprite/seed/Carrot",
            "sprite/tallplant/Bamboo",
            "sprite/mutation-overlay/Gold",
        ]
        carrot = frames[0]
        assert carrot.name == "Carrot"
        assert carrot.category == "seeds"
        assert carrot.image_src == "sprites/sprites-0.webp"
        assert carrot.url == BASE_URL + "sprites/sprites-0.webp"
        assert [a.key for a in animations] == ["sprite/animation/BeeFly"]
        assert animations[0].name == "BeeFly"

    def test_atlas_without_image_skipped(self):
        frames, animations = assets.build_sprite_catalog({"x.json": {"frames": SPRITES_0["frames"]}}, BASE_URL)
        assert frames == [] and animations == []


class TestManifestLoader:
    @pytest.mark.asyncio
    async def test_cached_and_coalesced(self):
        calls = []
        loader = assets.ManifestLoader(asset_upstream(calls))
        first, second = await asyncio.gather(loader.load(BASE_URL), loader.load(BASE_URL))
        assert first is second
        await loader.load(BASE_URL)
        assert calls == [BASE_URL + "manifest.json"]
        loader.clear()
        await loader.load(BASE_URL)
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_missing_manifest(self):
        loader = assets.ManifestLoader(asset_upstream())
        with pytest.raises(FetchError):
            await loader.load("https://magicgarden.gg/version/0/assets/")


class TestSpriteCatalog:
    @pytest.mark.asyncio
    async def test_listing(self):
        upstream = asset_upstream()
        catalog = assets.SpriteCatalog(upstream, assets.ManifestLoader(upstream))
        await catalog.load(BASE_URL)
        assert catalog.base_url == BASE_URL
        assert len(catalog.frames) == 4

        grouped = catalog.listing()
        assert grouped["count"] == 5
        cats = {group["cat"]: group["items"] for group in grouped["categories"]}
        assert set(cats) == {"seeds", "tallPlants", "mutations", "pets", "animations"}
        assert cats["seeds"][0] == {
            "type": "frame",
            "id": "sprite/seed/Carrot",
            "name": "Carrot",
            "url": BASE_URL + "sprites/sprites-0.webp",
            "frame": {"x": 0, "y": 0, "w": 4, "h": 4},
        }

        flat = catalog.listing(category="pets", flat=True)
        assert flat["count"] == 1
        assert flat["items"][0]["id"] == "sprite/pet/Bee"

        searched = catalog.listing(search="BAMBOO", flat=True, full=True)
        assert searched["items"][0]["category"] == "tallPlants"
        assert searched["items"][0]["source_json"] == "sprites/sprites-0.json"


class TestCosmeticCatalog:
    def test_parse_cosmetics(self):
        bundle = assets.get_bundle_by_name(MANIFEST, "cosmetic")
        items = assets.parse_cosmetics(bundle, BASE_URL)
        assert [(c.cat, c.name) for c in items] == [("Top", "Crown"), ("Mid", "Shirt_Blue"), ("Top", "Cap")]
        assert items[0].url == BASE_URL + "cosmetic/Top_Crown.png"
        assert items[2].base == "Top_Cap"

    @pytest.mark.asyncio
    async def test_listing(self):
        catalog = assets.CosmeticCatalog(assets.ManifestLoader(asset_upstream()))
        await catalog.load(BASE_URL)

        grouped = catalog.listing()
        assert grouped["baseUrl"] == BASE_URL
        assert grouped["count"] == 3
        assert [group["cat"] for group in grouped["categories"]] == ["Top", "Mid"]
        assert grouped["categories"][0]["items"][0] == {
            "id": "Top_Crown",
            "name": "Crown",
            "url": BASE_URL + "cosmetic/Top_Crown.png",
        }

        full = catalog.listing(full=True)
        assert full["categories"][1]["items"][0]["src"] == "cosmetic/Mid_Shirt_Blue.png"

    @pytest.mark.asyncio
    async def test_missing_bundle(self):
        upstream = asset_upstream()
        loader = assets.ManifestLoader(upstream)
        loader._manifests[BASE_URL] = {"bundles": [{"name": "default", "assets": []}]}
        with pytest.raises(FetchError):
            await assets.CosmeticCatalog(loader).load(BASE_URL)


@pytest.mark.parametrize(
    "segment,expected",
    [
        ({"start": 1, "end": 2}, (1.0, 2.0)),
        ({"start": 1, "duration": 0.5}, (1.0, 1.5)),
        ([0.5, 0.75], (0.5, 0.75)),
        ({"start": "1.5", "end": "2"}, (1.5, 2.0)),
        ({"start": 1}, None),
        ({"start": "x", "end": 2}, None),
        ([1], None),
        (3, None),
        (None, None),
    ],
)
def test_normalize_segment(segment, expected):
    assert assets.normalize_segment(segment) == expected


class TestAudioCatalog:
    @pytest.mark.asyncio
    async def test_listing(self):
        calls = []
        upstream = asset_upstream(calls)
        catalog = assets.AudioCatalog(upstream, assets.ManifestLoader(upstream))
        await catalog.load(BASE_URL)
        await catalog.load(BASE_URL)
        assert calls.count(BASE_URL + "audio/sfx/sfx.json") == 1

        body = catalog.listing()
        assert body["baseUrl"] == BASE_URL
        assert body["themes"] == [
            {
                "name": "Farm",
                "ambience": BASE_URL + "audio/ambience/Farm.mp3",
                "music": BASE_URL + "audio/music/Farm.mp3",
            },
            {"name": "Winter", "ambience": None, "music": BASE_URL + "audio/music/Winter.mp3"},
        ]
        assert body["sfx"]["url"] == BASE_URL + "audio/sfx/sfx.mp3"
        assert body["sfx"]["items"] == [
            {"name": "Click", "start": 0.0, "end": 0.25, "duration": 0.25},
            {"name": "Harvest", "start": 1.0, "end": 1.5, "duration": 0.5},
            {"name": "Coin", "start": 2.0, "end": 2.33, "duration": 0.33},
            {"name": "Backwards", "start": 3.0, "end": 2.0, "duration": 0.0},
        ]

    def test_no_sfx_audio_means_no_items(self):
        catalog = assets.AudioCatalog(asset_upstream(), assets.ManifestLoader(asset_upstream()))
        catalog.sfx_atlas = {"Click": [0, 1]}
        assert catalog.sfx_segments() == []
