"""Wiring of the long-lived service objects."""

import dataclasses
import os
import time
from typing import Callable

import httpx
from loguru import logger

from mg_api import assets, atlas, bundle, extractors, sync, transform
from mg_api.config import Settings
from mg_api.connection import GameConnection
from mg_api.enums import EnumResolver
from mg_api.errors import NotFoundError
from mg_api.parsers import LiveData
from mg_api.schema import CacheStats
from mg_api.upstream import Upstream
from mg_api.version import GameVersion, VersionStore

Extractor = Callable[[str, EnumResolver], dict]


@dataclasses.dataclass
class _CachedCategory:
    bundle_url: str
    data: dict
    created_at: float


class GameData:
    """Extracted categories, cached per bundle URL.

    Args:
        bundles: Bundle cache; its URL changes flush everything cached here
        resolver: Enum memo shared by all extractions of one bundle
    """

    def __init__(self, bundles: bundle.BundleCache, resolver: EnumResolver | None = None):
        self.bundles = bundles
        self.resolver = resolver or EnumResolver()
        self._categories: dict[str, _CachedCategory] = {}
        bundles.on_change(self._on_bundle_change)

    def _on_bundle_change(self, old_url: str | None, new_url: str):
        self._categories.clear()
        self.resolver.clear()

    def available_categories(self) -> list[str]:
        return extractors.available_categories()

    async def get_category_cached(self, name: str, extractor: Extractor | None = None) -> dict:
        """Data of one category for the current bundle, extracting it at most once per bundle URL.

        Raises:
            NotFoundError: If the category is unknown
            MiningError: If extraction fails
            FetchError: If the bundle cannot be fetched
        """
        if extractor is None:
            if name not in extractors.EXTRACTORS:
                raise NotFoundError(name)
            extractor = extractors.EXTRACTORS[name]

        current = await self.bundles.get_bundle()
        cached = self._categories.get(name)
        if cached is not None and cached.bundle_url == current.url:
            logger.debug("Category cache hit", category=name)
            return cached.data

        logger.debug("Category cache miss, extracting", category=name)
        data = extractor(current.text, self.resolver)
        self._categories[name] = _CachedCategory(current.url, data, time.time())
        return data

    async def get_all(self) -> dict[str, dict]:
        return {name: await self.get_category_cached(name) for name in self.available_categories()}

    def get_cache_stats(self) -> CacheStats:
        current = self.bundles.bundle
        return CacheStats(
            has_bundle_cached=current is not None,
            bundle_url=current.url if current else None,
            bundle_fetched_at=self.bundles.fetched_at_iso(),
            bundle_age=self.bundles.age(),
            categories_cached=list(self._categories),
        )

    def invalidate_all(self):
        self.bundles.invalidate()
        self._categories.clear()
        self.resolver.clear()
        logger.info("All caches invalidated")


@dataclasses.dataclass
class Services:
    settings: Settings
    upstream: Upstream
    bundles: bundle.BundleCache
    game_data: GameData
    version: GameVersion
    version_store: VersionStore
    atlas_store: atlas.AtlasStore
    manifests: assets.ManifestLoader
    catalog: assets.SpriteCatalog
    cosmetics: assets.CosmeticCatalog
    audio: assets.AudioCatalog
    sprite_sync: sync.SpriteSync
    matcher: transform.SpriteNameMatcher
    live: LiveData
    connection: GameConnection | None = None
    started_at: float = dataclasses.field(default_factory=time.monotonic)

    def transformer(self) -> transform.DataTransformer:
        return transform.DataTransformer(
            self.matcher, self.settings.sprites.base_url, self.version_store.load()
        )

    def create_connection(self) -> GameConnection:
        """Room connection whose frames feed the live data and whose closes drive sprite sync."""
        ws = self.settings.websocket
        conn = GameConnection(
            self.version,
            self.settings.game.origin,
            room_id=ws.room_id,
            auto_reconnect=ws.auto_reconnect,
            max_retries=ws.max_retries,
            min_delay=ws.min_delay,
            max_delay=ws.max_delay,
        )
        conn.on_message.append(self.live.handle_raw)
        self.sprite_sync.attach(conn)
        self.connection = conn
        return conn

    async def aclose(self):
        if self.connection is not None:
            await self.connection.stop()
        await self.upstream.aclose()


def build_services(
    settings: Settings,
    client: httpx.AsyncClient | None = None,
    exit_fn: Callable[[int], None] = os._exit,
) -> Services:
    upstream = Upstream(client)

    async def fetch():
        return await bundle.fetch_main_bundle(upstream, settings.game.page_url)

    bundles = bundle.BundleCache(fetch, ttl=settings.cache.bundle_ttl)
    game_data = GameData(bundles)
    version = GameVersion(upstream, settings.game.origin, ttl=settings.cache.version_ttl)
    version_store = VersionStore(settings.version_file)
    atlas_store = atlas.AtlasStore(settings.atlases_file)
    manifests = assets.ManifestLoader(upstream)
    matcher = transform.SpriteNameMatcher(settings.sprites.export_dir / "sprite")

    sprite_sync = sync.SpriteSync(
        upstream,
        version,
        version_store,
        atlas_store,
        manifests,
        origin=settings.game.origin,
        export_dir=settings.sprites.export_dir,
        sync_timeout=settings.sprites.sync_timeout,
        restart_on_version_mismatch=settings.sprites.restart_on_version_mismatch,
        exit_fn=exit_fn,
    )
    sprite_sync.on_version_change(game_data.invalidate_all)
    sprite_sync.on_export(matcher.clear)

    return Services(
        settings=settings,
        upstream=upstream,
        bundles=bundles,
        game_data=game_data,
        version=version,
        version_store=version_store,
        atlas_store=atlas_store,
        manifests=manifests,
        catalog=assets.SpriteCatalog(upstream, manifests),
        cosmetics=assets.CosmeticCatalog(manifests),
        audio=assets.AudioCatalog(upstream, manifests),
        sprite_sync=sprite_sync,
        matcher=matcher,
        live=LiveData(),
    )
