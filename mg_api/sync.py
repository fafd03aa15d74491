"""Keeping the exported sprite tree in step with the game version."""

import asyncio
import os
import pathlib
import time
from typing import Callable

from loguru import logger

from mg_api import assets, atlas, export
from mg_api.connection import VERSION_MISMATCH_CODES, CloseCode
from mg_api.errors import FetchError
from mg_api.schema import SyncResult, SyncStatus
from mg_api.upstream import Upstream
from mg_api.version import GameVersion, VersionStore


def needs_initial_export(export_dir: str | pathlib.Path) -> bool:
    """True when <export_dir>/sprite is missing or empty."""
    sprite_dir = pathlib.Path(export_dir) / "sprite"
    return not sprite_dir.is_dir() or not any(sprite_dir.iterdir())


class SpriteSync:
    """Selective sprite re-export driven by version and atlas diffs.

    Only one sync runs at a time. A sync that outlives sync_timeout is
    considered hung and terminates the process through exit_fn.

    Args:
        upstream: HTTP access
        version: Current game version source
        version_store: Version of the last completed sync
        atlas_store: Atlas snapshots of the last completed sync
        manifests: Manifest loader
        origin: Game origin, used to build the asset base URL
        export_dir: Root of the exported sprite tree
        sync_timeout: Watchdog limit in seconds
        restart_on_version_mismatch: Exit after a version-mismatch sync so a
            supervisor restarts the process on the new version
        exit_fn: Process exit, called with the exit status
    """

    def __init__(
        self,
        upstream: Upstream,
        version: GameVersion,
        version_store: VersionStore,
        atlas_store: atlas.AtlasStore,
        manifests: assets.ManifestLoader,
        origin: str,
        export_dir: str | pathlib.Path,
        sync_timeout: float = 300.0,
        restart_on_version_mismatch: bool = True,
        exit_fn: Callable[[int], None] = os._exit,
    ):
        self.upstream = upstream
        self.version = version
        self.version_store = version_store
        self.atlas_store = atlas_store
        self.manifests = manifests
        self.origin = origin
        self.export_dir = pathlib.Path(export_dir)
        self.sync_timeout = sync_timeout
        self.restart_on_version_mismatch = restart_on_version_mismatch
        self.exit_fn = exit_fn
        self._syncing = False
        self._tasks: set[asyncio.Task] = set()
        self._version_change_callbacks: list[Callable[[], None]] = []
        self._export_callbacks: list[Callable[[], None]] = []

    @property
    def syncing(self) -> bool:
        return self._syncing

    def on_version_change(self, callback: Callable[[], None]):
        """Register a cache flush to run when a version mismatch is reported."""
        self._version_change_callbacks.append(callback)

    def on_export(self, callback: Callable[[], None]):
        """Register a callback to run after sprites were written to disk."""
        self._export_callbacks.append(callback)

    def _watchdog_fired(self):
        logger.error("Sprite sync timed out, forcing exit", timeout=self.sync_timeout)
        self.exit_fn(1)

    async def check_and_sync(self, force: bool = False) -> SyncResult | None:
        """Export the sprites that changed since the last sync.

        Args:
            force: Sync even if the version is unchanged; with no atlas
                changes this becomes a full export

        Returns:
            The outcome, or None if a sync is already running
        """
        if self._syncing:
            logger.warning("Sprite sync already in progress, ignoring duplicate request")
            return None

        self._syncing = True
        watchdog = asyncio.get_running_loop().call_later(self.sync_timeout, self._watchdog_fired)
        try:
            return await self._sync(force)
        except Exception as e:
            logger.exception("Sprite sync failed", error=str(e))
            return SyncResult(status=SyncStatus.ERROR, error=str(e))
        finally:
            watchdog.cancel()
            self._syncing = False

    async def _sync(self, force: bool) -> SyncResult:
        current = await self.version.get()
        stored = self.version_store.load()
        changed = stored != current
        logger.info("Version check", current=current, stored=stored, changed=changed, force=force)
        if not changed and not force:
            return SyncResult(status=SyncStatus.SKIPPED, reason="version_unchanged", version=current)

        base_url = assets.asset_base_url(self.origin, current)
        manifest = await self.manifests.load(base_url)
        bundle = assets.get_bundle_by_name(manifest, "default")
        if bundle is None:
            raise FetchError(base_url, "No 'default' bundle in manifest")

        files = assets.discover_atlas_files(bundle)
        logger.debug("Atlas files to fetch", files=files)
        current_atlases = await assets.fetch_atlases(self.upstream, base_url, files)

        comparison = atlas.compare_all_atlases(current_atlases, self.atlas_store.load())
        summary = comparison.summary
        logger.info(
            "Atlas comparison result",
            has_changes=comparison.has_changes,
            frames_to_export=len(comparison.frames_to_export),
            added=summary.total_added,
            modified=summary.total_modified,
            removed=summary.total_removed,
            atlases_changed=summary.atlases_changed,
            atlases_unchanged=summary.atlases_unchanged,
        )

        if not comparison.has_changes and not force:
            self.version_store.save(current)
            return SyncResult(
                status=SyncStatus.SKIPPED,
                reason="no_sprite_changes",
                version=current,
                version_updated=True,
            )

        full_export = force and not comparison.has_changes
        if full_export:
            logger.info("Starting full sprite export", export_dir=str(self.export_dir))
        else:
            logger.info("Starting selective sprite export", frames=len(comparison.frames_to_export))

        frames, _ = assets.build_sprite_catalog(current_atlases, base_url)
        started = time.monotonic()
        result = await export.export_sprites(
            self.upstream,
            frames,
            self.export_dir,
            only_keys=None if full_export else comparison.frames_to_export,
        )
        elapsed = time.monotonic() - started

        self.atlas_store.update(comparison.changes)
        self.version_store.save(current)
        for callback in self._export_callbacks:
            callback()
        logger.info("Sprite sync completed", exported=result.exported, elapsed=round(elapsed, 3))
        return SyncResult(
            status=SyncStatus.SUCCESS,
            version=current,
            version_updated=True,
            exported=result.exported,
            added=summary.total_added,
            modified=summary.total_modified,
            removed=summary.total_removed,
            elapsed=elapsed,
        )

    async def check_on_connect(self) -> SyncResult | None:
        force = needs_initial_export(self.export_dir)
        if force:
            logger.info("Sprites directory missing or empty, forcing full export", export_dir=str(self.export_dir))
        result = await self.check_and_sync(force=force)
        if result is not None and result.status == SyncStatus.SUCCESS:
            logger.info("Sprites synced on connect", exported=result.exported)
        return result

    async def check_after_disconnect(self, fallback_version: str | None = None) -> SyncResult | None:
        """Re-check the live version after a disconnect and sync if it moved."""
        self.version.invalidate()
        try:
            latest = await self.version.get()
        except FetchError as e:
            logger.warning("Version check after disconnect failed", error=str(e))
            return None
        previous = self.version_store.load() or fallback_version
        if not previous or latest == previous:
            logger.debug("Game version unchanged after disconnect", latest=latest, previous=previous)
            return None
        logger.warning("Game version changed after disconnect, syncing sprites", previous=previous, latest=latest)
        return await self.check_and_sync(force=False)

    async def handle_version_mismatch(self) -> SyncResult | None:
        self.version.invalidate()
        for callback in self._version_change_callbacks:
            callback()
        result = await self.check_and_sync(force=True)
        if (
            self.restart_on_version_mismatch
            and result is not None
            and result.status != SyncStatus.ERROR
        ):
            logger.info("Sprite sync completed, restarting in 1 second")
            asyncio.get_running_loop().call_later(1.0, self.exit_fn, 0)
        return result

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def handle_close(self, code: int, reason: str = "", fallback_version: str | None = None) -> asyncio.Task:
        """React to the game socket closing; returns the scheduled check."""
        if code in VERSION_MISMATCH_CODES:
            logger.warning("Version mismatch detected, triggering sprite sync", code=code, name=CloseCode(code).name, reason=reason)
            return self._spawn(self.handle_version_mismatch())
        return self._spawn(self.check_after_disconnect(fallback_version))

    def attach(self, connection):
        """Hook into a GameConnection's open and close events."""
        connection.on_open.append(lambda: self._spawn(self.check_on_connect()))
        connection.on_close.append(
            lambda code, reason: self.handle_close(code, reason, connection.version)
        )
        logger.info("Sprite sync listener registered")
