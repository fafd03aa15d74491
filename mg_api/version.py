"""Game version lookup and its on-disk record."""

import asyncio
import datetime
import json
import pathlib
import time
from typing import Callable

import pydantic
from loguru import logger

from mg_api import utils
from mg_api.errors import FetchError
from mg_api.schema import VersionRecord
from mg_api.upstream import TEXT_TIMEOUT, Upstream

VERSION_PATH = "/platform/v1/version"


class GameVersion:
    """Current game version as reported by the platform API, cached briefly.

    Args:
        upstream: HTTP access
        origin: Game origin, e.g. https://magicgarden.gg
        ttl: Seconds a fetched version is reused
        clock: Monotonic clock, in seconds
    """

    def __init__(
        self,
        upstream: Upstream,
        origin: str,
        ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.upstream = upstream
        self.origin = origin
        self.ttl = ttl
        self.clock = clock
        self._version: str | None = None
        self._fetched_at = 0.0
        self._pending: asyncio.Task | None = None

    async def get(self) -> str:
        if self._version and self.clock() - self._fetched_at < self.ttl:
            return self._version
        if self._pending is None:
            self._pending = asyncio.ensure_future(self._fetch())
        return await asyncio.shield(self._pending)

    async def _fetch(self) -> str:
        url = utils.join_url(self.origin, VERSION_PATH)
        try:
            logger.debug("Fetching game version", url=url)
            data = await self.upstream.fetch_json(url, timeout=TEXT_TIMEOUT)
            version = data.get("version") if isinstance(data, dict) else None
            if not isinstance(version, str) or not version.strip():
                raise FetchError(url, "Version not found in response")
            version = version.strip()
            logger.info("Game version fetched", version=version)
            self._version = version
            self._fetched_at = self.clock()
            return version
        finally:
            self._pending = None

    def invalidate(self):
        self._version = None
        self._fetched_at = 0.0


class VersionStore:
    """The last game version whose sprites were exported, kept in version.json."""

    def __init__(self, path: str | pathlib.Path):
        self.path = pathlib.Path(path)

    def load(self) -> str | None:
        """Return the stored version, or None on first run or unreadable file."""
        if not self.path.exists():
            logger.debug("Version file not found (first run)", path=str(self.path))
            return None
        try:
            record = VersionRecord.model_validate(json.loads(self.path.read_text()))
        except (OSError, ValueError, pydantic.ValidationError) as e:
            logger.warning("Failed to load stored version", path=str(self.path), error=str(e))
            return None
        return record.version or None

    def save(self, version: str):
        record = VersionRecord(
            version=str(version).strip(),
            last_updated=datetime.datetime.now(datetime.timezone.utc).isoformat(),
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(record.model_dump(by_alias=True), indent=2))
        logger.info("Version saved", version=record.version, path=str(self.path))

    def has_changed(self, current: str) -> bool:
        return self.load() != current
