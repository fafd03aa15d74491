"""Resolving, downloading and caching the game's main JavaScript bundle."""

import asyncio
import datetime
import re
import time
from typing import Awaitable, Callable
from urllib.parse import urljoin

from loguru import logger

from mg_api.errors import FetchError
from mg_api.schema import Bundle
from mg_api.upstream import BUNDLE_TIMEOUT, Upstream

_INDEX_REF = re.compile(r'src="([^"]*/assets/index-[^"]+\.js)"')
_MAIN_REF = re.compile(r"""assets/main-[^"']+\.js""")
_INDEX_SUFFIX = re.compile(r"/assets/index-[^/]+\.js(\?.*)?$")


async def resolve_bundle_url(upstream: Upstream, page_url: str) -> tuple[str, str]:
    """Follow the page -> index-*.js -> main-*.js indirection.

    Args:
        upstream: HTTP access
        page_url: Game page whose HTML references the index script

    Returns:
        Tuple of (index_url, main_url), both absolute

    Raises:
        FetchError: If a hop fails or a reference cannot be found
    """
    html = await upstream.fetch_text(page_url)
    m = _INDEX_REF.search(html)
    if m is None:
        raise FetchError(page_url, "index-*.js not referenced by page")
    index_url = urljoin(page_url, m.group(1))

    index_js = await upstream.fetch_text(index_url)
    m = _MAIN_REF.search(index_js)
    if m is None:
        raise FetchError(index_url, "main-*.js not referenced by index script")

    root = _INDEX_SUFFIX.sub("/", index_url)
    main_url = urljoin(root, m.group(0))
    logger.debug("Bundle URLs resolved", index_url=index_url, main_url=main_url)
    return index_url, main_url


async def fetch_main_bundle(
    upstream: Upstream, page_url: str, clock: Callable[[], float] = time.monotonic
) -> Bundle:
    index_url, main_url = await resolve_bundle_url(upstream, page_url)
    text = await upstream.fetch_text(main_url, timeout=BUNDLE_TIMEOUT)
    logger.info("Main bundle fetched", url=main_url, size=len(text))
    return Bundle(url=main_url, index_url=index_url, text=text, fetched_at=clock())


InvalidationCallback = Callable[[str | None, str], None]


class BundleCache:
    """TTL cache around a bundle fetcher.

    Concurrent callers during a refresh share one in-flight fetch. When a
    refresh resolves to a different URL than the cached bundle, every
    registered invalidation callback runs before the new bundle is published.

    Args:
        fetch: Coroutine function producing a fresh Bundle
        ttl: Seconds a bundle stays fresh
        clock: Monotonic clock, in seconds
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[Bundle]],
        ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch = fetch
        self.ttl = ttl
        self.clock = clock
        self._bundle: Bundle | None = None
        self._fetched_at = 0.0
        self._fetched_wall: datetime.datetime | None = None
        self._pending: asyncio.Task | None = None
        self._callbacks: list[InvalidationCallback] = []

    def on_change(self, callback: InvalidationCallback):
        self._callbacks.append(callback)

    @property
    def bundle(self) -> Bundle | None:
        return self._bundle

    @property
    def fetching(self) -> bool:
        return self._pending is not None

    def age(self) -> float | None:
        if self._bundle is None:
            return None
        return self.clock() - self._fetched_at

    def fetched_at_iso(self) -> str | None:
        return self._fetched_wall.isoformat() if self._fetched_wall else None

    def is_fresh(self) -> bool:
        return self._bundle is not None and self.age() < self.ttl

    async def get_bundle(self) -> Bundle:
        if self.is_fresh():
            return self._bundle
        if self._pending is None:
            self._pending = asyncio.ensure_future(self._refresh())
        # A cancelled caller must not cancel the fetch shared with others
        return await asyncio.shield(self._pending)

    async def _refresh(self) -> Bundle:
        try:
            bundle = await self._fetch()
            previous = self._bundle.url if self._bundle else None
            if previous is not None and previous != bundle.url:
                logger.info("Bundle version changed, clearing caches", old_url=previous, new_url=bundle.url)
                for callback in self._callbacks:
                    callback(previous, bundle.url)
            self._bundle = bundle
            self._fetched_at = self.clock()
            self._fetched_wall = datetime.datetime.now(datetime.timezone.utc)
            return bundle
        finally:
            self._pending = None

    def invalidate(self):
        self._bundle = None
        self._fetched_at = 0.0
        self._fetched_wall = None
