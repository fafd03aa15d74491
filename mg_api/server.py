"""HTTP API over the extracted game data, sprites and live feeds."""

import asyncio
import contextlib
import datetime
import hashlib
import json
import pathlib
import time
from typing import Annotated, AsyncIterator

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response, StreamingResponse
from loguru import logger

from mg_api import assets, formats
from mg_api.errors import FetchError, MiningError
from mg_api.parsers import LiveData
from mg_api.services import Services

DATA_CACHE_CONTROL = "public, max-age=300, stale-while-revalidate=60"
SPRITE_CACHE_CONTROL = "public, max-age=86400"

SPRITE_CATEGORIES = frozenset(
    {
        "seeds",
        "plants",
        "tallPlants",
        "mutations",
        "pets",
        "decor",
        "items",
        "objects",
        "ui",
        "animations",
        "weather",
        "tiles",
        "winter",
    }
)
CATEGORY_ALIASES = {"decors": "decor"}
FORMATS = ("json", "csv", "tsv")


class ApiError(Exception):
    def __init__(self, status: int, code: str, message: str, details: dict | None = None):
        self.status = status
        self.code = code
        self.message = message
        self.details = details
        super().__init__(message)

    def to_json(self) -> dict:
        error = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"error": error}


def build_weak_etag(*parts) -> str | None:
    raw = "|".join(str(p) for p in parts if p not in (None, ""))
    if not raw:
        return None
    return f'W/"{hashlib.sha1(raw.encode()).hexdigest()}"'


def is_fresh(request: Request, etag: str | None) -> bool:
    """True if the client's If-None-Match already names this ETag."""
    header = request.headers.get("if-none-match")
    if not etag or not header:
        return False
    if header.strip() == "*":
        return True
    return etag in (tag.strip() for tag in header.split(","))


def sanitize_sprite_filename(name: str) -> str | None:
    filename = str(name or "").strip().replace("\0", "").replace("..", "")
    filename = filename.replace("/", "").replace("\\", "")
    if not filename.endswith(".png") or filename == ".png":
        return None
    return filename


def format_sse(event: str, data) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


async def sse_events(live: LiveData, topics: tuple[str, ...]) -> AsyncIterator[str]:
    """Current state of each topic, then every change until the client goes away."""
    queue: asyncio.Queue[tuple[str, object]] = asyncio.Queue()
    unsubscribe = []
    try:
        if "weather" in topics:
            unsubscribe.append(live.on_weather_change(lambda w: queue.put_nowait(("weather", {"weather": w}))))
            yield format_sse("weather", {"weather": live.weather})
        if "shops" in topics:
            unsubscribe.append(live.on_shops_change(lambda s: queue.put_nowait(("shops", s))))
            yield format_sse("shops", live.shops)
        while True:
            event, data = await queue.get()
            yield format_sse(event, data)
    finally:
        for fn in unsubscribe:
            fn()


def _stream(live: LiveData, *topics: str) -> StreamingResponse:
    return StreamingResponse(
        sse_events(live, topics),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


def _table_response(text: str, name: str, fmt: str) -> Response:
    media_type = "text/csv" if fmt == "csv" else "text/tab-separated-values"
    return Response(
        text,
        media_type=f"{media_type}; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{name}.{fmt}"'},
    )


def create_app(services: Services, connect: bool = False) -> FastAPI:
    """Build the API.

    Args:
        services: Service container shared by all requests
        connect: Open the game room socket for the lifetime of the app
    """

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        task = None
        if connect:
            connection = services.create_connection()
            task = asyncio.create_task(connection.run())
        yield
        if task is not None:
            await services.connection.stop()
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    app = FastAPI(title="MG API", lifespan=lifespan)
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[services.settings.server.cors_origin],
        allow_methods=["GET"],
        allow_headers=["*"],
        expose_headers=["ETag"],
    )

    # (category, bundle_url, sprite_version) -> transformed data
    transformed: dict[tuple, dict] = {}

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        return JSONResponse(exc.to_json(), status_code=exc.status)

    @app.exception_handler(MiningError)
    async def mining_error_handler(request: Request, exc: MiningError):
        logger.error("Extraction failed", path=request.url.path, error=str(exc), kind=type(exc).__name__)
        error = ApiError(500, "EXTRACTION_FAILED", "Failed to extract game data", {"originalMessage": str(exc)})
        return JSONResponse(error.to_json(), status_code=error.status)

    @app.exception_handler(FetchError)
    async def fetch_error_handler(request: Request, exc: FetchError):
        logger.error("Upstream fetch failed", path=request.url.path, url=exc.url, error=str(exc))
        error = ApiError(502, "UPSTREAM_UNAVAILABLE", "Game server request failed", {"url": exc.url})
        return JSONResponse(error.to_json(), status_code=error.status)

    async def category_data(name: str) -> dict:
        raw = await services.game_data.get_category_cached(name)
        stats = services.game_data.get_cache_stats()
        sprite_version = services.version_store.load()
        key = (name, stats.bundle_url, sprite_version)
        if key not in transformed:
            if len(transformed) > 64:
                transformed.clear()
            transformed[key] = services.transformer().transform(name, raw)
        return transformed[key]

    async def asset_base_url() -> str:
        version = await services.version.get()
        return assets.asset_base_url(services.settings.game.origin, version)

    def respond(request: Request, key: str, data: dict, fmt: str, combined: bool = False) -> Response:
        if fmt not in FORMATS:
            raise ApiError(400, "BAD_REQUEST", f"Unsupported format '{fmt}'", {"allowed": list(FORMATS)})
        etag = build_weak_etag(
            "data",
            key,
            fmt,
            services.game_data.get_cache_stats().bundle_url,
            services.version_store.load(),
        )
        headers = {"Cache-Control": DATA_CACHE_CONTROL}
        if etag:
            headers["ETag"] = etag
        if is_fresh(request, etag):
            return Response(status_code=304, headers=headers)
        if fmt == "json":
            return JSONResponse(data, headers=headers)
        delimiter = "," if fmt == "csv" else "\t"
        text = formats.combined_to_table(data, delimiter) if combined else formats.to_table(data, delimiter)
        response = _table_response(text, key, fmt)
        response.headers.update(headers)
        return response

    @app.get("/")
    async def index():
        return {
            "name": "MG API",
            "endpoints": {
                "health": "/health",
                "data": "/data",
                "categories": [f"/data/{c}" for c in services.game_data.available_categories()],
                "sprites": "/data/sprites",
                "cosmetics": "/assets/cosmetics",
                "audios": "/assets/audios",
                "live": "/live",
                "stream": "/live/stream",
            },
        }

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "uptime": int(time.monotonic() - services.started_at),
            "cache": services.game_data.get_cache_stats().model_dump(by_alias=True),
            "spriteSync": {"syncing": services.sprite_sync.syncing, "version": services.version_store.load()},
            "connection": services.connection.status() if services.connection else None,
        }

    @app.get("/health/ready")
    async def ready():
        if services.game_data.get_cache_stats().has_bundle_cached:
            return {"ready": True}
        return JSONResponse({"ready": False, "reason": "Bundle not yet cached"}, status_code=503)

    @app.get("/health/live")
    async def alive():
        return {"alive": True}

    @app.get("/data")
    async def all_data(request: Request, format: str = "json"):
        data = {name: await category_data(name) for name in services.game_data.available_categories()}
        return respond(request, "all", data, format, combined=True)

    @app.get("/data/sprites")
    async def sprite_listing(
        cat: str = "",
        search: str = "",
        flat: Annotated[bool, Query()] = False,
        full: Annotated[bool, Query()] = False,
    ):
        await services.catalog.load(await asset_base_url())
        return services.catalog.listing(category=cat, search=search, flat=flat, full=full)

    @app.get("/data/{category}")
    async def one_category(request: Request, category: str, format: str = "json"):
        name = CATEGORY_ALIASES.get(category, category)
        if name not in services.game_data.available_categories():
            raise ApiError(
                404,
                "NOT_FOUND",
                f"Unknown category '{category}'",
                {"available": services.game_data.available_categories()},
            )
        return respond(request, name, await category_data(name), format)

    @app.get("/live")
    async def live_all():
        return services.live.snapshot()

    @app.get("/live/weather")
    async def live_weather():
        return {"weather": services.live.weather}

    @app.get("/live/shops")
    async def live_shops():
        return services.live.shops

    @app.get("/live/stream")
    async def live_stream():
        return _stream(services.live, "weather", "shops")

    @app.get("/live/weather/stream")
    async def weather_stream():
        return _stream(services.live, "weather")

    @app.get("/live/shops/stream")
    async def shops_stream():
        return _stream(services.live, "shops")

    @app.get("/assets/sprites")
    async def sprite_categories():
        base_url = services.settings.sprites.base_url.rstrip("/")
        return {
            "categories": sorted(SPRITE_CATEGORIES),
            "baseUrl": base_url,
            "usage": {
                "endpoint": "GET /assets/sprites/{category}/{name}.png",
                "example": f"{base_url}/assets/sprites/seeds/Carrot.png",
            },
        }

    @app.get("/assets/cosmetics")
    async def cosmetics(full: Annotated[bool, Query()] = False):
        await services.cosmetics.load(await asset_base_url())
        return services.cosmetics.listing(full=full)

    @app.get("/assets/audios")
    async def audios():
        await services.audio.load(await asset_base_url())
        return services.audio.listing()

    @app.get("/assets/sprites/{category}/{name}")
    async def sprite_file(category: str, name: str):
        if category not in SPRITE_CATEGORIES:
            raise ApiError(
                400,
                "BAD_REQUEST",
                f"Invalid category '{category}'",
                {"allowed": sorted(SPRITE_CATEGORIES)},
            )
        filename = sanitize_sprite_filename(name)
        if filename is None:
            raise ApiError(400, "BAD_REQUEST", "Invalid sprite filename")

        root = pathlib.Path(services.settings.sprites.export_dir).resolve()
        path = (root / "sprite" / category / filename).resolve()
        if not path.is_relative_to(root):
            logger.error("Path traversal attempt detected", path=str(path))
            raise ApiError(403, "FORBIDDEN", "Access denied")
        if not path.is_file():
            raise ApiError(404, "NOT_FOUND", f"Sprite not found: {category}/{filename}")
        return FileResponse(path, media_type="image/png", headers={"Cache-Control": SPRITE_CACHE_CONTROL})

    return app
