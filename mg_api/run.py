#!/usr/bin/env python3

import asyncio
import json
import pathlib
from typing import Annotated

import typer
import uvicorn
from loguru import logger

from mg_api import config, formats, logging, server, services, utils
from mg_api.errors import FetchError, MiningError
from mg_api.schema import SyncStatus

app = utils.AsyncTyper(add_completion=False)


def _setup(log_level: str | None) -> config.Settings:
    settings = config.load_settings()
    if log_level is not None:
        settings.log_level = log_level
    logging.setup_logging(level=settings.log_level, log_dir=settings.log_dir)
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    return settings


async def _warm_up(svc: services.Services):
    """Fetch the bundle once so the first request does not pay for it."""
    try:
        await svc.bundles.get_bundle()
        logger.info("Bundle prefetched", stats=svc.game_data.get_cache_stats().model_dump(by_alias=True))
    except (FetchError, MiningError) as e:
        logger.warning("Bundle prefetch failed", error=str(e))


@app.command()
async def serve(
    host: Annotated[str | None, typer.Option(help="Bind address (default MG_HOST)")] = None,
    port: Annotated[int | None, typer.Option(help="Bind port (default MG_PORT)")] = None,
    connect: Annotated[bool, typer.Option(help="Connect to a game room for live data")] = True,
    log_level: Annotated[str | None, typer.Option(help="Log level override")] = None,
) -> int:
    """Run the HTTP API."""
    settings = _setup(log_level)
    svc = services.build_services(settings)
    api = server.create_app(svc, connect=connect)

    uv_config = uvicorn.Config(
        api,
        host=host or settings.server.host,
        port=port or settings.server.port,
        log_level=settings.log_level.lower(),
    )
    logger.info("Starting server", host=uv_config.host, port=uv_config.port, connect=connect)
    warm_up = asyncio.create_task(_warm_up(svc))
    try:
        await uvicorn.Server(uv_config).serve()
    finally:
        warm_up.cancel()
        await svc.aclose()
    return 0


@app.command()
async def extract(
    category: Annotated[str, typer.Argument(help="Category name, or 'all'")],
    format: Annotated[str, typer.Option(help="json, csv or tsv")] = "json",
    output: Annotated[str | None, typer.Option(help="Output file (default stdout)")] = None,
    log_level: Annotated[str | None, typer.Option(help="Log level override")] = "WARNING",
) -> int:
    """Extract one category (or all of them) from the live bundle."""
    settings = _setup(log_level)
    svc = services.build_services(settings)
    if format not in server.FORMATS:
        logger.error("Unsupported format", format=format, allowed=server.FORMATS)
        return 1
    try:
        if category == "all":
            data = await svc.game_data.get_all()
        else:
            data = await svc.game_data.get_category_cached(category)
    except (FetchError, MiningError) as e:
        logger.error("Extraction failed", category=category, error=str(e))
        return 1
    finally:
        await svc.aclose()

    delimiter = "," if format == "csv" else "\t"
    if format == "json":
        text = json.dumps(data, indent=2, ensure_ascii=False)
    elif category == "all":
        text = formats.combined_to_table(data, delimiter)
    else:
        text = formats.to_table(data, delimiter)

    if output is None:
        typer.echo(text)
    else:
        pathlib.Path(output).write_text(text, encoding="utf-8")
        logger.info("Wrote extracted data", path=output, category=category, format=format)
    return 0


@app.command("sync-sprites")
async def sync_sprites(
    force: Annotated[bool, typer.Option(help="Export even if the version is unchanged")] = False,
    log_level: Annotated[str | None, typer.Option(help="Log level override")] = None,
) -> int:
    """Export sprites that changed since the last sync."""
    settings = _setup(log_level)
    svc = services.build_services(settings)
    try:
        result = await svc.sprite_sync.check_and_sync(force=force)
    finally:
        await svc.aclose()
    if result is None:
        return 1
    typer.echo(result.model_dump_json(indent=2))
    return 1 if result.status == SyncStatus.ERROR else 0


@app.command()
async def stats(
    log_level: Annotated[str | None, typer.Option(help="Log level override")] = "WARNING",
) -> int:
    """Print entry counts per category and the stored sprite version."""
    settings = _setup(log_level)
    svc = services.build_services(settings)
    counts = {}
    try:
        for name in svc.game_data.available_categories():
            try:
                counts[name] = len(await svc.game_data.get_category_cached(name))
            except MiningError as e:
                logger.warning("Category extraction failed", category=name, error=str(e))
                counts[name] = None
    except FetchError as e:
        logger.error("Bundle fetch failed", error=str(e))
        return 1
    finally:
        await svc.aclose()

    out = {
        "cache": svc.game_data.get_cache_stats().model_dump(by_alias=True),
        "categories": counts,
        "spriteVersion": svc.version_store.load(),
    }
    typer.echo(json.dumps(out, indent=2))
    return 0


if __name__ == "__main__":
    app()
