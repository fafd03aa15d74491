import os
import pathlib

import pydantic


class ServerSettings(pydantic.BaseModel):
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origin: str = "*"


class GameSettings(pydantic.BaseModel):
    origin: str = "https://magicgarden.gg"
    page_url: str = "https://magicgarden.gg/r/test"


class CacheSettings(pydantic.BaseModel):
    bundle_ttl: float = 300.0
    version_ttl: float = 60.0


class WebSocketSettings(pydantic.BaseModel):
    auto_reconnect: bool = True
    max_retries: int = 999
    min_delay: float = 0.5
    max_delay: float = 8.0
    room_id: str | None = None


class SpriteSettings(pydantic.BaseModel):
    export_dir: pathlib.Path = pathlib.Path("./sprites_dump")
    base_url: str = "http://localhost:3000"
    sync_timeout: float = 300.0
    restart_on_version_mismatch: bool = True


class Settings(pydantic.BaseModel):
    server: ServerSettings = ServerSettings()
    game: GameSettings = GameSettings()
    cache: CacheSettings = CacheSettings()
    websocket: WebSocketSettings = WebSocketSettings()
    sprites: SpriteSettings = SpriteSettings()
    data_dir: pathlib.Path = pathlib.Path("./data")
    log_level: str = "INFO"
    log_dir: str = "logs"

    @property
    def version_file(self) -> pathlib.Path:
        return self.data_dir / "version.json"

    @property
    def atlases_file(self) -> pathlib.Path:
        return self.data_dir / "atlases.json"


# Environment variable -> (section, field)
_ENV = {
    "MG_HOST": ("server", "host"),
    "MG_PORT": ("server", "port"),
    "MG_CORS_ORIGIN": ("server", "cors_origin"),
    "MG_GAME_ORIGIN": ("game", "origin"),
    "MG_GAME_PAGE_URL": ("game", "page_url"),
    "MG_BUNDLE_TTL": ("cache", "bundle_ttl"),
    "MG_VERSION_TTL": ("cache", "version_ttl"),
    "MG_WS_AUTO_RECONNECT": ("websocket", "auto_reconnect"),
    "MG_WS_MAX_RETRIES": ("websocket", "max_retries"),
    "MG_WS_MIN_DELAY": ("websocket", "min_delay"),
    "MG_WS_MAX_DELAY": ("websocket", "max_delay"),
    "MG_WS_ROOM_ID": ("websocket", "room_id"),
    "MG_SPRITES_EXPORT_DIR": ("sprites", "export_dir"),
    "MG_SPRITES_BASE_URL": ("sprites", "base_url"),
    "MG_SYNC_TIMEOUT": ("sprites", "sync_timeout"),
    "MG_RESTART_ON_VERSION_MISMATCH": ("sprites", "restart_on_version_mismatch"),
    "MG_DATA_DIR": (None, "data_dir"),
    "MG_LOG_LEVEL": (None, "log_level"),
    "MG_LOG_DIR": (None, "log_dir"),
}


def load_settings(environ: dict[str, str] | None = None) -> Settings:
    """Build settings from environment variables, falling back to defaults.

    Values are validated (and coerced) by pydantic, so "false" and "0" both
    disable boolean flags and numeric strings become numbers.

    Args:
        environ: Mapping to read instead of os.environ

    Returns:
        Validated settings
    """
    environ = os.environ if environ is None else environ
    raw: dict = {}
    for var, (section, field) in _ENV.items():
        value = environ.get(var)
        if value is None or value == "":
            continue
        if section is None:
            raw[field] = value
        else:
            raw.setdefault(section, {})[field] = value
    return Settings.model_validate(raw)
