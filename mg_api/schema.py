import enum

import pydantic


class Bundle(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(frozen=True)

    url: str
    index_url: str | None = None
    text: str = pydantic.Field(repr=False)
    fetched_at: float


class CacheStats(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(populate_by_name=True)

    has_bundle_cached: bool = pydantic.Field(alias="hasBundleCached")
    bundle_url: str | None = pydantic.Field(alias="bundleUrl")
    bundle_fetched_at: str | None = pydantic.Field(alias="bundleFetchedAt")
    bundle_age: float | None = pydantic.Field(alias="bundleAge")
    categories_cached: list[str] = pydantic.Field(alias="categoriesCached")


class VersionRecord(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(populate_by_name=True)

    version: str
    last_updated: str = pydantic.Field(alias="lastUpdated")


class AtlasMetadata(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(populate_by_name=True)

    source_json: str = pydantic.Field(alias="sourceJson")
    hash: str
    frame_count: int = pydantic.Field(alias="frameCount")
    frames: dict[str, str]
    last_updated: str = pydantic.Field(alias="lastUpdated")


class SpriteFrame(pydantic.BaseModel):
    key: str
    name: str
    category: str
    source_json: str
    image_src: str
    url: str
    frame: dict[str, int]
    rotated: bool = False
    trimmed: bool = False
    source_size: dict[str, int] | None = None
    sprite_source_size: dict[str, int] | None = None
    anchor: dict[str, float] | None = None


class SpriteAnimation(pydantic.BaseModel):
    key: str
    name: str
    category: str
    source_json: str
    frames: list[str]


class Cosmetic(pydantic.BaseModel):
    cat: str
    name: str
    base: str
    src: str
    url: str


class SfxSegment(pydantic.BaseModel):
    name: str
    start: float
    end: float
    duration: float


class SyncStatus(enum.StrEnum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    ERROR = "error"


class SyncResult(pydantic.BaseModel):
    status: SyncStatus
    reason: str | None = None
    version: str | None = None
    version_updated: bool = False
    exported: int = 0
    added: int = 0
    modified: int = 0
    removed: int = 0
    elapsed: float | None = None
    error: str | None = None
