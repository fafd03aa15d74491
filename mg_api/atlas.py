"""Atlas snapshots and frame-level diffs between game versions.

A snapshot keeps one short hash per frame, so a later version of the same
atlas can be compared frame by frame and only the changed frames re-exported.
"""

import dataclasses
import datetime
import hashlib
import json
import pathlib

import pydantic
from loguru import logger

from mg_api.schema import AtlasMetadata

FRAME_HASH_FIELDS = ("frame", "rotated", "trimmed", "sourceSize", "spriteSourceSize", "anchor")


def _canonical_json(value) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def hash_frame(frame: dict | None) -> str:
    """Hash the geometry of one frame: 12 hex chars of an MD5.

    Only the fields that affect the exported image take part, so the hash
    changes iff one of them changes.
    """
    frame = frame or {}
    data = {
        "frame": frame.get("frame") or None,
        "rotated": bool(frame.get("rotated")),
        "trimmed": bool(frame.get("trimmed")),
        "sourceSize": frame.get("sourceSize") or None,
        "spriteSourceSize": frame.get("spriteSourceSize") or None,
        "anchor": frame.get("anchor") or None,
    }
    return hashlib.md5(_canonical_json(data).encode()).hexdigest()[:12]


def hash_atlas(atlas: dict) -> str:
    return hashlib.sha256(_canonical_json(atlas).encode()).hexdigest()


def build_atlas_metadata(atlas: dict, source_json: str) -> AtlasMetadata:
    frames = (atlas or {}).get("frames") or {}
    return AtlasMetadata(
        source_json=source_json,
        hash=hash_atlas(atlas),
        frame_count=len(frames),
        frames={key: hash_frame(value) for key, value in frames.items()},
        last_updated=datetime.datetime.now(datetime.timezone.utc).isoformat(),
    )


@dataclasses.dataclass
class AtlasDiff:
    changed: bool
    is_new: bool
    hash_changed: bool
    added: list[str] = dataclasses.field(default_factory=list)
    modified: list[str] = dataclasses.field(default_factory=list)
    removed: list[str] = dataclasses.field(default_factory=list)


def compare_atlas(new: AtlasMetadata, stored: AtlasMetadata | None) -> AtlasDiff:
    """Diff a fresh snapshot against the stored one.

    Args:
        new: Snapshot of the atlas just fetched
        stored: Previous snapshot, or None if the atlas was never seen

    Returns:
        The diff. With no stored snapshot every frame counts as added; with an
        identical whole-atlas hash nothing changed.
    """
    if stored is None:
        return AtlasDiff(changed=True, is_new=True, hash_changed=True, added=list(new.frames))
    if new.hash == stored.hash:
        return AtlasDiff(changed=False, is_new=False, hash_changed=False)

    old_frames = stored.frames
    added = [k for k in new.frames if k not in old_frames]
    modified = [k for k, h in new.frames.items() if k in old_frames and old_frames[k] != h]
    removed = [k for k in old_frames if k not in new.frames]
    return AtlasDiff(
        changed=bool(added or modified or removed),
        is_new=False,
        hash_changed=True,
        added=added,
        modified=modified,
        removed=removed,
    )


@dataclasses.dataclass
class AtlasChange:
    metadata: AtlasMetadata
    diff: AtlasDiff


@dataclasses.dataclass
class ComparisonSummary:
    total_added: int = 0
    total_modified: int = 0
    total_removed: int = 0
    atlases_changed: int = 0
    atlases_unchanged: int = 0


@dataclasses.dataclass
class AtlasComparison:
    has_changes: bool = False
    changes: dict[str, AtlasChange] = dataclasses.field(default_factory=dict)
    frames_to_export: set[str] = dataclasses.field(default_factory=set)
    removed_frames: set[str] = dataclasses.field(default_factory=set)
    summary: ComparisonSummary = dataclasses.field(default_factory=ComparisonSummary)


def compare_all_atlases(
    atlases: dict[str, dict], stored: dict[str, AtlasMetadata]
) -> AtlasComparison:
    """Diff every fetched atlas and aggregate the frames that need exporting.

    Args:
        atlases: Atlas source path -> raw atlas JSON
        stored: Atlas source path -> stored snapshot

    Returns:
        Aggregated comparison; frames_to_export is the union of added and
        modified frame keys across changed atlases
    """
    result = AtlasComparison()
    for source_json, atlas in atlases.items():
        metadata = build_atlas_metadata(atlas, source_json)
        diff = compare_atlas(metadata, stored.get(source_json))
        result.changes[source_json] = AtlasChange(metadata, diff)

        if not diff.changed:
            result.summary.atlases_unchanged += 1
            continue
        result.has_changes = True
        result.summary.atlases_changed += 1
        result.summary.total_added += len(diff.added)
        result.summary.total_modified += len(diff.modified)
        result.summary.total_removed += len(diff.removed)
        result.frames_to_export.update(diff.added)
        result.frames_to_export.update(diff.modified)
        result.removed_frames.update(diff.removed)
    return result


class AtlasStore:
    """Stored atlas snapshots, kept in atlases.json keyed by atlas source path."""

    def __init__(self, path: str | pathlib.Path):
        self.path = pathlib.Path(path)

    def load(self) -> dict[str, AtlasMetadata]:
        if not self.path.exists():
            logger.debug("Atlases file not found (first run)", path=str(self.path))
            return {}
        try:
            raw = json.loads(self.path.read_text())
            return {key: AtlasMetadata.model_validate(value) for key, value in raw.items()}
        except (OSError, ValueError, AttributeError, pydantic.ValidationError) as e:
            logger.warning("Failed to load stored atlases", path=str(self.path), error=str(e))
            return {}

    def save(self, atlases: dict[str, AtlasMetadata]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {key: meta.model_dump(by_alias=True) for key, meta in atlases.items()}
        self.path.write_text(json.dumps(data, indent=2))
        logger.info("Atlases metadata saved", atlas_count=len(data), path=str(self.path))

    def update(self, changes: dict[str, AtlasChange]) -> dict[str, AtlasMetadata]:
        """Merge the snapshots of processed atlases into the stored set."""
        stored = self.load()
        for source_json, change in changes.items():
            stored[source_json] = change.metadata
        self.save(stored)
        return stored
