# src/cache/fingerprint.py — v2
"""Stage fingerprinting: deterministic cache keys over stage inputs.

A fingerprint covers the stage kind, a hash of the stage definition, the
content hash of every declared input file, the upstream stage's cache key when
the stage consumes one, and stage-specific extras (push tags). It never covers
wall-clock time or run identity, so identical inputs give identical keys
across runs and branches.

Keys take the form ``<service_id>:<stage_kind>:<sha256>``.
"""

from __future__ import annotations

import glob
import hashlib
import json
from pathlib import Path
from typing import Any

from shipline.core.models import Stage

MISSING_INPUT = "<missing>"
_CHUNK_SIZE = 1 << 16


def hash_file(path: Path) -> str:
    """SHA-256 over raw file bytes."""
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def canonical_json(payload: Any) -> str:
    """Key-sorted, whitespace-free JSON used for every hashed document."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def stage_definition_hash(stage: Stage) -> str:
    """Hash of everything in the stage definition that affects its output."""
    definition = {
        "name": stage.name,
        "kind": stage.kind,
        "command": stage.command,
        "inputs": sorted(stage.inputs),
        "outputs": sorted(stage.outputs),
        "env": stage.env,
        "consumes": stage.consumes,
    }
    return hash_bytes(canonical_json(definition).encode("utf-8"))


def resolve_inputs(source_dir: Path, patterns: list[str]) -> list[tuple[str, Path | None]]:
    """Expand declared input patterns into (relative path, absolute path) pairs.

    Patterns without glob characters that match nothing are kept with a None
    path so a missing file still contributes to the fingerprint.
    """
    root = Path(source_dir)
    resolved: dict[str, Path | None] = {}
    for pattern in patterns:
        if glob.has_magic(pattern):
            for match in sorted(root.glob(pattern)):
                if match.is_file():
                    resolved[match.relative_to(root).as_posix()] = match
            continue
        candidate = root / pattern
        if candidate.is_dir():
            for match in sorted(candidate.rglob("*")):
                if match.is_file():
                    resolved[match.relative_to(root).as_posix()] = match
        elif candidate.is_file():
            resolved[Path(pattern).as_posix()] = candidate
        else:
            resolved[Path(pattern).as_posix()] = None
    return sorted(resolved.items())


def input_hashes(source_dir: Path, patterns: list[str]) -> list[tuple[str, str]]:
    """Content hash of every declared input, sorted by relative path."""
    return [
        (rel, hash_file(path) if path is not None else MISSING_INPUT)
        for rel, path in resolve_inputs(source_dir, patterns)
    ]


def compute_fingerprint(
    service_id: str,
    stage: Stage,
    source_dir: Path,
    upstream_key: str | None = None,
    extra: dict[str, Any] | None = None,
) -> str:
    """Compute the cache key for one stage of one service.

    Args:
        service_id: Owning service; namespaces the key.
        stage: Stage definition.
        source_dir: Service source directory that declared inputs are relative to.
        upstream_key: Cache key of the stage this one consumes, if any.
        extra: Stage-specific inputs that are not files (e.g. push tags).

    Returns:
        Cache key ``<service_id>:<kind>:<sha256>``.
    """
    document = {
        "kind": stage.kind,
        "definition": stage_definition_hash(stage),
        "inputs": input_hashes(source_dir, stage.inputs),
        "upstream": upstream_key,
        "extra": extra or {},
    }
    digest = hash_bytes(canonical_json(document).encode("utf-8"))
    return f"{service_id}:{stage.kind}:{digest}"
