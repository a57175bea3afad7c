"""Draft and compiled documents replicated alongside the session.

These carry their own timestamps (``updated_at`` / ``compiled_at``) which
are compared for staleness independently of the session revision.
"""

from __future__ import annotations

from typing import Any

from pydantic import AwareDatetime, Field, field_validator

from layoutsync.models.base import WireModel, check_schema_version
from layoutsync.models.session import FrameName

DRAFT_SCHEMA_VERSION = "draft.v1"
COMPATIBLE_DRAFT_SCHEMA_VERSIONS = frozenset({DRAFT_SCHEMA_VERSION})

COMPILED_SCHEMA_VERSION = "compiled.v1"
COMPATIBLE_COMPILED_SCHEMA_VERSIONS = frozenset({COMPILED_SCHEMA_VERSION})


class DraftNodeProps(WireModel):
    styler: dict[str, Any] | None = None
    bindings: dict[str, str] | None = None


class DraftNode(WireModel):
    props: DraftNodeProps | None = None


class DraftArtifact(WireModel):
    """Editable design draft keyed by ``(app_id, draft_id)``."""

    schema_version: str = DRAFT_SCHEMA_VERSION
    draft_id: str
    app_id: str
    updated_at: AwareDatetime
    elements: dict[str, DraftNode] = Field(default_factory=dict)
    ghost_map: list[dict[str, Any]] | None = None
    title: str | None = None
    summary: str | None = None
    metadata: dict[str, Any] | None = None

    @field_validator("schema_version")
    @classmethod
    def _compatible_version(cls, value: str) -> str:
        return check_schema_version(value, COMPATIBLE_DRAFT_SCHEMA_VERSIONS, "draft")


class CompiledLayout(WireModel):
    frames: dict[FrameName, dict[str, Any]] = Field(default_factory=dict)


class CompiledRuntime(WireModel):
    nodes: dict[str, dict[str, Any]] = Field(default_factory=dict)
    layout: CompiledLayout = CompiledLayout()
    data: dict[str, Any] | None = None
    ghost_map: list[dict[str, Any]] | None = None


class CompiledIntegrity(WireModel):
    source_hash: str
    compiler_version: str


class CompiledArtifact(WireModel):
    """Compiled output of a draft keyed by ``(app_id, compiled_id)``."""

    schema_version: str = COMPILED_SCHEMA_VERSION
    compiled_id: str
    draft_id: str
    app_id: str
    compiled_at: AwareDatetime
    css: str = ""
    runtime: CompiledRuntime = CompiledRuntime()
    integrity: CompiledIntegrity

    @field_validator("schema_version")
    @classmethod
    def _compatible_version(cls, value: str) -> str:
        return check_schema_version(
            value, COMPATIBLE_COMPILED_SCHEMA_VERSIONS, "compiled"
        )
