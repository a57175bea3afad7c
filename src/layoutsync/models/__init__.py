"""Data models for shared sessions and their replicated documents."""

from layoutsync.models.artifacts import (
    COMPILED_SCHEMA_VERSION,
    DRAFT_SCHEMA_VERSION,
    CompiledArtifact,
    CompiledIntegrity,
    CompiledLayout,
    CompiledRuntime,
    DraftArtifact,
    DraftNode,
    DraftNodeProps,
)
from layoutsync.models.base import WireModel, parse_wire
from layoutsync.models.session import (
    PIPELINE_ABORTED,
    SESSION_SCHEMA_VERSION,
    CompiledShadow,
    DraftLock,
    DrawerState,
    PipelineError,
    PipelineState,
    PipelineStatus,
    PresenceEntry,
    SessionSnapshot,
    SessionUpdate,
)

__all__ = [
    "COMPILED_SCHEMA_VERSION",
    "DRAFT_SCHEMA_VERSION",
    "PIPELINE_ABORTED",
    "SESSION_SCHEMA_VERSION",
    "CompiledArtifact",
    "CompiledIntegrity",
    "CompiledLayout",
    "CompiledRuntime",
    "CompiledShadow",
    "DraftArtifact",
    "DraftLock",
    "DraftNode",
    "DraftNodeProps",
    "DrawerState",
    "PipelineError",
    "PipelineState",
    "PipelineStatus",
    "PresenceEntry",
    "SessionSnapshot",
    "SessionUpdate",
    "WireModel",
    "parse_wire",
]
