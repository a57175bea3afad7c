"""Shared-session synchronisation.

Usage:
    from layoutsync.sync import Workspace

    workspace = Workspace.open("app", build_adapter(), draft=draft)
    await workspace.connect()
    workspace.engine.update(active_frame="tablet")
"""

from layoutsync.sync.artifacts import (
    COMPILED_KIND,
    DRAFT_KIND,
    ArtifactKind,
    ArtifactStore,
    compiled_store,
    draft_store,
)
from layoutsync.sync.engine import ChangeSet, SharedSessionEngine, classify_changes
from layoutsync.sync.pipeline import PipelineCoordinator, PublishMetadata
from layoutsync.sync.presence import PresenceTracker
from layoutsync.sync.resolver import is_stale, should_apply
from layoutsync.sync.workspace import Workspace

__all__ = [
    "COMPILED_KIND",
    "DRAFT_KIND",
    "ArtifactKind",
    "ArtifactStore",
    "ChangeSet",
    "PipelineCoordinator",
    "PresenceTracker",
    "PublishMetadata",
    "SharedSessionEngine",
    "Workspace",
    "classify_changes",
    "compiled_store",
    "draft_store",
    "is_stale",
    "should_apply",
]
