"""Builders shared by unit and integration tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from layoutsync.models.artifacts import (
    CompiledArtifact,
    CompiledIntegrity,
    DraftArtifact,
    DraftNode,
    DraftNodeProps,
)

EPOCH = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = EPOCH) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 1.0) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current


def make_draft(
    draft_id: str = "d1",
    *,
    app_id: str = "app",
    updated_at: datetime = EPOCH,
    elements: dict[str, dict[str, Any]] | None = None,
    title: str | None = None,
) -> DraftArtifact:
    """Build a draft from ``{node_id: styler}`` elements."""
    styled = elements if elements is not None else {"hero": {"color": "red"}}
    return DraftArtifact(
        draft_id=draft_id,
        app_id=app_id,
        updated_at=updated_at,
        elements={
            node_id: DraftNode(props=DraftNodeProps(styler=styler))
            for node_id, styler in styled.items()
        },
        title=title,
    )


def make_compiled(
    compiled_id: str = "c1",
    *,
    draft_id: str = "d1",
    app_id: str = "app",
    compiled_at: datetime = EPOCH,
    css: str = "",
) -> CompiledArtifact:
    return CompiledArtifact(
        compiled_id=compiled_id,
        draft_id=draft_id,
        app_id=app_id,
        compiled_at=compiled_at,
        css=css,
        integrity=CompiledIntegrity(
            source_hash=f"{draft_id}:{compiled_at.isoformat()}",
            compiler_version="test",
        ),
    )
