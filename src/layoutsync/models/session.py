"""Session snapshot records shared between participants.

A ``SessionUpdate`` is what travels over the wire after every accepted
local change. A ``SessionSnapshot`` is the update plus the presence map a
participant maintains for itself.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import AwareDatetime, Field, field_validator

from layoutsync.models.base import WireModel, check_schema_version

SESSION_SCHEMA_VERSION = "global-session.v1"
COMPATIBLE_SESSION_SCHEMA_VERSIONS = frozenset({SESSION_SCHEMA_VERSION})

FrameName = Literal["desktop", "tablet", "mobile"]
ActiveSurface = Literal["canvas", "frames", "metadata", "telemetry", "unknown"]
DrawerName = Literal["top", "left", "right", "bottom"]

PIPELINE_ABORTED = "PIPELINE_ABORTED"


class PipelineStatus(StrEnum):
    """States of the compile/publish pipeline."""

    IDLE = "idle"
    COMPILING = "compiling"
    SUCCESS = "success"
    ERROR = "error"


class DrawerState(WireModel):
    """Open/closed state and size of one layout drawer."""

    open: bool
    size: float


def default_drawers() -> dict[DrawerName, DrawerState]:
    """Return the default drawer layout."""
    return {
        "top": DrawerState(open=True, size=56),
        "left": DrawerState(open=True, size=240),
        "right": DrawerState(open=True, size=320),
        "bottom": DrawerState(open=False, size=48),
    }


class PipelineError(WireModel):
    """Structured pipeline failure delivered through change notifications."""

    code: str
    message: str


class PipelineState(WireModel):
    """Current compile/publish pipeline state."""

    status: PipelineStatus = PipelineStatus.IDLE
    triggered_at: AwareDatetime | None = None
    aborted_at: AwareDatetime | None = None
    published_at: AwareDatetime | None = None
    tag: str | None = None
    notes: str | None = None
    draft_id: str | None = None
    compiled_id: str | None = None
    error: PipelineError | None = None


class DraftLock(WireModel):
    """Advisory lock gating draft edits while a compile is in flight."""

    locked: bool = False
    draft_id: str | None = None
    locked_at: AwareDatetime | None = None
    released_at: AwareDatetime | None = None


class CompiledShadow(WireModel):
    """Pointer to the most recently published compiled document."""

    draft_id: str
    compiled_id: str
    published_at: AwareDatetime | None = None


class PresenceEntry(WireModel):
    """Ephemeral visibility record for one participant."""

    session_id: str
    active_frame: FrameName
    selection_path: str | None = None
    active_surface: ActiveSurface
    last_seen_at: AwareDatetime
    is_local: bool = False


class SessionUpdate(WireModel):
    """Full shared state as broadcast after every accepted local change.

    Attributes:
        session_id: Participant that originated this version.
        revision: Lineage counter, strictly increasing on local updates.
        updated_at: Wall-clock time the version was produced.
    """

    schema_version: str = SESSION_SCHEMA_VERSION
    session_id: str
    revision: int = Field(ge=0)
    updated_at: AwareDatetime
    active_frame: FrameName = "desktop"
    selection_path: str | None = None
    active_surface: ActiveSurface = "canvas"
    scale: float = Field(default=1.0, gt=0)
    drawers: dict[DrawerName, DrawerState] = Field(default_factory=default_drawers)
    draft_id: str | None = None
    compiled_id: str | None = None
    compiled_shadow: CompiledShadow | None = None
    pipeline: PipelineState = PipelineState()
    draft_lock: DraftLock = DraftLock()

    @field_validator("schema_version")
    @classmethod
    def _compatible_version(cls, value: str) -> str:
        return check_schema_version(
            value, COMPATIBLE_SESSION_SCHEMA_VERSIONS, "global-session"
        )

    def as_update(self) -> SessionUpdate:
        """Return the broadcastable part of this record."""
        return SessionUpdate(
            **{name: getattr(self, name) for name in SessionUpdate.model_fields}
        )


class SessionSnapshot(SessionUpdate):
    """A participant's held state: the shared fields plus presence."""

    presence: dict[str, PresenceEntry] = Field(default_factory=dict)


# Fields an update carries from its sender into the receiver's snapshot.
SHARED_FIELDS: tuple[str, ...] = (
    "active_frame",
    "selection_path",
    "active_surface",
    "scale",
    "drawers",
    "draft_id",
    "compiled_id",
    "compiled_shadow",
    "pipeline",
    "draft_lock",
)

LINEAGE_FIELDS: tuple[str, ...] = ("session_id", "revision", "updated_at")
