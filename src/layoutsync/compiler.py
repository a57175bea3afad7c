"""In-process draft compiler and the compile worker built on it.

``compile_draft`` turns a draft into a compiled layout: every draft element
becomes a box node stacked in a single column on every device frame. When
a previous compiled artifact is given, its runtime is kept and only the
draft's styling is merged in.
"""

from __future__ import annotations

import copy
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from layoutsync.models.artifacts import (
    CompiledArtifact,
    CompiledIntegrity,
    CompiledLayout,
    CompiledRuntime,
    DraftArtifact,
)
from layoutsync.models.base import parse_wire
from layoutsync.models.session import PipelineStatus
from layoutsync.persistence.paths import draft_path
from layoutsync.sync.pipeline import new_compiled_id

if TYPE_CHECKING:
    from layoutsync.persistence.protocol import CompileRequest
    from layoutsync.sync.workspace import Workspace

logger = logging.getLogger(__name__)

COMPILER_VERSION = "local-compiler"
DRAFT_NOT_FOUND = "DRAFT_NOT_FOUND"
COMPILE_FAILED = "COMPILE_FAILED"

_FRAMES = ("desktop", "tablet", "mobile")


def _single_column_frame(node_ids: list[str]) -> dict[str, Any]:
    return {
        "grid": {
            "columns": "minmax(0, 1fr)",
            "rows": f"repeat({max(1, len(node_ids))}, auto)",
            "areas": [f'"{node_id}"' for node_id in node_ids] or ['"root"'],
        },
        "order": list(node_ids),
        "placements": {node_id: {} for node_id in node_ids},
    }


def _runtime_from_draft(draft: DraftArtifact) -> CompiledRuntime:
    node_ids = list(draft.elements)
    nodes = {
        node_id: {
            "type": "box",
            "props": {
                "styler": dict(
                    (element.props.styler if element.props else None) or {}
                )
            },
        }
        for node_id, element in draft.elements.items()
    }
    frame = _single_column_frame(node_ids)
    return CompiledRuntime(
        nodes=nodes,
        layout=CompiledLayout(frames={name: frame for name in _FRAMES}),
        ghost_map=draft.ghost_map,
    )


def _apply_styling(draft: DraftArtifact, nodes: dict[str, dict[str, Any]]) -> None:
    for node_id, element in draft.elements.items():
        node = nodes.get(node_id)
        if node is None:
            continue
        props = dict(node.get("props") or {})
        styler = element.props.styler if element.props else None
        if styler:
            props["styler"] = {**(props.get("styler") or {}), **styler}
        nodes[node_id] = {**node, "props": props}


def compile_draft(
    draft: DraftArtifact,
    compiled_id: str | None = None,
    base: CompiledArtifact | None = None,
    *,
    now: datetime | None = None,
) -> CompiledArtifact:
    """Compile *draft* into a new compiled artifact.

    Args:
        draft: Source draft.
        compiled_id: Id for the result; a fresh one is allocated if omitted.
        base: Previously compiled artifact whose runtime and CSS are reused.
        now: Compilation timestamp, defaults to the current UTC time.

    Returns:
        The compiled artifact. The integrity hash identifies the exact
        draft version it was built from.
    """
    runtime = base.runtime if base is not None else _runtime_from_draft(draft)
    nodes = copy.deepcopy(runtime.nodes)
    _apply_styling(draft, nodes)

    return CompiledArtifact(
        compiled_id=compiled_id or new_compiled_id(draft.draft_id),
        draft_id=draft.draft_id,
        app_id=draft.app_id,
        compiled_at=now or datetime.now(UTC),
        css=base.css if base is not None else "",
        runtime=runtime.model_copy(
            update={
                "nodes": nodes,
                "ghost_map": draft.ghost_map
                if draft.ghost_map is not None
                else runtime.ghost_map,
            }
        ),
        integrity=CompiledIntegrity(
            source_hash=f"{draft.draft_id}:{draft.updated_at.isoformat()}",
            compiler_version=COMPILER_VERSION,
        ),
    )


class LocalCompileWorker:
    """Compile-worker hook that compiles in-process and publishes the result.

    The worker only publishes while the pipeline is still compiling the
    requested id, so an abort or a newer trigger discards its output.
    """

    def __init__(self, workspace: Workspace) -> None:
        self.workspace = workspace

    def _still_wanted(self, request: CompileRequest) -> bool:
        pipeline = self.workspace.engine.pipeline.state
        return (
            pipeline.status is PipelineStatus.COMPILING
            and pipeline.compiled_id == request.compiled_id
        )

    def _load_draft(self, request: CompileRequest) -> DraftArtifact | None:
        held = self.workspace.drafts.read()
        if held is not None and held.draft_id == request.draft_id:
            return held
        raw = self.workspace.adapter.read_local(
            draft_path(request.app_id, request.draft_id)
        )
        return parse_wire(DraftArtifact, raw)

    async def __call__(self, request: CompileRequest) -> None:
        pipeline = self.workspace.engine.pipeline
        if not self._still_wanted(request):
            logger.info("COMPILE_DISCARDED: compiled=%s", request.compiled_id)
            return

        draft = self._load_draft(request)
        if draft is None:
            pipeline.report_failure(
                DRAFT_NOT_FOUND, f"Draft {request.draft_id} is not available"
            )
            return

        try:
            artifact = compile_draft(
                draft,
                request.compiled_id,
                self.workspace.compiled.read(),
                now=self.workspace.engine.now(),
            )
        except (ValidationError, KeyError, TypeError, ValueError) as exc:
            logger.exception("Compile of draft %s failed", request.draft_id)
            pipeline.report_failure(COMPILE_FAILED, str(exc) or type(exc).__name__)
            return

        if not self._still_wanted(request):
            logger.info("COMPILE_DISCARDED: compiled=%s", request.compiled_id)
            return
        await pipeline.publish(artifact)
        logger.info(
            "COMPILE_FINISHED: draft=%s compiled=%s",
            draft.draft_id,
            artifact.compiled_id,
        )
