"""Document key scheme, namespaced by kind and id.

The same paths are used for the local key-value store, the broadcast
channel and the remote document store.
"""

from __future__ import annotations

from enum import StrEnum


class DocumentKind(StrEnum):
    GLOBAL_SESSION = "globalSession"
    DRAFT = "draft"
    COMPILED = "compiled"


def global_session_path(app_id: str) -> str:
    return f"/artifacts/{app_id}/public/data/globalSession"


def draft_path(app_id: str, draft_id: str) -> str:
    return f"/artifacts/{app_id}/public/data/drafts/{draft_id}"


def compiled_path(app_id: str, compiled_id: str) -> str:  # noqa: ARG001
    # Compiled documents live in a global namespace shared by all apps.
    return f"/compiled/{compiled_id}"


def document_path(
    app_id: str, kind: DocumentKind, document_id: str | None = None
) -> str:
    """Return the deterministic path for ``(app_id, kind, document_id)``.

    Raises:
        ValueError: If a draft or compiled path is requested without an id.
    """
    if kind is DocumentKind.GLOBAL_SESSION:
        return global_session_path(app_id)
    if not document_id:
        msg = f"{kind} documents require a document id"
        raise ValueError(msg)
    if kind is DocumentKind.DRAFT:
        return draft_path(app_id, document_id)
    return compiled_path(app_id, document_id)
