"""Shared base for wire records.

Every persisted or broadcast record is a frozen pydantic model with
camelCase aliases. Accepted transitions produce new instances via
``model_copy(update=...)``; nothing is mutated in place.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

W = TypeVar("W", bound="WireModel")


class WireModel(BaseModel):
    """Immutable record serialised as a camelCase JSON object."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        """Serialise to a JSON-compatible dict using wire (camelCase) keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def check_schema_version(value: str, compatible: frozenset[str], kind: str) -> str:
    """Raise ValueError unless *value* is in the *compatible* whitelist."""
    if value not in compatible:
        msg = f"incompatible {kind} schema version {value!r}"
        raise ValueError(msg)
    return value


def parse_wire(model: type[W], payload: Any) -> W | None:
    """Validate a raw payload into *model*, or return None if it is unusable.

    Schema-incompatible or malformed payloads are treated as absent: the
    caller keeps its previous state and no exception surfaces.
    """
    if isinstance(payload, model):
        return payload
    if not isinstance(payload, Mapping):
        return None
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        logger.debug(
            "INCOMPATIBLE_PAYLOAD: model=%s errors=%d",
            model.__name__,
            exc.error_count(),
        )
        return None
