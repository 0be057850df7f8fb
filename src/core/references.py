"""Helpers for working with entity references and their thread titles."""

from __future__ import annotations

from typing import Mapping, Optional

from core.errors import ValidationError
from core.models import EntityReference

TITLE_PREFIX = "Discussion for"


def parse_filter(raw_filter: Optional[str]) -> dict[str, str]:
    """Split a ``key=value&key=value`` filter string into a dict.

    Pairs without exactly one ``=`` are ignored.
    """

    parsed: dict[str, str] = {}
    for part in (raw_filter or "").split("&"):
        pieces = part.split("=")
        if len(pieces) != 2:
            continue
        key, value = pieces
        parsed[key.strip()] = value.strip()
    return parsed


def reference_from_filter(filters: Mapping[str, str]) -> EntityReference:
    """Build an EntityReference, rejecting missing reference fields."""

    reference_type = filters.get("reference") or ""
    reference_id = filters.get("referenceId") or ""
    if not reference_type or not reference_id:
        raise ValidationError("Please provide reference and referenceId filter parameters")
    return EntityReference(reference_type=reference_type, reference_id=reference_id)


def thread_title(reference: EntityReference) -> str:
    """Deterministic title (and body) used when creating a thread."""

    return f"{TITLE_PREFIX} {reference.reference_type} {reference.reference_id}"


def lock_key(reference: EntityReference) -> str:
    return f"{reference.reference_type}:{reference.reference_id}"
