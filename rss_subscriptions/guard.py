"""Ownership filtering for bulk subscription mutations."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

logger = logging.getLogger(__name__)

PERMITTED_FIELDS = ("title", "push")


def _as_id(value: Any) -> Optional[int]:
    """Accept ints and digit strings only; floats and bools are not ids."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.isascii() and text.isdigit():
            return int(text)
    return None


def filter_owned(requested_ids: Iterable[Any], owned_ids: Iterable[int]) -> List[int]:
    """Return the requested ids the caller owns, in request order.

    Unknown or foreign ids are dropped without raising so callers cannot probe
    for other users' records.
    """
    owned: Set[int] = set(owned_ids)
    allowed: List[int] = []
    dropped = 0
    for value in requested_ids:
        record_id = _as_id(value)
        if record_id is None or record_id not in owned:
            dropped += 1
            continue
        if record_id not in allowed:
            allowed.append(record_id)
    if dropped:
        logger.debug("Dropped %d ids not owned by the requester", dropped)
    return allowed


def filter_owned_map(
    requested_fields_by_id: Mapping[Any, Mapping[str, Any]],
    owned_ids: Iterable[int],
    permitted: Sequence[str] = PERMITTED_FIELDS,
) -> Dict[int, Dict[str, Any]]:
    """Keep owned ids only and reduce each field mapping to ``permitted`` keys."""
    owned = set(owned_ids)
    allowed: Dict[int, Dict[str, Any]] = {}
    for key, fields in requested_fields_by_id.items():
        record_id = _as_id(key)
        if record_id is None or record_id not in owned:
            logger.debug("Dropped update for id %r not owned by the requester", key)
            continue
        allowed[record_id] = {
            name: value for name, value in (fields or {}).items() if name in permitted
        }
    return allowed
