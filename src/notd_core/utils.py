"""Utility functions for the notd core."""
import re
from typing import Any, Dict, Union

from notd_core.exceptions import UnresolvedTempIdError

NoteRef = Union[int, str]

_REAL_ID_RE = re.compile(r"[0-9]+")

_TRUTHY_VALUES = frozenset({"true", "1", "yes", "on"})


def is_truthy(value: Any) -> bool:
    """Interpret a property value as a boolean.

    Property values are free text, so ``true``, ``1``, ``yes`` and ``on``
    (any case, surrounding whitespace ignored) count as true; everything
    else is false.
    """
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUTHY_VALUES


def is_true_value(value: Any) -> bool:
    """Strict boolean reading used for the ``internal`` flag: only ``true``."""
    if isinstance(value, bool):
        return value
    return value is not None and str(value).strip().lower() == "true"


def is_real_id(ref: NoteRef) -> bool:
    """Tell a server-assigned note id from a client-minted temporary id.

    Integers and strings made only of ASCII digits are real ids; any other
    string is a temporary id.
    """
    if isinstance(ref, bool):
        return False
    if isinstance(ref, int):
        return True
    return bool(_REAL_ID_RE.fullmatch(str(ref).strip()))


def resolve_note_ref(ref: NoteRef, temp_ids: Dict[str, int]) -> int:
    """Turn a note reference into a real note id.

    Args:
        ref: A real id or a temporary id.
        temp_ids: Temporary id to real id mapping of the running batch.

    Returns:
        The real note id.

    Raises:
        UnresolvedTempIdError: If ``ref`` is a temporary id with no mapping.
    """
    if is_real_id(ref):
        return int(str(ref).strip())
    temp_id = str(ref).strip()
    if temp_id not in temp_ids:
        raise UnresolvedTempIdError(temp_id)
    return temp_ids[temp_id]
