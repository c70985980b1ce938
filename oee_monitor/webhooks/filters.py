"""Payload lookups used by subscription filters.

Event payloads are untyped nested mappings. Filters address them with
dotted paths (``machine.department``, ``oee.value``, ``items.0.sku``);
numeric segments index into sequences.
"""

from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Final


class _Missing:
    """Sentinel for a path that does not resolve to a value."""

    _instance: "_Missing | None" = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Final = _Missing()

# Payload shapes in which the resource dimensions are carried
MACHINE_ID_PATHS: Final = ("machineId", "machine_id", "machine._id", "machine.id")
DEPARTMENT_PATHS: Final = ("department", "machine.department")
LOCATION_PATHS: Final = ("location", "machine.location")


def resolve_path(data: Any, path: str) -> Any:
    """Walk a dotted path through nested mappings and sequences.

    Args:
        data: Structured value to walk.
        path: Dot-separated path.

    Returns:
        The value at the path, or MISSING if any segment is absent.
    """
    current = data
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, Sequence) and not isinstance(current, str | bytes):
            try:
                current = current[int(segment)]
            except (ValueError, IndexError):
                return MISSING
        else:
            return MISSING
    return current


def first_present(data: Any, paths: Iterable[str]) -> Any:
    """Resolve the first path that yields a non-null value.

    Returns:
        The value, or MISSING when no path resolves.
    """
    for path in paths:
        value = resolve_path(data, path)
        if value is not MISSING and value is not None:
            return value
    return MISSING


def matches_allow_list(value: Any, allowed: Iterable[str]) -> bool:
    """Check a resolved value against an allow-list.

    Values are compared as strings so ObjectId-like identifiers and plain
    strings match each other. A missing value never matches.
    """
    if value is MISSING or value is None:
        return False
    return str(value) in {str(item) for item in allowed}
