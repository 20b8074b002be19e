"""Field transforms resolved by the document store at commit time.

Writes may carry these sentinels instead of literal values. They are applied
to the document state the commit actually sees, so concurrent increments on a
counter that was never read inside the transaction still add up.
"""

import copy
from typing import Any, Dict, Iterable, Optional


class _Sentinel:
    def __init__(self, name: str):
        self._name = name

    def __repr__(self) -> str:
        return self._name


# Replaced by the commit time (UTC ISO string)
SERVER_TIMESTAMP = _Sentinel("SERVER_TIMESTAMP")

# Removes the field it is assigned to
DELETE_FIELD = _Sentinel("DELETE_FIELD")


class Increment:
    """Adds ``amount`` to the stored number (missing or non-numeric counts as 0)."""

    def __init__(self, amount: int = 1):
        self.amount = amount

    def __repr__(self) -> str:
        return f"Increment({self.amount})"


class ArrayUnion:
    """Appends each value not already present in the stored array."""

    def __init__(self, values: Iterable[Any]):
        self.values = list(values)

    def __repr__(self) -> str:
        return f"ArrayUnion({self.values!r})"


class ArrayRemove:
    """Removes every element equal to one of the values."""

    def __init__(self, values: Iterable[Any]):
        self.values = list(values)

    def __repr__(self) -> str:
        return f"ArrayRemove({self.values!r})"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def resolve_value(current: Any, value: Any, now: str) -> Any:
    """Resolve ``value`` against the ``current`` stored value.

    Args:
        current: Value currently stored in the field, or None.
        value: Literal value or transform sentinel being written.
        now: Commit timestamp.

    Returns:
        The value to store.
    """
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, Increment):
        return (current if _is_number(current) else 0) + value.amount
    if isinstance(value, ArrayUnion):
        result = list(current) if isinstance(current, list) else []
        for item in value.values:
            if item not in result:
                result.append(copy.deepcopy(item))
        return result
    if isinstance(value, ArrayRemove):
        if not isinstance(current, list):
            return []
        return [item for item in current if item not in value.values]
    if isinstance(value, dict):
        return {
            key: resolve_value(None, item, now)
            for key, item in value.items()
            if item is not DELETE_FIELD
        }
    if isinstance(value, list):
        return [resolve_value(None, item, now) for item in value]
    return copy.deepcopy(value)


def _merge_into(target: Dict[str, Any], data: Dict[str, Any], now: str) -> None:
    for key, value in data.items():
        if value is DELETE_FIELD:
            target.pop(key, None)
        elif isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge_into(target[key], value, now)
        else:
            target[key] = resolve_value(target.get(key), value, now)


def apply_set(
    current: Optional[Dict[str, Any]], data: Dict[str, Any], merge: bool, now: str
) -> Dict[str, Any]:
    """Compute a document after ``set``.

    Without ``merge`` the document is replaced. With ``merge`` nested maps are
    merged key by key and untouched fields survive.
    """
    if not merge or current is None:
        return resolve_value(None, data, now)
    result = copy.deepcopy(current)
    _merge_into(result, data, now)
    return result


def apply_update(
    current: Dict[str, Any], fields: Dict[str, Any], now: str
) -> Dict[str, Any]:
    """Compute a document after ``update``; keys are dotted field paths."""
    result = copy.deepcopy(current)
    for field_path, value in fields.items():
        parts = field_path.split(".")
        target = result
        for part in parts[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                child = {}
                target[part] = child
            target = child
        leaf = parts[-1]
        if value is DELETE_FIELD:
            target.pop(leaf, None)
        else:
            target[leaf] = resolve_value(target.get(leaf), value, now)
    return result


_MISSING = object()


def get_field(data: Optional[Dict[str, Any]], field_path: str, default: Any = None) -> Any:
    """Read a dotted field path (``counts.students``) from a document."""
    value: Any = data
    for part in field_path.split("."):
        if not isinstance(value, dict) or part not in value:
            return default
        value = value[part]
    return value


def has_field(data: Optional[Dict[str, Any]], field_path: str) -> bool:
    return get_field(data, field_path, _MISSING) is not _MISSING
