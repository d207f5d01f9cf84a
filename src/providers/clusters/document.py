"""
Typed accessors for untyped store documents.

Documents fetched from the remote store are plain nested dicts. Reads go
through these helpers so that a field of the wrong shape is reported
instead of being coerced to a zero value.
"""

from typing import Any, Dict, List, Tuple


class MalformedDocumentError(ValueError):
    """The observed document does not have the expected shape."""


def _path(fields: Tuple[str, ...]) -> str:
    return ".".join(fields)


def nested_field(doc: Dict[str, Any], *fields: str) -> Tuple[Any, bool]:
    """
    Look up a nested field.

    Returns:
        Tuple of (value, found). Value is None when not found.

    Raises:
        MalformedDocumentError: If an intermediate value is not a mapping.
    """
    current: Any = doc
    for i, name in enumerate(fields):
        if not isinstance(current, dict):
            raise MalformedDocumentError(
                f"{_path(fields[:i]) or '(root)'} is {type(current).__name__}, "
                f"not a mapping"
            )
        if name not in current:
            return None, False
        current = current[name]
    return current, True


def nested_int(doc: Dict[str, Any], *fields: str) -> Tuple[int, bool]:
    value, found = nested_field(doc, *fields)
    if not found or value is None:
        return 0, False
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedDocumentError(
            f"{_path(fields)} is {type(value).__name__}, not an integer"
        )
    return value, True


def nested_str(doc: Dict[str, Any], *fields: str) -> Tuple[str, bool]:
    value, found = nested_field(doc, *fields)
    if not found or value is None:
        return "", False
    if not isinstance(value, str):
        raise MalformedDocumentError(
            f"{_path(fields)} is {type(value).__name__}, not a string"
        )
    return value, True


def nested_list(doc: Dict[str, Any], *fields: str) -> Tuple[List[Any], bool]:
    """Null and absent lists both read as an empty, not-found list."""
    value, found = nested_field(doc, *fields)
    if not found or value is None:
        return [], False
    if not isinstance(value, list):
        raise MalformedDocumentError(
            f"{_path(fields)} is {type(value).__name__}, not a list"
        )
    return value, True


def nested_map(doc: Dict[str, Any], *fields: str) -> Tuple[Dict[str, Any], bool]:
    value, found = nested_field(doc, *fields)
    if not found or value is None:
        return {}, False
    if not isinstance(value, dict):
        raise MalformedDocumentError(
            f"{_path(fields)} is {type(value).__name__}, not a mapping"
        )
    return value, True


def set_nested_field(doc: Dict[str, Any], value: Any, *fields: str) -> None:
    """Set a nested field, creating intermediate mappings as needed."""
    if not fields:
        raise ValueError("At least one field name is required")
    current = doc
    for i, name in enumerate(fields[:-1]):
        nxt = current.get(name)
        if nxt is None:
            nxt = current[name] = {}
        elif not isinstance(nxt, dict):
            raise MalformedDocumentError(
                f"{_path(fields[: i + 1])} is {type(nxt).__name__}, not a mapping"
            )
        current = nxt
    current[fields[-1]] = value
