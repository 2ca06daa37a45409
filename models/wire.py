"""
Wire conventions shared by every model.

Fields are snake_case in Python and camelCase on the wire. The realtime
store drops empty lists and maps when it saves a document, so collection
fields must accept ``None`` (or a missing key) and read it back as empty.
Stores that keep arrays as ``{"0": ..., "1": ...}`` maps are handled too.
"""

from typing import Any, List

from pydantic.alias_generators import to_camel


WIRE_CONFIG = {
    "alias_generator": to_camel,
    "populate_by_name": True,
    "extra": "ignore",
}


def as_list(value: Any) -> List[Any]:
    """Coerce an absent, null or index-keyed collection into a list."""
    if value is None:
        return []
    if isinstance(value, dict):
        try:
            keys = sorted(value, key=int)
        except (TypeError, ValueError):
            return list(value.values())
        return [value[k] for k in keys]
    return value
