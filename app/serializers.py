"""camelCase wire format <-> snake_case records.

The JSON API speaks camelCase (``craveCoins``, ``averageRating``); everything
behind it uses snake_case keys.
"""
import re
from typing import Any, Dict

_CAMEL_BOUNDARY = re.compile(r'(?<!^)(?=[A-Z])')


def snake_to_camel(key: str) -> str:
    head, *rest = key.split('_')
    return head + ''.join(part[:1].upper() + part[1:] for part in rest)


def camel_to_snake(key: str) -> str:
    return _CAMEL_BOUNDARY.sub('_', key).lower()


def to_wire(value: Any) -> Any:
    """Recursively camelCase the keys of dicts inside *value*."""
    if isinstance(value, dict):
        return {snake_to_camel(k): to_wire(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_wire(v) for v in value]
    return value


def from_wire(payload: Any) -> Dict[str, Any]:
    """Snake-case the top-level keys of a request body.

    Non-dict bodies become an empty dict so validation reports the missing
    fields instead of crashing.
    """
    if not isinstance(payload, dict):
        return {}
    return {camel_to_snake(k): v for k, v in payload.items()}
