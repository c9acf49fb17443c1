"""Docker-style parsing of query parameters."""

import json
from typing import Any

from image_redirect.errors import InvalidParameterError

_FALSE_VALUES = ("", "0", "no", "false", "none")


def bool_value(value: str | None) -> bool:
    """Docker's boolean convention: empty, 0, no, false and none are false."""
    if value is None:
        return False
    return value.strip().lower() not in _FALSE_VALUES


def bool_value_or_default(value: str | None, default: bool) -> bool:
    if not value:
        return default
    return bool_value(value)


def parse_filters(filters: str) -> dict[str, dict[str, bool]]:
    """Parse a ``filters`` parameter into its ``{key: {value: true}}`` form.

    The legacy ``{key: [value, ...]}`` form is accepted as well.

    Raises:
        InvalidParameterError: if the parameter is not a JSON object of filters
    """
    if not filters:
        return {}
    try:
        raw: Any = json.loads(filters)
    except ValueError as e:
        raise InvalidParameterError(f"invalid filter: {e}") from e
    if not isinstance(raw, dict):
        raise InvalidParameterError("invalid filter: expected a JSON object")

    parsed: dict[str, dict[str, bool]] = {}
    for key, values in raw.items():
        if isinstance(values, list):
            parsed[key] = {str(value): True for value in values}
        elif isinstance(values, dict):
            parsed[key] = {str(value): bool(flag) for value, flag in values.items()}
        else:
            raise InvalidParameterError(f"invalid filter: bad value for {key!r}")
    return parsed


def add_filter(filters: str, key: str, value: str) -> str:
    """Return ``filters`` with ``key=value`` added, re-encoded as JSON."""
    parsed = parse_filters(filters)
    parsed.setdefault(key, {})[value] = True
    return json.dumps(parsed)
