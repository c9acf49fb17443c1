"""Comparison of dotted API version strings such as ``1.41``."""


def _parts(version: str) -> list[int]:
    parts = []
    for part in version.split("."):
        try:
            parts.append(int(part))
        except ValueError:
            parts.append(0)
    return parts


def compare(v1: str, v2: str) -> int:
    """Return 1 if ``v1 > v2``, -1 if ``v1 < v2`` and 0 when equal."""
    a, b = _parts(v1), _parts(v2)
    width = max(len(a), len(b))
    a += [0] * (width - len(a))
    b += [0] * (width - len(b))
    if a > b:
        return 1
    if a < b:
        return -1
    return 0


def less_than(v1: str, v2: str) -> bool:
    return compare(v1, v2) < 0


def greater_than_or_equal_to(v1: str, v2: str) -> bool:
    return compare(v1, v2) >= 0
