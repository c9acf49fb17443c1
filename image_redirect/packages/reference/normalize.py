"""Normalized and familiar forms of image references.

The familiar form is what ``docker images`` prints: the default registry and
the ``library/`` namespace of official images are dropped, every other
registry is kept. Comparing familiar forms tells whether two references name
the same tag.
"""

from .rewriter import looks_like_domain

DEFAULT_DOMAIN = "docker.io"
LEGACY_DEFAULT_DOMAIN = "index.docker.io"
OFFICIAL_NAMESPACE = "library"


def split_domain(reference: str) -> tuple[str, str]:
    """Split a reference into ``(domain, remainder)`` with Docker Hub defaults.

    >>> split_domain("nginx:latest")
    ('docker.io', 'library/nginx:latest')
    >>> split_domain("myreg.io/team/app:1.0")
    ('myreg.io', 'team/app:1.0')
    """
    first, sep, rest = reference.partition("/")
    if not sep or not looks_like_domain(first):
        domain, remainder = DEFAULT_DOMAIN, reference
    else:
        domain, remainder = first, rest

    if domain == LEGACY_DEFAULT_DOMAIN:
        domain = DEFAULT_DOMAIN
    if domain == DEFAULT_DOMAIN and "/" not in remainder:
        remainder = f"{OFFICIAL_NAMESPACE}/{remainder}"
    return domain, remainder


def normalize(reference: str) -> str:
    """Fully qualified form, e.g. ``nginx:latest`` -> ``docker.io/library/nginx:latest``."""
    domain, remainder = split_domain(reference)
    return f"{domain}/{remainder}"


def familiar_string(reference: str) -> str:
    """Shortest unambiguous form, e.g. ``docker.io/library/nginx:latest`` -> ``nginx:latest``."""
    domain, remainder = split_domain(reference)
    if domain != DEFAULT_DOMAIN:
        return f"{domain}/{remainder}"

    namespace, _, name = remainder.partition("/")
    if namespace == OFFICIAL_NAMESPACE and "/" not in name:
        return name
    return remainder
