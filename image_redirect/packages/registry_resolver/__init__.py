"""Registry resolver package.

Asks the local trust-boundary service which registry domain should serve an
image, falling back to a default domain on any failure.
"""

from .resolver import RegistryResolver
from .types import ResolverConfig

__all__ = [
    "RegistryResolver",
    "ResolverConfig",
]
