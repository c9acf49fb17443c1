"""Image reference handling: rewriting, normalization and platform specifiers."""

from .normalize import familiar_string, normalize, split_domain
from .platforms import Platform, parse_platform, parse_requested_platform
from .rewriter import ReferenceRewriter

__all__ = [
    "ReferenceRewriter",
    "familiar_string",
    "normalize",
    "split_domain",
    # Platforms
    "Platform",
    "parse_platform",
    "parse_requested_platform",
]
