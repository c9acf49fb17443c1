"""Request dependencies for the image API.

Decodes the registry credentials and metadata headers Docker clients send
along with pull, push and search requests, and exposes the backend
collaborators so tests can override them.
"""

from typing import Annotated

import structlog
from fastapi import Depends, Request

from image_redirect.factories import backend_factory, resolver_factory
from image_redirect.packages.engine import AuthConfig, ImageBackend, MetaHeaders
from image_redirect.packages.registry_resolver import RegistryResolver
from image_redirect.settings import settings

logger = structlog.stdlib.get_logger(__name__)

META_HEADER_PREFIX = "X-Meta-"


def canonical_header_name(name: str) -> str:
    """Canonical MIME header form, e.g. ``x-meta-build-id`` -> ``X-Meta-Build-Id``."""
    return "-".join(part.capitalize() for part in name.split("-"))


def get_backend() -> ImageBackend:
    return backend_factory()


def get_resolver() -> RegistryResolver:
    return resolver_factory()


def get_api_version(request: Request) -> str:
    """API version from the ``/v<version>`` path prefix, or the default."""
    version = request.path_params.get("version")
    return version or settings.DEFAULT_API_VERSION


def get_meta_headers(request: Request) -> MetaHeaders:
    meta_headers: MetaHeaders = {}
    for name, value in request.headers.items():
        canonical = canonical_header_name(name)
        if canonical.startswith(META_HEADER_PREFIX):
            meta_headers.setdefault(canonical, []).append(value)
    return meta_headers


def get_registry_auth(request: Request) -> AuthConfig:
    """Decode ``X-Registry-Auth``.

    For pull and search it is not an error if no auth was given or it cannot
    be decoded; the request then goes out without credentials.
    """
    encoded = request.headers.get("X-Registry-Auth")
    if not encoded:
        return AuthConfig()

    try:
        return AuthConfig.from_header(encoded)
    except ValueError as e:
        logger.warning("Ignoring malformed X-Registry-Auth header", error=str(e))
        return AuthConfig()


BackendDep = Annotated[ImageBackend, Depends(get_backend)]
ResolverDep = Annotated[RegistryResolver, Depends(get_resolver)]
ApiVersionDep = Annotated[str, Depends(get_api_version)]
MetaHeadersDep = Annotated[MetaHeaders, Depends(get_meta_headers)]
RegistryAuthDep = Annotated[AuthConfig, Depends(get_registry_auth)]
