"""Image backend package.

Provides the ImageBackend protocol and the Docker Engine implementation the
image API delegates storage, registry traffic and image bookkeeping to.
"""

from .backend import ImageBackend
from .docker_engine import DockerEngineBackend
from .types import AuthConfig, EngineConfig, MetaHeaders

__all__ = [
    # Protocol
    "ImageBackend",
    # Providers
    "DockerEngineBackend",
    # Types
    "AuthConfig",
    "EngineConfig",
    "MetaHeaders",
]
