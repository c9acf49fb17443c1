"""Registry resolver types and data structures.

No dependencies on image_redirect.* modules to maintain independence.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ResolverConfig:
    """Configuration for the local registry resolver.

    Attributes:
        socket_path: Unix socket the resolver process listens on
                     (e.g., "/tmp/server.sock")
        host: Virtual host sent with every request (e.g., "dockerd")
        default_domain: Domain returned whenever resolution fails
                        (e.g., "docker.io")
        max_domain_bytes: Upper bound on the bytes read from a response body.
                          Longer domain names are truncated.
        timeout: Seconds before a resolver call is abandoned
    """

    socket_path: str
    host: str = "dockerd"
    default_domain: str = "docker.io"
    max_domain_bytes: int = 32
    timeout: float = 10.0
