"""Registry domain resolution through a trusted local resolver process.

The resolver listens on a unix socket and answers ``GET /<image>:<tag>`` with
the bare domain of the registry that should serve the image. Resolution never
fails: every problem is logged and the default domain is returned instead.
"""

from typing import Optional

import httpx
import structlog

from .types import ResolverConfig

logger = structlog.stdlib.get_logger(__name__)


class RegistryResolver:
    """Resolves the registry domain for an image over a local unix socket."""

    def __init__(
        self,
        config: ResolverConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the resolver.

        Args:
            config: Resolver configuration (socket path, defaults, limits)
            transport: Optional transport replacing the unix socket
                       (used by tests)
        """
        self.config = config
        self._transport = transport

    def _get_client(self) -> httpx.AsyncClient:
        transport = self._transport or httpx.AsyncHTTPTransport(
            uds=self.config.socket_path
        )
        return httpx.AsyncClient(
            transport=transport,
            base_url=f"http://{self.config.host}",
            timeout=self.config.timeout,
        )

    async def _read_bounded(self, response: httpx.Response) -> bytes:
        limit = self.config.max_domain_bytes
        body = bytearray()
        async for chunk in response.aiter_bytes():
            body.extend(chunk)
            if len(body) >= limit:
                break
        return bytes(body[:limit])

    async def resolve(self, image_with_tag: str) -> str:
        """Return the registry domain for ``image_with_tag``.

        Args:
            image_with_tag: Image name as requested by the client, with tag
                            (e.g., "nginx:latest")

        Returns:
            The resolver's answer, truncated to ``max_domain_bytes``, or the
            default domain when the resolver is unreachable, answers with a
            non-200 status or returns an empty body
        """
        default_domain = self.config.default_domain

        try:
            async with self._get_client() as client:
                async with client.stream("GET", f"/{image_with_tag}") as response:
                    if response.status_code != 200:
                        logger.error(
                            "Registry resolver returned unexpected status",
                            image=image_with_tag,
                            status_code=response.status_code,
                            fallback=default_domain,
                        )
                        return default_domain

                    body = await self._read_bounded(response)

        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(
                "Registry resolver request failed",
                image=image_with_tag,
                socket_path=self.config.socket_path,
                error=str(e),
                fallback=default_domain,
            )
            return default_domain

        domain = body.decode("utf-8", errors="replace")
        if not domain:
            logger.warning(
                "Registry resolver returned an empty domain",
                image=image_with_tag,
                fallback=default_domain,
            )
            return default_domain

        logger.info("Resolved registry domain", image=image_with_tag, domain=domain)
        return domain
