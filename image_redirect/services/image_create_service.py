"""Image creation: pull with registry redirection, or import.

A pull for ``nginx:latest`` goes through these steps:

1. Ask the local resolver which registry domain serves ``nginx:latest``
2. Rewrite ``nginx`` to ``<domain>/library/nginx``
3. Pull ``<domain>/library/nginx:latest``, streaming progress to the client
4. Tag the result as ``nginx:latest``
5. Remove ``<domain>/library/nginx:latest`` unless it is the same tag

Steps 4 and 5 are bookkeeping: their failures are logged and never reach the
client. A pull failure is reported after they ran, either as an HTTP error
(nothing streamed yet) or appended to the progress stream.
"""

from typing import AsyncIterable, Optional

import structlog
from pydantic import BaseModel, Field

from image_redirect.errors import InvalidParameterError
from image_redirect.packages.engine import AuthConfig, ImageBackend, MetaHeaders
from image_redirect.packages.reference import (
    Platform,
    ReferenceRewriter,
    familiar_string,
    parse_requested_platform,
)
from image_redirect.packages.registry_resolver import RegistryResolver
from image_redirect.utils import versions
from image_redirect.utils.streaming import StreamingOutput, surface_error

logger = structlog.stdlib.get_logger(__name__)

class CreateImageRequest(BaseModel):
    from_image: str = ""
    from_src: str = ""
    repo: str = ""
    tag: str = ""
    message: str = ""
    changes: list[str] = Field(default_factory=list)
    platform: str = ""
    api_version: str
    meta_headers: MetaHeaders = Field(default_factory=dict)
    auth_config: AuthConfig = Field(default_factory=AuthConfig)


def split_tag(image: str, tag: str) -> tuple[str, str]:
    """Separate a tag embedded in ``image`` when no explicit tag was given.

    An empty tag stays empty: the engine then pulls every tag.

    >>> split_tag("nginx:1.25", "")
    ('nginx', '1.25')
    >>> split_tag("localhost:5000/app", "")
    ('localhost:5000/app', '')
    """
    if not tag:
        name, sep, embedded = image.rpartition(":")
        if sep and "/" not in embedded and "@" not in name:
            return name, embedded
    return image, tag


def with_tag(name: str, tag: str) -> str:
    return f"{name}:{tag}" if tag else name


class PullRetagWorkflow:
    """Handles ``POST /images/create`` for a single request."""

    def __init__(
        self,
        backend: ImageBackend,
        resolver: RegistryResolver,
        rewriter: ReferenceRewriter,
        supported_os: list[str],
        min_platform_api_version: str,
    ):
        self.backend = backend
        self.resolver = resolver
        self.rewriter = rewriter
        self.supported_os = supported_os
        self.min_platform_api_version = min_platform_api_version

    def requested_platform(self, request: CreateImageRequest) -> Optional[Platform]:
        """Parse the platform hint; older API versions ignore it.

        Raises:
            InvalidParameterError: for malformed or unsupported platforms
        """
        if not versions.greater_than_or_equal_to(
            request.api_version, self.min_platform_api_version
        ):
            return None
        return parse_requested_platform(request.platform, self.supported_os)

    async def create(
        self,
        request: CreateImageRequest,
        body: Optional[AsyncIterable[bytes]],
        output: StreamingOutput,
    ) -> None:
        logger.info(
            "Create image requested",
            image=request.from_image,
            repo=request.repo,
            tag=request.tag,
        )

        platform = self.requested_platform(request)

        if request.from_image:
            await self.pull(request, platform, output)
        else:
            await self.import_image(request, platform, body, output)

    async def pull(
        self,
        request: CreateImageRequest,
        platform: Optional[Platform],
        output: StreamingOutput,
    ) -> None:
        image, tag = split_tag(request.from_image, request.tag)

        domain = await self.resolver.resolve(f"{image}:{tag}")
        new_image = self.rewriter.rewrite(domain, image)
        if not new_image:
            raise InvalidParameterError(f"invalid reference format: {image}")

        pull_error: Optional[Exception] = None
        try:
            await self.backend.pull(
                new_image,
                tag,
                platform,
                request.meta_headers,
                request.auth_config,
                output,
            )
        except Exception as e:
            logger.warning("Pull failed", reference=new_image, tag=tag, error=str(e))
            pull_error = e

        source = with_tag(new_image, tag)
        retagged = await self._retag(source, image, tag)

        if retagged != familiar_string(source):
            await self._remove_intermediate(source)

        if pull_error is not None:
            await surface_error(output, pull_error)
            return

        logger.info("Pull finished", image=image, tag=tag, source=source)

    async def _retag(self, source: str, image: str, tag: str) -> Optional[str]:
        logger.info("Retagging image", source=source, target=with_tag(image, tag))
        try:
            retagged = await self.backend.tag(source, image, tag)
        except Exception as e:
            logger.error("Retag failed", source=source, image=image, tag=tag, error=str(e))
            return None

        logger.info("Retag finished", source=source, result=retagged)
        return retagged

    async def _remove_intermediate(self, source: str) -> None:
        logger.info("Removing intermediate image", reference=source)
        try:
            await self.backend.delete(source, force=False, prune=True)
        except Exception as e:
            logger.error("Removing intermediate image failed", reference=source, error=str(e))

    async def import_image(
        self,
        request: CreateImageRequest,
        platform: Optional[Platform],
        body: Optional[AsyncIterable[bytes]],
        output: StreamingOutput,
    ) -> None:
        os_name = platform.os if platform is not None else ""
        try:
            await self.backend.import_image(
                request.from_src,
                request.repo,
                os_name,
                request.tag,
                request.message,
                body,
                output,
                request.changes,
            )
        except Exception as e:
            logger.warning("Import failed", src=request.from_src, error=str(e))
            await surface_error(output, e)
