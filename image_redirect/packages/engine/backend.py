"""The ImageBackend protocol.

The backend owns image storage, layers and the registry wire protocols. This
service only decides which reference to pull and hands everything else over.
"""

from typing import Any, AsyncIterable, Optional, Protocol

from image_redirect.packages.reference import Platform
from image_redirect.utils.streaming import StreamingOutput

from .types import AuthConfig, MetaHeaders


class ImageBackend(Protocol):
    """Protocol for image backend implementations.

    Streaming operations write progress into ``output`` and raise on failure;
    the caller decides how the failure reaches the client.
    """

    async def pull(
        self,
        reference: str,
        tag: str,
        platform: Optional[Platform],
        meta_headers: MetaHeaders,
        auth_config: AuthConfig,
        output: StreamingOutput,
    ) -> None:
        """Pull ``reference:tag`` from its registry.

        Raises:
            ImageApiError if the pull fails, before or during streaming
        """
        ...

    async def tag(self, source: str, repo: str, tag: str) -> str:
        """Tag ``source`` as ``repo:tag``.

        Returns:
            The familiar form of the new tag (e.g., "nginx:latest")
        """
        ...

    async def delete(
        self, reference: str, force: bool, prune: bool
    ) -> list[dict[str, Any]]:
        """Remove an image or tag; returns the untagged/deleted entries."""
        ...

    async def import_image(
        self,
        src: str,
        repo: str,
        os: str,
        tag: str,
        message: str,
        body: Optional[AsyncIterable[bytes]],
        output: StreamingOutput,
        changes: list[str],
    ) -> None:
        """Create an image from a tarball at ``src`` (``-`` reads ``body``)."""
        ...

    async def push(
        self,
        image: str,
        tag: str,
        meta_headers: MetaHeaders,
        auth_config: AuthConfig,
        output: StreamingOutput,
    ) -> None: ...

    async def export(self, names: list[str], output: StreamingOutput) -> None: ...

    async def load(
        self, body: AsyncIterable[bytes], output: StreamingOutput, quiet: bool
    ) -> None: ...

    async def inspect(self, name: str) -> dict[str, Any]: ...

    async def list_images(
        self, filters: str, all_images: bool
    ) -> list[dict[str, Any]]: ...

    async def history(self, name: str) -> list[dict[str, Any]]: ...

    async def search(
        self,
        term: str,
        limit: int,
        filters: str,
        auth_config: AuthConfig,
        meta_headers: MetaHeaders,
    ) -> list[dict[str, Any]]: ...

    async def prune(self, filters: str) -> dict[str, Any]: ...
