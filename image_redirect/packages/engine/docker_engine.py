"""Docker Engine API backend.

Talks to the engine through aiodocker. Long-running operations (pull,
import, push, load, export) stream the engine's response into a
``StreamingOutput``; the engine's own progress messages are already in the
format Docker clients expect, so they are relayed line by line.

Calls that must forward client headers (meta headers, registry auth) or
repeated query parameters go through ``Docker._query`` directly since the
high-level image helpers do not accept them.
"""

import json
from typing import Any, AsyncIterable, Optional
from urllib.parse import urlencode

import aiodocker
import aiohttp
import structlog
from aiodocker.exceptions import DockerError
from multidict import CIMultiDict

from image_redirect.errors import BackendError, ImageApiError, error_for_status
from image_redirect.packages.reference import Platform, familiar_string
from image_redirect.utils.streaming import STREAM_DELIMITER, StreamingOutput

from .types import AuthConfig, EngineConfig, MetaHeaders

logger = structlog.stdlib.get_logger(__name__)

EXPORT_CHUNK_SIZE = 64 * 1024


def _bool_param(value: bool) -> str:
    return "1" if value else "0"


def _with_query(path: str, pairs: list[tuple[str, str]]) -> str:
    """Append repeated query parameters (``names``, ``changes``) to ``path``."""
    if not pairs:
        return path
    return f"{path}?{urlencode(pairs)}"


def _progress_error(line: bytes) -> Optional[BackendError]:
    """Extract the error carried by a progress message, if any."""
    try:
        message = json.loads(line)
    except ValueError:
        return None
    if not isinstance(message, dict):
        return None
    if "error" not in message and "errorDetail" not in message:
        return None

    detail = message.get("errorDetail") or {}
    text = detail.get("message") or message.get("error") or "unknown error"
    return BackendError(text, code=detail.get("code"))


def _engine_error(e: DockerError) -> ImageApiError:
    # aiodocker reports connection failures with its own 9xx status
    status_code = e.status if 400 <= e.status < 600 else 500
    return error_for_status(status_code, e.message)


class DockerEngineBackend:
    """ImageBackend implementation backed by a Docker Engine."""

    def __init__(self, config: EngineConfig):
        self.config = config

    def _get_docker(self) -> aiodocker.Docker:
        api_version = (
            f"v{self.config.api_version}" if self.config.api_version else "auto"
        )
        return aiodocker.Docker(
            url=f"unix://{self.config.socket_path}", api_version=api_version
        )

    def _stream_timeout(self) -> aiohttp.ClientTimeout:
        # pulls and exports stream for as long as they need
        return aiohttp.ClientTimeout(
            total=None, sock_connect=self.config.connect_timeout
        )

    @staticmethod
    def _headers(
        meta_headers: Optional[MetaHeaders] = None,
        auth_config: Optional[AuthConfig] = None,
    ) -> CIMultiDict:
        headers: CIMultiDict = CIMultiDict()
        for name, values in (meta_headers or {}).items():
            for value in values:
                headers.add(name, value)
        if auth_config is not None:
            headers["X-Registry-Auth"] = auth_config.encode()
        return headers

    async def _query_json(
        self,
        path: str,
        method: str = "GET",
        *,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[CIMultiDict] = None,
    ) -> Any:
        async with self._get_docker() as docker:
            try:
                return await docker._query_json(
                    path, method, params=params, headers=headers
                )
            except DockerError as e:
                logger.error(
                    "Docker engine request failed",
                    method=method,
                    path=path,
                    status=e.status,
                    error=e.message,
                )
                raise _engine_error(e) from e

    async def _stream(
        self,
        path: str,
        output: StreamingOutput,
        *,
        method: str = "POST",
        params: Optional[dict[str, Any]] = None,
        headers: Optional[CIMultiDict] = None,
        data: Optional[AsyncIterable[bytes]] = None,
        progress: bool = True,
    ) -> None:
        """Relay a streaming engine response into ``output``.

        With ``progress`` set the body is read as JSON progress messages and
        the first error message is raised instead of relayed. Otherwise raw
        bytes are copied.
        """
        async with self._get_docker() as docker:
            try:
                async with docker._query(
                    path,
                    method,
                    params=params,
                    headers=headers,
                    data=data,
                    timeout=self._stream_timeout(),
                ) as response:
                    if not progress:
                        async for chunk in response.content.iter_chunked(
                            EXPORT_CHUNK_SIZE
                        ):
                            await output.write(chunk)
                        return

                    async for line in response.content:
                        line = line.strip()
                        if not line:
                            continue
                        error = _progress_error(line)
                        if error is not None:
                            raise error
                        await output.write(line + STREAM_DELIMITER)

            except DockerError as e:
                logger.error(
                    "Docker engine rejected streaming request",
                    method=method,
                    path=path,
                    status=e.status,
                    error=e.message,
                )
                raise _engine_error(e) from e
            except aiohttp.ClientError as e:
                logger.error(
                    "Docker engine stream failed",
                    method=method,
                    path=path,
                    error=str(e),
                )
                raise BackendError(f"docker engine stream failed: {e}") from e

    async def pull(
        self,
        reference: str,
        tag: str,
        platform: Optional[Platform],
        meta_headers: MetaHeaders,
        auth_config: AuthConfig,
        output: StreamingOutput,
    ) -> None:
        # An empty tag asks the engine for every tag of the repository
        params = {"fromImage": reference}
        if tag:
            params["tag"] = tag
        if platform is not None:
            params["platform"] = str(platform)

        logger.info(
            "Pulling image from docker engine",
            reference=reference,
            tag=tag,
            platform=params.get("platform"),
        )

        await self._stream(
            "images/create",
            output,
            params=params,
            headers=self._headers(
                meta_headers, None if auth_config.is_empty() else auth_config
            ),
        )

    async def tag(self, source: str, repo: str, tag: str) -> str:
        async with self._get_docker() as docker:
            try:
                await docker.images.tag(source, repo, tag=tag or None)
            except DockerError as e:
                raise _engine_error(e) from e

        new_tag = f"{repo}:{tag}" if tag else repo
        return familiar_string(new_tag)

    async def delete(
        self, reference: str, force: bool, prune: bool
    ) -> list[dict[str, Any]]:
        async with self._get_docker() as docker:
            try:
                result = await docker.images.delete(
                    reference, force=force, noprune=not prune
                )
            except DockerError as e:
                raise _engine_error(e) from e
        return result or []

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
        pairs = [("fromSrc", src)]
        if repo:
            pairs.append(("repo", repo))
        if tag:
            pairs.append(("tag", tag))
        if message:
            pairs.append(("message", message))
        if os:
            pairs.append(("platform", os))
        pairs.extend(("changes", change) for change in changes)

        logger.info("Importing image into docker engine", src=src, repo=repo, tag=tag)

        await self._stream(
            _with_query("images/create", pairs),
            output,
            data=body if src == "-" else None,
        )

    async def push(
        self,
        image: str,
        tag: str,
        meta_headers: MetaHeaders,
        auth_config: AuthConfig,
        output: StreamingOutput,
    ) -> None:
        params = {"tag": tag} if tag else None
        await self._stream(
            f"images/{image}/push",
            output,
            params=params,
            headers=self._headers(meta_headers, auth_config),
        )

    async def export(self, names: list[str], output: StreamingOutput) -> None:
        await self._stream(
            _with_query("images/get", [("names", name) for name in names]),
            output,
            method="GET",
            progress=False,
        )

    async def load(
        self, body: AsyncIterable[bytes], output: StreamingOutput, quiet: bool
    ) -> None:
        headers: CIMultiDict = CIMultiDict({"Content-Type": "application/x-tar"})
        await self._stream(
            "images/load",
            output,
            params={"quiet": _bool_param(quiet)},
            headers=headers,
            data=body,
        )

    async def inspect(self, name: str) -> dict[str, Any]:
        async with self._get_docker() as docker:
            try:
                return await docker.images.inspect(name)
            except DockerError as e:
                raise _engine_error(e) from e

    async def list_images(
        self, filters: str, all_images: bool
    ) -> list[dict[str, Any]]:
        params = {"all": _bool_param(all_images)}
        if filters:
            params["filters"] = filters

        async with self._get_docker() as docker:
            try:
                return await docker.images.list(**params) or []
            except DockerError as e:
                raise _engine_error(e) from e

    async def history(self, name: str) -> list[dict[str, Any]]:
        async with self._get_docker() as docker:
            try:
                return await docker.images.history(name) or []
            except DockerError as e:
                raise _engine_error(e) from e

    async def search(
        self,
        term: str,
        limit: int,
        filters: str,
        auth_config: AuthConfig,
        meta_headers: MetaHeaders,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"term": term, "limit": str(limit)}
        if filters:
            params["filters"] = filters
        headers = self._headers(
            meta_headers, None if auth_config.is_empty() else auth_config
        )
        return await self._query_json("images/search", params=params, headers=headers) or []

    async def prune(self, filters: str) -> dict[str, Any]:
        params = {"filters": filters} if filters else None
        return await self._query_json("images/prune", "POST", params=params) or {}
