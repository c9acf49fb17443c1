"""Docker Engine image API.

``POST /images/create`` pulls through the registry redirection workflow.
The remaining endpoints parse their parameters and delegate to the backend.

See: https://docs.docker.com/engine/api/
"""

import json
from functools import partial
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Query, Request, Response, status

from image_redirect.deps.registry import (
    ApiVersionDep,
    BackendDep,
    MetaHeadersDep,
    RegistryAuthDep,
    ResolverDep,
)
from image_redirect.errors import (
    ImageApiError,
    InvalidParameterError,
    MissingImageError,
)
from image_redirect.factories import workflow_factory
from image_redirect.packages.engine import AuthConfig
from image_redirect.services.image_create_service import CreateImageRequest
from image_redirect.settings import settings
from image_redirect.utils import versions
from image_redirect.utils.forms import (
    add_filter,
    bool_value,
    bool_value_or_default,
    parse_filters,
)
from image_redirect.utils.streaming import StreamingOutput, stream_operation

logger = structlog.stdlib.get_logger(__name__)

router = APIRouter(tags=["Images"])


@router.post("/images/create")
async def create_image(
    request: Request,
    backend: BackendDep,
    resolver: ResolverDep,
    api_version: ApiVersionDep,
    meta_headers: MetaHeadersDep,
    auth_config: RegistryAuthDep,
    from_image: Annotated[str, Query(alias="fromImage")] = "",
    from_src: Annotated[str, Query(alias="fromSrc")] = "",
    repo: str = "",
    tag: str = "",
    message: str = "",
    platform: str = "",
    changes: Annotated[list[str] | None, Query()] = None,
):
    """Create an image by pulling it (``fromImage``) or importing it (``fromSrc``).

    Pulls are redirected to the registry the local resolver names, then
    retagged to the requested name.

    Returns:
        Stream of JSON progress messages. Errors after the first message are
        appended to the stream.
    """
    create_request = CreateImageRequest(
        from_image=from_image,
        from_src=from_src,
        repo=repo,
        tag=tag,
        message=message,
        changes=changes or [],
        platform=platform,
        api_version=api_version,
        meta_headers=meta_headers,
        auth_config=auth_config,
    )
    workflow = workflow_factory(backend, resolver)
    body = None if from_image else request.stream()

    return await stream_operation(partial(workflow.create, create_request, body))


async def _push_auth(request: Request) -> AuthConfig:
    encoded = request.headers.get("X-Registry-Auth")
    if encoded:
        try:
            return AuthConfig.from_header(encoded)
        except ValueError as e:
            logger.warning("Ignoring malformed X-Registry-Auth header", error=str(e))
            return AuthConfig()

    # Older clients send the credentials as the request body
    try:
        return AuthConfig.model_validate(json.loads(await request.body()))
    except ValueError as e:
        raise InvalidParameterError(
            f"Bad parameters and missing X-Registry-Auth: {e}"
        ) from e


@router.post("/images/{name:path}/push")
async def push_image(
    request: Request,
    name: str,
    backend: BackendDep,
    meta_headers: MetaHeadersDep,
    tag: str = "",
):
    """Push an image to its registry, streaming progress."""
    auth_config = await _push_auth(request)
    logger.info("Push image requested", name=name, tag=tag)

    return await stream_operation(
        partial(backend.push, name, tag, meta_headers, auth_config)
    )


@router.get("/images/get")
async def export_images(
    backend: BackendDep,
    names: Annotated[list[str] | None, Query()] = None,
):
    """Export several images as one tarball."""
    return await stream_operation(
        partial(backend.export, names or []), media_type="application/x-tar"
    )


@router.get("/images/{name:path}/get")
async def export_image(name: str, backend: BackendDep):
    """Export one image as a tarball."""
    return await stream_operation(
        partial(backend.export, [name]), media_type="application/x-tar"
    )


@router.post("/images/load")
async def load_images(request: Request, backend: BackendDep, quiet: str = ""):
    """Load images from a tarball in the request body.

    Load failures are always reported inside the stream.
    """
    quiet_output = bool_value_or_default(quiet, True)

    async def load(output: StreamingOutput) -> None:
        try:
            await backend.load(request.stream(), output, quiet_output)
        except ImageApiError as e:
            logger.warning("Load failed", error=str(e))
            await output.write_error(e)

    return await stream_operation(load)


@router.get("/images/json")
async def list_images(
    backend: BackendDep,
    api_version: ApiVersionDep,
    filters: str = "",
    all_images: Annotated[str, Query(alias="all")] = "",
    reference: Annotated[str, Query(alias="filter")] = "",
) -> list[dict[str, Any]]:
    """List images.

    API versions before 1.41 also accept a bare ``filter`` reference.
    """
    parse_filters(filters)
    if reference and versions.less_than(api_version, "1.41"):
        filters = add_filter(filters, "reference", reference)

    return await backend.list_images(filters, bool_value(all_images))


@router.get("/images/search")
async def search_images(
    backend: BackendDep,
    auth_config: RegistryAuthDep,
    meta_headers: MetaHeadersDep,
    term: str = "",
    limit: str = "",
    filters: str = "",
) -> list[dict[str, Any]]:
    """Search registries for images."""
    search_limit = settings.SEARCH_DEFAULT_LIMIT
    if limit:
        try:
            search_limit = int(limit)
        except ValueError as e:
            raise InvalidParameterError(f"invalid limit {limit!r}") from e

    return await backend.search(term, search_limit, filters, auth_config, meta_headers)


@router.post("/images/prune")
async def prune_images(backend: BackendDep, filters: str = "") -> dict[str, Any]:
    """Remove unused images."""
    parse_filters(filters)
    return await backend.prune(filters)


@router.get("/images/{name:path}/json")
async def inspect_image(name: str, backend: BackendDep) -> dict[str, Any]:
    return await backend.inspect(name)


@router.get("/images/{name:path}/history")
async def image_history(name: str, backend: BackendDep) -> list[dict[str, Any]]:
    return await backend.history(name)


@router.post("/images/{name:path}/tag", status_code=status.HTTP_201_CREATED)
async def tag_image(name: str, backend: BackendDep, repo: str = "", tag: str = ""):
    """Tag ``name`` as ``repo:tag``."""
    logger.info("Tag image requested", name=name, repo=repo, tag=tag)

    await backend.tag(name, repo, tag)
    return Response(status_code=status.HTTP_201_CREATED)


@router.delete("/images/{name:path}")
async def delete_image(
    name: str,
    backend: BackendDep,
    force: str = "",
    noprune: str = "",
) -> list[dict[str, Any]]:
    """Remove an image and, unless ``noprune`` is set, its untagged parents."""
    if not name.strip():
        raise MissingImageError()

    force_delete = bool_value(force)
    prune = not bool_value(noprune)
    logger.info("Delete image requested", name=name, force=force_delete, prune=prune)

    return await backend.delete(name, force_delete, prune)
