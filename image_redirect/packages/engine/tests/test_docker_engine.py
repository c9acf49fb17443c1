import base64
import json
from unittest.mock import patch
from urllib.parse import parse_qs, urlsplit

import aiohttp
import pytest
from aiodocker.exceptions import DockerError

from image_redirect.errors import BackendError, ConflictError, NotFoundError
from image_redirect.packages.engine import AuthConfig, DockerEngineBackend, EngineConfig
from image_redirect.packages.engine.tests.docker_test_utils import FakeDocker
from image_redirect.packages.reference import Platform
from image_redirect.utils.streaming import StreamingOutput


@pytest.fixture
def backend() -> DockerEngineBackend:
    return DockerEngineBackend(EngineConfig(socket_path="/unused.sock"))


def _use(docker: FakeDocker):
    return patch.object(DockerEngineBackend, "_get_docker", return_value=docker)


async def _collect(output: StreamingOutput) -> bytes:
    output.close()
    return b"".join([chunk async for chunk in output])


def _progress(*messages: dict) -> list[bytes]:
    return [json.dumps(m).encode() + b"\n" for m in messages]


async def test_pull_relays_progress(backend):
    docker = FakeDocker(
        lines=_progress(
            {"status": "Pulling from library/nginx", "id": "latest"},
            {"status": "Status: Downloaded newer image"},
        )
    )

    output = StreamingOutput()
    with _use(docker):
        await backend.pull(
            "myreg.io/library/nginx",
            "latest",
            Platform("linux", "arm64", "v8"),
            {"X-Meta-Build": ["42"]},
            AuthConfig(),
            output,
        )

    assert output.flushed
    lines = (await _collect(output)).split(b"\r\n")
    assert json.loads(lines[0])["status"] == "Pulling from library/nginx"
    assert json.loads(lines[1])["status"] == "Status: Downloaded newer image"

    path, method, kwargs = docker.queries[0]
    assert (path, method) == ("images/create", "POST")
    assert kwargs["params"] == {
        "fromImage": "myreg.io/library/nginx",
        "tag": "latest",
        "platform": "linux/arm64/v8",
    }
    assert kwargs["headers"].getall("X-Meta-Build") == ["42"]
    # Empty credentials are not forwarded
    assert "X-Registry-Auth" not in kwargs["headers"]
    assert kwargs["timeout"].total is None


async def test_pull_without_tag_omits_tag_param(backend):
    docker = FakeDocker(lines=_progress({"status": "done"}))

    with _use(docker):
        await backend.pull("myreg.io/library/nginx", "", None, {}, AuthConfig(), StreamingOutput())

    assert docker.queries[0][2]["params"] == {"fromImage": "myreg.io/library/nginx"}


async def test_pull_forwards_credentials(backend):
    docker = FakeDocker(lines=_progress({"status": "done"}))

    with _use(docker):
        await backend.pull(
            "myreg.io/library/nginx",
            "latest",
            None,
            {},
            AuthConfig(username="alice", password="secret"),
            StreamingOutput(),
        )

    encoded = docker.queries[0][2]["headers"]["X-Registry-Auth"]
    assert json.loads(base64.urlsafe_b64decode(encoded)) == {
        "username": "alice",
        "password": "secret",
    }


async def test_pull_raises_in_stream_error_after_relaying_progress(backend):
    docker = FakeDocker(
        lines=_progress(
            {"status": "Pulling fs layer", "id": "abc"},
            {
                "errorDetail": {"message": "manifest unknown", "code": 404},
                "error": "manifest unknown",
            },
        )
    )

    output = StreamingOutput()
    with _use(docker), pytest.raises(BackendError) as exc_info:
        await backend.pull("myreg.io/library/nginx", "nope", None, {}, AuthConfig(), output)

    assert exc_info.value.message == "manifest unknown"
    assert exc_info.value.code == 404
    assert output.flushed
    assert b"manifest unknown" not in await _collect(output)


async def test_pull_error_status_before_stream(backend):
    docker = FakeDocker(error=DockerError(404, {"message": "pull access denied"}))

    output = StreamingOutput()
    with _use(docker), pytest.raises(NotFoundError, match="pull access denied"):
        await backend.pull("myreg.io/library/nginx", "latest", None, {}, AuthConfig(), output)

    assert not output.flushed


async def test_broken_stream_raises_backend_error(backend):
    docker = FakeDocker(error=aiohttp.ClientPayloadError("connection reset"))

    with _use(docker), pytest.raises(BackendError, match="docker engine stream failed"):
        await backend.export(["nginx"], StreamingOutput())


async def test_unreachable_engine_maps_to_server_error(backend):
    docker = FakeDocker()
    docker.images.inspect.side_effect = DockerError(
        900, {"message": "Cannot connect to Docker Engine"}
    )

    with _use(docker), pytest.raises(BackendError) as exc_info:
        await backend.inspect("nginx")

    assert exc_info.value.status_code == 500


async def test_tag_returns_familiar_name(backend):
    docker = FakeDocker()

    with _use(docker):
        result = await backend.tag(
            "myreg.io/library/nginx:latest", "docker.io/library/nginx", "latest"
        )

    assert result == "nginx:latest"
    docker.images.tag.assert_awaited_once_with(
        "myreg.io/library/nginx:latest", "docker.io/library/nginx", tag="latest"
    )


async def test_delete_maps_conflict(backend):
    docker = FakeDocker()
    docker.images.delete.side_effect = DockerError(409, {"message": "image is in use"})

    with _use(docker), pytest.raises(ConflictError, match="image is in use"):
        await backend.delete("nginx:latest", force=False, prune=True)

    docker.images.delete.assert_awaited_once_with(
        "nginx:latest", force=False, noprune=False
    )


async def test_delete_returns_entries(backend):
    docker = FakeDocker()
    docker.images.delete.return_value = [{"Untagged": "myreg.io/library/nginx:latest"}]

    with _use(docker):
        result = await backend.delete("myreg.io/library/nginx:latest", False, True)

    assert result == [{"Untagged": "myreg.io/library/nginx:latest"}]


async def test_list_images_passes_filters(backend):
    docker = FakeDocker()

    with _use(docker):
        await backend.list_images('{"dangling":["true"]}', all_images=True)

    docker.images.list.assert_awaited_once_with(
        all="1", filters='{"dangling":["true"]}'
    )


async def test_api_version_prefix():
    backend = DockerEngineBackend(
        EngineConfig(socket_path="/var/run/docker.sock", api_version="1.41")
    )

    with patch("aiodocker.Docker") as docker_cls:
        backend._get_docker()

    docker_cls.assert_called_once_with(
        url="unix:///var/run/docker.sock", api_version="v1.41"
    )


async def test_export_copies_raw_bytes(backend):
    docker = FakeDocker(lines=[b"tar-bytes\n", b"\x00more"])

    output = StreamingOutput()
    with _use(docker):
        await backend.export(["nginx", "redis"], output)

    assert await _collect(output) == b"tar-bytes\n\x00more"
    path, method, _ = docker.queries[0]
    assert method == "GET"
    assert parse_qs(urlsplit(path).query) == {"names": ["nginx", "redis"]}


async def test_import_streams_body_for_stdin_source(backend):
    docker = FakeDocker(lines=_progress({"status": "sha256:abc"}))

    async def body():
        yield b"layer-"
        yield b"data"

    output = StreamingOutput()
    with _use(docker):
        await backend.import_image(
            "-", "imported", "linux", "", "", body(), output, ["ENV A=1", "CMD sh"]
        )

    path, method, kwargs = docker.queries[0]
    assert method == "POST"
    assert urlsplit(path).path == "images/create"
    assert parse_qs(urlsplit(path).query) == {
        "fromSrc": ["-"],
        "repo": ["imported"],
        "platform": ["linux"],
        "changes": ["ENV A=1", "CMD sh"],
    }
    assert kwargs["body"] == b"layer-data"
    assert output.flushed


async def test_search_forwards_limit(backend):
    docker = FakeDocker(json_result=[{"name": "nginx"}])

    with _use(docker):
        result = await backend.search("nginx", 10, "", AuthConfig(), {})

    assert result == [{"name": "nginx"}]
    path, method, kwargs = docker.queries[0]
    assert (path, method) == ("images/search", "GET")
    assert kwargs["params"] == {"term": "nginx", "limit": "10"}
