import json

import pytest

from image_redirect.errors import BackendError, InvalidParameterError
from image_redirect.packages.engine import AuthConfig
from image_redirect.packages.reference import Platform, ReferenceRewriter
from image_redirect.services.image_create_service import (
    CreateImageRequest,
    PullRetagWorkflow,
    split_tag,
)
from image_redirect.tests.fixtures_backend import FakeBackend, FakeResolver
from image_redirect.utils.streaming import StreamingOutput, stream_operation


def _workflow(backend: FakeBackend, resolver: FakeResolver) -> PullRetagWorkflow:
    return PullRetagWorkflow(
        backend=backend,
        resolver=resolver,
        rewriter=ReferenceRewriter(),
        supported_os=["linux"],
        min_platform_api_version="1.32",
    )


def _pull_request(**kwargs) -> CreateImageRequest:
    return CreateImageRequest(**{"api_version": "1.41", "from_image": "nginx", **kwargs})


async def _run(workflow: PullRetagWorkflow, request: CreateImageRequest, body=None):
    response = await stream_operation(
        lambda output: workflow.create(request, body, output)
    )
    chunks = [chunk async for chunk in response.body_iterator]
    return [json.loads(line) for line in b"".join(chunks).split(b"\r\n") if line]


@pytest.mark.parametrize(
    "image, tag, expected",
    [
        ("nginx", "latest", ("nginx", "latest")),
        ("nginx", "", ("nginx", "")),
        ("nginx:1.25", "", ("nginx", "1.25")),
        ("nginx:1.25", "stable", ("nginx:1.25", "stable")),
        ("localhost:5000/app", "", ("localhost:5000/app", "")),
        ("localhost:5000/app:dev", "", ("localhost:5000/app", "dev")),
        ("nginx@sha256:abc", "", ("nginx@sha256:abc", "")),
    ],
)
def test_split_tag(image, tag, expected):
    assert split_tag(image, tag) == expected


async def test_pull_retags_to_requested_name(backend, resolver):
    messages = await _run(_workflow(backend, resolver), _pull_request(tag="latest"))

    assert resolver.requests == ["nginx:latest"]
    assert backend.called("pull")[0][:2] == ("myreg.io/library/nginx", "latest")
    assert backend.called("tag") == [
        ("myreg.io/library/nginx:latest", "nginx", "latest")
    ]
    assert messages == [{"status": "Pulling from library/nginx"}]


async def test_pull_removes_intermediate_tag(backend, resolver):
    await _run(_workflow(backend, resolver), _pull_request(tag="latest"))

    # nginx:latest differs from myreg.io/library/nginx:latest
    assert backend.called("delete") == [("myreg.io/library/nginx:latest", False, True)]


async def test_pull_from_default_registry_keeps_single_tag(backend):
    resolver = FakeResolver("docker.io")

    messages = await _run(_workflow(backend, resolver), _pull_request(tag="latest"))

    assert backend.called("tag") == [("docker.io/library/nginx:latest", "nginx", "latest")]
    assert backend.called("delete") == []
    assert all("error" not in message for message in messages)


async def test_pull_passes_request_details_to_backend(backend, resolver):
    auth = AuthConfig(username="alice", password="secret")
    request = _pull_request(
        from_image="myuser/app",
        tag="2.0",
        platform="linux/arm64",
        meta_headers={"X-Meta-Build": ["7"]},
        auth_config=auth,
    )

    await _run(_workflow(backend, resolver), request)

    reference, tag, platform, meta_headers, auth_config = backend.called("pull")[0]
    assert reference == "myreg.io/myuser/app"
    assert tag == "2.0"
    assert platform == Platform("linux", "arm64")
    assert meta_headers == {"X-Meta-Build": ["7"]}
    assert auth_config == auth


async def test_pull_without_tag_pulls_all_tags(backend, resolver):
    await _run(_workflow(backend, resolver), _pull_request(tag=""))

    assert resolver.requests == ["nginx:"]
    assert backend.called("pull")[0][:2] == ("myreg.io/library/nginx", "")
    assert backend.called("tag") == [("myreg.io/library/nginx", "nginx", "")]
    assert backend.called("delete") == [("myreg.io/library/nginx", False, True)]


async def test_pull_error_after_flush_is_appended(backend, resolver):
    backend.pull_error = BackendError("unexpected EOF")

    messages = await _run(_workflow(backend, resolver), _pull_request(tag="latest"))

    assert messages[0] == {"status": "Pulling from library/nginx"}
    assert messages[-1] == {
        "errorDetail": {"message": "unexpected EOF"},
        "error": "unexpected EOF",
    }
    # Bookkeeping still ran
    assert len(backend.called("tag")) == 1
    assert len(backend.called("delete")) == 1


async def test_pull_error_before_flush_is_raised(backend, resolver):
    backend.progress = []
    backend.pull_error = BackendError("repository does not exist", status_code=404)

    with pytest.raises(BackendError, match="repository does not exist"):
        await _run(_workflow(backend, resolver), _pull_request(tag="latest"))

    assert len(backend.called("tag")) == 1


async def test_retag_and_delete_failures_are_swallowed(backend, resolver):
    backend.tag_error = BackendError("no such image")
    backend.delete_error = BackendError("conflict")

    messages = await _run(_workflow(backend, resolver), _pull_request(tag="latest"))

    assert messages == [{"status": "Pulling from library/nginx"}]
    # A failed retag reports no destination, so the intermediate tag is removed
    assert backend.called("delete") == [("myreg.io/library/nginx:latest", False, True)]


async def test_retag_reporting_source_skips_delete(backend, resolver):
    backend.tag_result = "myreg.io/library/nginx:latest"

    await _run(_workflow(backend, resolver), _pull_request(tag="latest"))

    assert backend.called("delete") == []


async def test_invalid_platform_fails_before_backend(backend, resolver):
    with pytest.raises(InvalidParameterError):
        await _run(
            _workflow(backend, resolver),
            _pull_request(platform="linux/*"),
        )

    assert backend.calls == []
    assert resolver.requests == []


async def test_platform_ignored_on_old_api_version(backend, resolver):
    request = _pull_request(platform="windows/amd64", api_version="1.31")

    await _run(_workflow(backend, resolver), request)

    assert backend.called("pull")[0][2] is None


async def test_unsupported_reference_is_rejected(backend, resolver):
    with pytest.raises(InvalidParameterError, match="invalid reference format"):
        await _run(_workflow(backend, resolver), _pull_request(from_image="a/b/c/d"))

    assert backend.calls == []


async def test_import_bypasses_resolution(backend, resolver):
    async def body():
        yield b"rootfs"

    request = CreateImageRequest(
        api_version="1.41",
        from_src="-",
        repo="imported",
        tag="v1",
        message="initial",
        changes=["CMD sh"],
        platform="linux/amd64",
    )

    messages = await _run(_workflow(backend, resolver), request, body())

    assert resolver.requests == []
    assert backend.called("pull") == []
    assert backend.called("import_image") == [
        ("-", "imported", "linux", "v1", "initial", b"rootfs", ["CMD sh"])
    ]
    assert messages == [{"status": "sha256:imported"}]


async def test_import_error_before_flush_is_raised(backend, resolver):
    backend.import_error = BackendError("invalid tar header")
    request = CreateImageRequest(api_version="1.41", from_src="http://example.com/a.tar")

    with pytest.raises(BackendError, match="invalid tar header"):
        await _run(_workflow(backend, resolver), request)


async def test_output_closed_after_validation_error(backend, resolver):
    output = StreamingOutput()
    workflow = _workflow(backend, resolver)

    with pytest.raises(InvalidParameterError):
        await stream_operation(
            lambda out: workflow.create(_pull_request(platform="bogus"), None, out)
        )

    with pytest.raises(InvalidParameterError):
        await workflow.create(_pull_request(platform="bogus"), None, output)
    assert not output.flushed
