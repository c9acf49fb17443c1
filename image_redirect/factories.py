from functools import lru_cache

from image_redirect.packages.engine import DockerEngineBackend, EngineConfig, ImageBackend
from image_redirect.packages.reference import ReferenceRewriter
from image_redirect.packages.registry_resolver import RegistryResolver, ResolverConfig
from image_redirect.services.image_create_service import PullRetagWorkflow
from image_redirect.settings import settings


@lru_cache
def backend_factory() -> ImageBackend:
    return DockerEngineBackend(
        EngineConfig(
            socket_path=settings.DOCKER_SOCKET_PATH,
            api_version=settings.DOCKER_ENGINE_API_VERSION,
            connect_timeout=settings.DOCKER_CONNECT_TIMEOUT,
        )
    )


@lru_cache
def resolver_factory() -> RegistryResolver:
    return RegistryResolver(
        ResolverConfig(
            socket_path=settings.RESOLVER_SOCKET_PATH,
            host=settings.RESOLVER_HOST,
            default_domain=settings.DEFAULT_REGISTRY_DOMAIN,
            max_domain_bytes=settings.RESOLVER_MAX_DOMAIN_BYTES,
            timeout=settings.RESOLVER_TIMEOUT,
        )
    )


@lru_cache
def rewriter_factory() -> ReferenceRewriter:
    return ReferenceRewriter(default_namespace=settings.DEFAULT_USER_NAMESPACE)


def workflow_factory(
    backend: ImageBackend, resolver: RegistryResolver
) -> PullRetagWorkflow:
    return PullRetagWorkflow(
        backend=backend,
        resolver=resolver,
        rewriter=rewriter_factory(),
        supported_os=settings.SUPPORTED_PLATFORM_OS,
        min_platform_api_version=settings.MIN_PLATFORM_API_VERSION,
    )
