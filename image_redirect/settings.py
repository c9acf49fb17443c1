from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GeneralConfig(BaseSettings):
    DEFAULT_API_VERSION: str = "1.41"
    """API version assumed when the request path carries no /v<version> prefix"""

    MIN_PLATFORM_API_VERSION: str = "1.32"
    """Oldest API version for which the `platform` parameter is honoured"""

    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = ""


class ResolverConfig(BaseSettings):
    RESOLVER_SOCKET_PATH: str = "/tmp/server.sock"
    RESOLVER_HOST: str = "dockerd"
    RESOLVER_TIMEOUT: float = 10.0
    RESOLVER_MAX_DOMAIN_BYTES: int = 32
    """Longer domain names are truncated"""

    DEFAULT_REGISTRY_DOMAIN: str = "docker.io"
    DEFAULT_USER_NAMESPACE: str = "library"


class EngineConfig(BaseSettings):
    DOCKER_SOCKET_PATH: str = "/var/run/docker.sock"
    DOCKER_ENGINE_API_VERSION: str = ""
    DOCKER_CONNECT_TIMEOUT: float = 30.0

    SUPPORTED_PLATFORM_OS: list[str] = ["linux"]
    SEARCH_DEFAULT_LIMIT: int = 25

    @field_validator("DOCKER_ENGINE_API_VERSION")
    @classmethod
    def strip_version_prefix(cls, value: str) -> str:
        return value.lstrip("v")


class Settings(
    GeneralConfig,
    ResolverConfig,
    EngineConfig,
    BaseSettings,
):
    model_config = SettingsConfigDict(
        env_file=(".env", ".env.test"),
        extra="allow",
    )


settings = Settings()
