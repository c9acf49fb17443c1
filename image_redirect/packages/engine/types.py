"""Engine backend types and data structures."""

import base64
import json
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator

MetaHeaders = dict[str, list[str]]
"""Request headers prefixed with ``X-Meta-``, forwarded verbatim"""


@dataclass(frozen=True)
class EngineConfig:
    """Connection settings for the Docker Engine API.

    Attributes:
        socket_path: Unix socket of the engine (e.g., "/var/run/docker.sock")
        api_version: Optional API version path prefix (e.g., "1.41")
        connect_timeout: Seconds allowed for establishing the connection.
                         Reads are unbounded since pulls can take minutes.
    """

    socket_path: str
    api_version: str = ""
    connect_timeout: float = 30.0


class AuthConfig(BaseModel):
    """Registry credentials forwarded to the backend.

    Field names are matched case-insensitively, the way the engine decodes them.
    """

    model_config = ConfigDict(extra="ignore")

    username: str = ""
    password: str = ""
    auth: str = ""
    email: str = ""
    serveraddress: str = ""
    identitytoken: str = ""
    registrytoken: str = ""

    @model_validator(mode="before")
    @classmethod
    def lowercase_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {str(key).lower(): value for key, value in data.items()}
        return data

    @classmethod
    def from_header(cls, encoded: str) -> "AuthConfig":
        """Decode an ``X-Registry-Auth`` value (URL-safe base64 of JSON).

        Raises:
            ValueError: if the value is not valid base64 or JSON credentials
        """
        padded = encoded + "=" * (-len(encoded) % 4)
        try:
            raw = base64.urlsafe_b64decode(padded.encode())
            data = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise ValueError(f"invalid registry auth header: {e}") from e
        if data is None:
            return cls()
        return cls.model_validate(data)

    def is_empty(self) -> bool:
        return not any(self.model_dump().values())

    def encode(self) -> str:
        """Encode as an ``X-Registry-Auth`` header value."""
        payload = self.model_dump_json(exclude_defaults=True)
        return base64.urlsafe_b64encode(payload.encode()).decode()
