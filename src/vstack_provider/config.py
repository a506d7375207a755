"""Provider connection configuration.

Example:
    ```python
    from vstack_provider import ProviderConfig, VStackClient

    config = ProviderConfig(
        host="https://vstack.example.com",
        username="admin",
        password="secret",
    )
    async with VStackClient(config) as client:
        vm = await client.vm_get(42)

    # Or from VSTACK_HOST / VSTACK_USERNAME / VSTACK_PASSWORD
    config = ProviderConfig.from_settings()
    ```
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from vstack_provider import constants
from vstack_provider.settings import Settings


class ProviderConfig(BaseModel):
    """Connection parameters for a vStack API endpoint.

    Attributes:
        host: Base URL of the vStack API (scheme + host, no path).
            A trailing slash is stripped.
        username: Account used for the `auth` handshake.
        password: Account password. Never logged.
        timeout_seconds: HTTP timeout per request. Default: 30.
        verify_tls: Verify the server certificate. Default: True.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    host: str = Field(min_length=1, description="vStack API base URL")
    username: str = Field(min_length=1, description="API account name")
    password: SecretStr = Field(description="API account password")
    timeout_seconds: float = Field(
        default=constants.DEFAULT_TIMEOUT_SECONDS,
        gt=0,
        le=600,
        description="HTTP timeout per request",
    )
    verify_tls: bool = Field(default=True, description="Verify server TLS certificate")

    @field_validator("host")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v:
            raise ValueError("host cannot be empty")
        return v

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ProviderConfig:
        """Build a config from VSTACK_* environment variables."""
        settings = settings or Settings()
        return cls(
            host=settings.host,
            username=settings.username,
            password=settings.password,
            timeout_seconds=settings.timeout_seconds,
            verify_tls=settings.verify_tls,
        )
