"""Runtime configuration from environment variables."""

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from vstack_provider import constants


class Settings(BaseSettings):
    """Provider connection settings from the environment.

    All settings can be overridden via environment variables with VSTACK_ prefix.
    Example: VSTACK_HOST=https://vstack.example.com
    """

    model_config = SettingsConfigDict(
        env_prefix="VSTACK_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    host: str = ""
    username: str = ""
    password: SecretStr = SecretStr("")

    timeout_seconds: float = constants.DEFAULT_TIMEOUT_SECONDS
    verify_tls: bool = True
