"""Server settings."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PORT = 8000


class PizzazSettings(BaseSettings):
    """Pizzaz server settings.

    All settings can be configured via environment variables with the prefix
    PIZZAZ_, e.g. PIZZAZ_LOG_LEVEL=DEBUG. The port is also read from the plain
    PORT variable.
    """

    model_config = SettingsConfigDict(
        env_prefix="PIZZAZ_",
        env_file=".env",
        extra="ignore",
    )

    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # HTTP settings
    host: str = "0.0.0.0"
    port: int = Field(default=DEFAULT_PORT, validation_alias=AliasChoices("PORT", "PIZZAZ_PORT", "port"))
    sse_path: str = "/mcp"
    message_path: str = "/mcp/messages"

    @field_validator("port", mode="before")
    @classmethod
    def _fallback_port(cls, value: Any) -> Any:
        """Fall back to the default port when the value is not a number."""
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        try:
            return int(str(value).strip())
        except ValueError:
            return DEFAULT_PORT
