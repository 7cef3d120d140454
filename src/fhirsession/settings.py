"""Client settings, read from the environment."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class ClientSettings(BaseSettings):
    """fhirsession client settings.

    All settings can be configured via environment variables with the prefix
    FHIRSESSION_. For example, FHIRSESSION_TIMEOUT=60 sets timeout=60.0.
    """

    model_config = SettingsConfigDict(
        env_prefix="FHIRSESSION_",
        env_file=".env",
        extra="ignore",
    )

    log_level: LogLevel = "INFO"

    timeout: float = Field(30.0, gt=0, description="Timeout in seconds for requests against the FHIR server")
    follow_redirects: bool = True
    metadata_path: str = Field("metadata", description="Path of the capability statement, relative to the base URL")
    user_agent: str | None = None
