"""Configuration from environment: upstream snapshot, local pattern, deadline, logging."""

from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Git commit of https://github.com/raspberrypi/rpi-eeprom to take EEPROM updates from.
EEPROM_REF = "4c5aebdb200bc9a2ffd2a0158efffb9603c33be7"
DEFAULT_API_BASE_URL = "https://api.github.com"
DEFAULT_REPOSITORY = "raspberrypi/rpi-eeprom"
DEFAULT_PATH = "firmware-2711/latest"
DEFAULT_PATTERN = "*.bin"


class Settings(BaseSettings):
    """Settings from env (EEPROMSYNC_*). GitHub credentials come from GITHUB_USER / GITHUB_AUTH_TOKEN."""

    model_config = SettingsConfigDict(env_prefix="EEPROMSYNC_", extra="ignore")

    # Upstream snapshot
    api_base_url: str = DEFAULT_API_BASE_URL
    repository: str = DEFAULT_REPOSITORY
    path: str = DEFAULT_PATH
    ref: str = EEPROM_REF

    # Local directory
    pattern: str = DEFAULT_PATTERN

    # Fetch phase: one deadline for the whole batch
    fetch_deadline_seconds: float = 60.0
    max_workers: int = 8

    # Logging (empty log_file = stderr only; level DEBUG|INFO|WARNING|ERROR)
    log_level: str = "INFO"
    log_file: str = ""

    github_user: str = Field("", validation_alias=AliasChoices("GITHUB_USER", "github_user"))
    github_auth_token: str = Field(
        "", validation_alias=AliasChoices("GITHUB_AUTH_TOKEN", "github_auth_token")
    )

    @field_validator("api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("ref")
    @classmethod
    def _ref_not_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("ref must name a fixed snapshot")
        return v

    @field_validator("fetch_deadline_seconds")
    @classmethod
    def _deadline_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("fetch_deadline_seconds must be positive")
        return v

    @field_validator("max_workers")
    @classmethod
    def _workers_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_workers must be at least 1")
        return v

    def env_user_pass(self) -> Optional[str]:
        """'user:token' when both GITHUB_USER and GITHUB_AUTH_TOKEN are set, else None."""
        user = self.github_user.strip()
        token = self.github_auth_token.strip()
        if user and token:
            return f"{user}:{token}"
        return None


def get_settings(**overrides) -> Settings:
    """Return application settings; keyword overrides win over the environment."""
    return Settings(**overrides)
