"""Configuration management for neko-request."""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

LOG_ENABLED_ENV_VAR = "NEKO_REQUEST_LOG_ENABLED"


def _log_enabled_from_env() -> bool:
    return os.environ.get(LOG_ENABLED_ENV_VAR, "").strip().lower() in (
        "1",
        "true",
        "yes",
        "on",
    )


class RequestClientConfig(BaseModel):
    """Immutable configuration for one ``RequestClient`` instance."""

    model_config = ConfigDict(frozen=True)

    base_url: str = Field(
        default="http://localhost:48911",
        description="Base URL every relative request path is joined to",
    )
    return_data_only: bool = Field(
        default=True,
        description="Return only the decoded body instead of the full response envelope",
    )
    request_timeout: float = Field(
        default=30.0, gt=0, description="Transport timeout per request in seconds"
    )
    refresh_timeout: float = Field(
        default=15.0, gt=0, description="Upper bound on one token refresh in seconds"
    )
    refresh_path: str = Field(
        default="/api/auth/refresh",
        description="Path of the token refresh endpoint used by the HTTP exchanger",
    )
    log_requests: bool = Field(
        default_factory=_log_enabled_from_env,
        description="Log one line per completed exchange (NEKO_REQUEST_LOG_ENABLED)",
    )
    raise_for_status: bool = Field(
        default=False,
        description="Raise HTTPStatusError for 4xx/5xx responses other than 401",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must start with http:// or https://, got '{v}'")
        return v.rstrip("/")

    @field_validator("refresh_path")
    @classmethod
    def validate_refresh_path(cls, v: str) -> str:
        v = v.strip()
        return v if v.startswith("/") else f"/{v}"


class ConfigManager:
    """Manages configuration loading and saving."""

    DEFAULT_CONFIG_PATH = Path(".neko-request/config.json")

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path or self.DEFAULT_CONFIG_PATH)
        self._config: Optional[RequestClientConfig] = None

    def load(self) -> RequestClientConfig:
        """Load configuration from file or create default."""
        if self.config_path.exists():
            try:
                with open(self.config_path, "r") as f:
                    data = json.load(f)
                self._config = RequestClientConfig(**data)
            except Exception as e:
                raise ValueError(f"Failed to load config from {self.config_path}: {e}")
        else:
            self._config = RequestClientConfig()

        return self._config

    def save(self, config: Optional[RequestClientConfig] = None) -> None:
        """Save configuration to file."""
        if config is None:
            config = self._config

        if config is None:
            raise ValueError("No configuration to save")

        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, "w") as f:
            json.dump(config.model_dump(), f, indent=2)
        self._config = config
        logger.debug(f"Configuration saved to {self.config_path}")

    def update(self, **changes) -> RequestClientConfig:
        """Return a copy of the loaded configuration with ``changes`` applied and save it."""
        current = self._config or self.load()
        updated = RequestClientConfig(**{**current.model_dump(), **changes})
        self.save(updated)
        return updated
