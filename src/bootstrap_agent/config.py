"""Configuration management for Bootstrap Agent."""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConnectivityMode(Enum):
    """Which connectivity classes are eligible for an update run."""

    RESTRICTED = "restricted"
    ANY = "any"


class Settings(BaseSettings):
    """Agent settings loaded from ``BOOTSTRAP_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BOOTSTRAP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Target
    target_package: str = Field(
        default="com.example.ai_translation_system",
        min_length=1,
        description="Package identifier of the managed application",
    )
    manifest_url: str = Field(
        default="https://2003rk.github.io/ai_translation_apk/version.json",
        description="URL of the remote version manifest",
    )

    # Connectivity
    connectivity_mode: ConnectivityMode = Field(
        default=ConnectivityMode.ANY,
        description="'restricted' accepts only the restricted transport, 'any' accepts all",
    )
    restricted_transport: str = Field(
        default="wifi", description="Transport treated as restricted-class"
    )
    connectivity_probe_address: str = Field(
        default="1.1.1.1", description="Address used to discover the egress route"
    )

    # Timing (seconds)
    poll_interval_seconds: float = Field(default=30.0, ge=0)
    retry_backoff_seconds: float = Field(default=60.0, ge=0)
    http_timeout_seconds: float = Field(default=15.0, gt=0)
    privileged_grace_seconds: float = Field(default=10.0, ge=0)
    interactive_grace_seconds: float = Field(default=120.0, ge=0)

    # Artifact storage
    download_dir: str = Field(default="data/artifacts", description="Private artifact directory")
    artifact_file_name: str = Field(default="target.apk", min_length=1)

    # Installer
    privileged_install: bool = Field(
        default=True, description="Allow the non-interactive privileged install path"
    )
    file_provider_authority: str | None = Field(
        default=None, description="Content-URI authority used for interactive installs"
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("manifest_url")
    @classmethod
    def _check_manifest_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("manifest_url must be an http(s) URL")
        return value

    @field_validator("restricted_transport")
    @classmethod
    def _check_restricted_transport(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in {"wifi", "cellular", "ethernet"}:
            raise ValueError("restricted_transport must be one of wifi, cellular, ethernet")
        return value

    @field_validator("artifact_file_name")
    @classmethod
    def _check_artifact_file_name(cls, value: str) -> str:
        if Path(value).name != value:
            raise ValueError("artifact_file_name must be a bare file name")
        return value

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def artifact_path(self) -> Path:
        """Full path of the single artifact file."""
        return Path(self.download_dir) / self.artifact_file_name


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
