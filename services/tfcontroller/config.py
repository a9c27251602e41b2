"""
Configuration management for the Terraform controller.

Non-secret configuration loaded from YAML file, secrets from environment variables.
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def yaml_config_settings_source() -> dict[str, Any]:
    """Load configuration from YAML file."""
    config_path = Path(os.environ.get("TFCONTROLLER_CONFIG_FILE", "/etc/tfcontroller/config.yaml"))
    if config_path.exists():
        with open(config_path) as f:
            return yaml.safe_load(f) or {}
    return {}


# --- Custom Resource ---


class CRDConfig(BaseModel):
    """Coordinates of the Terraform custom resource."""

    group: str = Field(default="alustan.io")
    version: str = Field(default="v1alpha1")
    plural: str = Field(default="terraforms")


# --- Reconciliation ---


class ReconcileConfig(BaseModel):
    """Periodic reconciliation loop."""

    enabled: bool = Field(default=True, description="Run the periodic reconcile loop")
    interval_seconds: int = Field(default=60, description="Seconds between reconcile passes")
    max_concurrent_syncs: int = Field(
        default=10,
        description="Upper bound on syncs running at once from a single reconcile pass",
    )


class RetryConfig(BaseModel):
    """Retry policy for the apply/destroy stage."""

    max_attempts: int = Field(default=10)
    delay_seconds: float = Field(default=60.0, description="Fixed delay between attempts")


# --- Runner Pods ---


class RunnerConfig(BaseModel):
    """Build and run pod configuration."""

    kaniko_image: str = Field(default="gcr.io/kaniko-project/executor:v1.23.1-debug")
    base_image: str = Field(
        default="alpine/terragrunt:1.9.8",
        description="Base image for the rendered Dockerfile",
    )
    repo_root: str = Field(
        default="/tmp",
        description="Host directory holding per-resource repository checkouts",
    )
    cache_storage_size: str = Field(default="1Gi")
    cache_storage_class: str = Field(default="")
    service_account_name: str = Field(default="")
    deletion_timeout_seconds: int = Field(default=120)
    deletion_poll_seconds: float = Field(default=2.0)
    status_poll_seconds: float = Field(default=5.0)
    build_timeout_seconds: int = Field(default=1800)
    run_timeout_seconds: int = Field(default=3600)
    wait_for_run_completion: bool = Field(
        default=True,
        description="Watch the run pod to a terminal phase instead of treating "
        "a successful submission as success",
    )


# --- Main Settings ---


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="TFCONTROLLER_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="tfcontroller")
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=True, description="JSON logging in production")
    host: str = Field(default="0.0.0.0")  # noqa: S104
    port: int = Field(default=8080)

    crd: CRDConfig = Field(default_factory=CRDConfig)
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)

    # Secrets, injected by the deployment under their historical names
    git_ssh_secret: str = Field(
        default_factory=lambda: os.environ.get("GIT_SSH_SECRET", ""),
        description="Path to the SSH private key used for git checkouts",
    )
    container_registry_secret: str = Field(
        default_factory=lambda: os.environ.get("CONTAINER_REGISTRY_SECRET", ""),
        description="Base64-encoded docker config JSON for the image registry",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        """Customize settings sources: env vars override YAML config."""
        return (
            init_settings,
            env_settings,
            yaml_config_settings_source,
            dotenv_settings,
            file_secret_settings,
        )


# Global settings instance
settings = Settings()
