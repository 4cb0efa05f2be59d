"""Configuration and environment for node-snapshot."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Snapshot settings loaded from environment and .env."""

    model_config = SettingsConfigDict(
        env_prefix="NODE_SNAPSHOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Kubernetes
    kubeconfig: Path | None = Field(
        default=None,
        description="Path to kubeconfig; uses KUBECONFIG env or default location if unset",
    )
    context: str | None = Field(default=None, description="Kubernetes context to use")
    namespace: str = Field(default="gpu-operator", description="Namespace for agent deployment")

    # Output
    output: str | None = Field(
        default=None,
        description="Output destination: file path, '-' for stdout, or cm://namespace/name",
    )
    format: Literal["json", "yaml", "table"] = Field(default="json", description="Output format")

    # Local collection
    collection_timeout: float = Field(
        default=300.0,
        gt=0,
        description="Seconds allowed for all collectors to finish",
    )
    systemd_services: list[str] = Field(
        default_factory=lambda: ["containerd.service", "docker.service", "kubelet.service"],
        description="systemd units inspected by the SystemD collector",
    )

    # Agent
    image: str = Field(
        default="ghcr.io/node-snapshot/node-snapshot:latest",
        description="Container image for the agent Job",
    )
    job_name: str = Field(default="node-snapshot", description="Agent Job name")
    service_account_name: str = Field(default="node-snapshot", description="Agent ServiceAccount name")
    job_timeout: float = Field(default=300.0, gt=0, description="Seconds to wait for Job completion")
    pod_ready_timeout: float = Field(default=60.0, gt=0, description="Seconds to wait for the agent pod to run")
    cleanup_timeout: float = Field(default=30.0, gt=0, description="Seconds allowed for cleanup")
    cleanup_policy: Literal["all", "retain-rbac"] = Field(
        default="all",
        description="'all' removes Job and RBAC; 'retain-rbac' keeps RBAC for reuse",
    )
    privileged: bool = Field(
        default=True,
        description="Run the agent privileged (required by GPU and SystemD collectors)",
    )


def get_settings() -> Settings:
    """Return validated settings instance."""
    return Settings()
