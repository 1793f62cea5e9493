"""Configuration and environment for kube-lensy."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pipeline settings loaded from environment and .env."""

    model_config = SettingsConfigDict(
        env_prefix="KUBE_LENSY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # External tools
    kubectl_bin: str = Field(default="kubectl", description="kubectl executable")
    helm_bin: str = Field(default="helm", description="helm executable")
    context: str | None = Field(
        default=None,
        description="Kubernetes context to pin; uses kubectl's current context if unset",
    )
    namespace: str = Field(default="default", description="Default namespace for pod-scoped tools")

    # Timeouts (seconds), one per operation class
    context_timeout: float = Field(default=5.0, gt=0, description="Context/config queries")
    query_timeout: float = Field(default=30.0, gt=0, description="Resource list/get queries")
    log_timeout: float = Field(default=20.0, gt=0, description="One-shot log fetches")
    rollout_timeout: float = Field(default=10.0, gt=0, description="kubectl rollout status")

    # Result cache TTLs (seconds)
    cluster_list_ttl: float = Field(default=60.0, ge=0, description="Context list")
    namespace_list_ttl: float = Field(default=5.0, ge=0, description="Namespace list")
    pod_list_ttl: float = Field(default=5.0, ge=0, description="Pod list")
    tool_result_ttl: float = Field(default=5.0, ge=0, description="Diagnostic tool results")
    cache_max_entries: int = Field(default=512, ge=1)

    # Log tailing
    initial_tail_lines: int = Field(default=100, ge=0, description="Tail window of the follow process")
    poll_tail_lines: int = Field(default=50, ge=1, description="Tail window of the reconciliation poll")
    poll_interval: float = Field(default=2.0, gt=0, description="Seconds between reconciliation polls")
    flush_window: float = Field(
        default=0.02,
        ge=0,
        le=0.1,
        description="Coalescing window for pushed lines; never delays a line longer",
    )
    max_retained_lines: int = Field(default=500, ge=1, description="Lines kept per subscription")

    # Rule engine
    event_issue_limit: int = Field(default=10, ge=0, description="Most recent Warning events reported")
    restart_threshold: int = Field(default=5, ge=0, description="Restarts above this are an issue")
    troubleshoot_log_lines: int = Field(default=50, ge=1)
    analyze_log_lines: int = Field(default=100, ge=1)


def get_settings() -> Settings:
    """Return validated settings instance."""
    return Settings()
