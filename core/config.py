"""
Configuration management for FlowGate.

Centralizes all configuration including:
- Account store and ledger database
- Flow sandbox and task proxy endpoints
- Pool quota defaults
- Polling and reconciliation windows
"""

import os
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class DatabaseConfig:
    """Database configuration (accounts + generation jobs ledger)."""
    url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", ""))
    pool_min_size: int = 2
    pool_max_size: int = 10


@dataclass
class FlowConfig:
    """Upstream endpoints for the Flow sandbox and the task proxy."""

    # Direct sandbox API (upload, upscale, operation status)
    api_base: str = field(
        default_factory=lambda: os.getenv("FLOW_API_BASE", "https://aisandbox-pa.googleapis.com")
    )

    # Task proxy that relays generation requests
    proxy_create_url: str = field(default_factory=lambda: os.getenv("FLOW_PROXY_CREATE_URL", ""))
    proxy_status_url: str = field(default_factory=lambda: os.getenv("FLOW_PROXY_STATUS_URL", ""))
    proxy_auth: str = field(default_factory=lambda: os.getenv("FLOW_PROXY_AUTH", ""))

    http_timeout: float = field(default_factory=lambda: float(os.getenv("FLOW_HTTP_TIMEOUT", "120")))

    # Browser-like headers expected by the sandbox API
    origin: str = "https://labs.google"
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/141.0.0.0 Safari/537.36"
    )
    tool: str = "PINHOLE"
    paygate_tier: str = "PAYGATE_TIER_TWO"


@dataclass
class PoolConfig:
    """Account pool quota settings."""
    # Used when an account row has no usage_limit of its own
    default_usage_limit: int = field(
        default_factory=lambda: int(os.getenv("ACCOUNT_DEFAULT_USAGE_LIMIT", "50"))
    )


@dataclass
class PollingConfig:
    """Client-side polling windows for the job watcher."""
    interval_seconds: float = 5.0
    max_name_attempts: int = 60     # ~5 minutes waiting in the proxy queue
    max_status_attempts: int = 120  # ~10 minutes of generation


@dataclass
class ReconciliationConfig:
    """Stuck job thresholds used by the refund sweep."""
    stuck_after_minutes: int = 15
    video_stuck_after_minutes: int = 60
    video_tool_ids: tuple = ("VideoGeneration",)


@dataclass
class ServerConfig:
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8787")))


@dataclass
class Config:
    """Main configuration class."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    flow: FlowConfig = field(default_factory=FlowConfig)
    pool: PoolConfig = field(default_factory=PoolConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls()

    def validate(self) -> list[str]:
        """Validate configuration and return list of issues."""
        issues = []

        if not self.database.url:
            issues.append("DATABASE_URL not configured")

        if not self.flow.proxy_create_url or not self.flow.proxy_status_url:
            issues.append("FLOW_PROXY_CREATE_URL / FLOW_PROXY_STATUS_URL not configured")

        if not self.flow.proxy_auth:
            issues.append("FLOW_PROXY_AUTH not configured (needed for generation)")

        return issues


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reload_config():
    """Reload configuration from environment."""
    global _config
    _config = Config.from_env()
