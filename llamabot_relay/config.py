"""
Relay Configuration

Environment-based settings for the relay.

Environment variables:
    LLAMABOT_WEBSOCKET_URL: Upstream agent WebSocket URL (no default; unset disables the relay)
    LLAMABOT_API_URL: Upstream HTTP base URL for one-shot calls and lookups
    LLAMABOT_SECURE: "true" to connect over wss:// instead of ws://
    LLAMABOT_ENV: "production" (default), "staging" or "development"
    LLAMABOT_CA_BUNDLE: CA bundle used to verify the upstream in production
    LLAMABOT_CLIENT_CERT / LLAMABOT_CLIENT_KEY: client certificate for staging
    LLAMABOT_SECRET_KEY: Secret used to sign session tokens
    LLAMABOT_TOKEN_TTL: Token lifetime in seconds (default 1800)
    LLAMABOT_HEARTBEAT_INTERVAL: Seconds between upstream pings (default 30)
    LLAMABOT_AGENT_NAME: Upstream agent graph to invoke (default "llamabot")
    LLAMABOT_AGENT_PROMPT_PATH: Text file holding the agent system prompt
    LLAMABOT_ENABLE_CONSOLE_TOOL: "true" to enable the console tool (development only)
    LLAMABOT_LOG_LEVEL: Root log level (default INFO)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum


class RelayEnvironment(str, Enum):
    """Deployment environment, drives the upstream TLS policy."""
    PRODUCTION = "production"
    STAGING = "staging"
    DEVELOPMENT = "development"


@dataclass
class RelaySettings:
    """
    Configuration for the relay.

    Attributes:
        websocket_url: Upstream duplex endpoint, None when not configured
        api_url: Upstream HTTP base URL
        secure: Use wss:// for the upstream connection
        environment: Deployment environment
        ca_bundle: Path to the CA bundle for production verification
        client_cert: Client certificate path (staging)
        client_key: Client key path (staging)
        secret_key: Token signing secret, None to generate one per process
        token_ttl_seconds: Lifetime of issued session tokens
        heartbeat_interval_seconds: Interval between upstream pings
        agent_name: Default upstream agent selector
        agent_prompt_path: Path of the agent system prompt
        enable_console_tool: Local command-execution capability flag
        channel_queue_size: Outbound queue depth per client connection
        log_level: Root log level name
    """
    websocket_url: str | None = None
    api_url: str = "http://localhost:8000"
    secure: bool = False
    environment: RelayEnvironment = RelayEnvironment.PRODUCTION
    ca_bundle: str | None = None
    client_cert: str | None = None
    client_key: str | None = None
    secret_key: str | None = None
    token_ttl_seconds: int = 30 * 60
    heartbeat_interval_seconds: float = 30.0
    agent_name: str = "llamabot"
    agent_prompt_path: str = "llama_bot/prompts/agent_prompt.txt"
    enable_console_tool: bool = False
    channel_queue_size: int = 200
    log_level: str = "INFO"

    @property
    def console_tool_enabled(self) -> bool:
        """The console tool is never enabled outside development."""
        return self.enable_console_tool and self.environment == RelayEnvironment.DEVELOPMENT


def _parse_environment(value: str) -> RelayEnvironment:
    """Map an environment name to a RelayEnvironment, defaulting to production."""
    try:
        return RelayEnvironment(value.strip().lower())
    except ValueError:
        return RelayEnvironment.PRODUCTION


def settings_from_env() -> RelaySettings:
    """Create RelaySettings from environment variables."""
    return RelaySettings(
        websocket_url=os.getenv("LLAMABOT_WEBSOCKET_URL") or None,
        api_url=os.getenv("LLAMABOT_API_URL", "http://localhost:8000"),
        secure=os.getenv("LLAMABOT_SECURE", "").lower() == "true",
        environment=_parse_environment(os.getenv("LLAMABOT_ENV", "production")),
        ca_bundle=os.getenv("LLAMABOT_CA_BUNDLE") or None,
        client_cert=os.getenv("LLAMABOT_CLIENT_CERT") or None,
        client_key=os.getenv("LLAMABOT_CLIENT_KEY") or None,
        secret_key=os.getenv("LLAMABOT_SECRET_KEY") or None,
        token_ttl_seconds=int(os.getenv("LLAMABOT_TOKEN_TTL", str(30 * 60))),
        heartbeat_interval_seconds=float(os.getenv("LLAMABOT_HEARTBEAT_INTERVAL", "30")),
        agent_name=os.getenv("LLAMABOT_AGENT_NAME", "llamabot"),
        agent_prompt_path=os.getenv(
            "LLAMABOT_AGENT_PROMPT_PATH", "llama_bot/prompts/agent_prompt.txt"
        ),
        enable_console_tool=os.getenv("LLAMABOT_ENABLE_CONSOLE_TOOL", "").lower() == "true",
        channel_queue_size=int(os.getenv("LLAMABOT_CHANNEL_QUEUE_SIZE", "200")),
        log_level=os.getenv("LLAMABOT_LOG_LEVEL", "INFO").upper(),
    )
