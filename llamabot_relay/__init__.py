# LlamaBot Relay
# Bridges browser chat sessions to a remote LlamaBot agent service

__version__ = "0.1.0"

from llamabot_relay.config import RelaySettings, settings_from_env
from llamabot_relay.errors import (
    RelayError,
    UpstreamConnectionError,
    UpstreamIOError,
    FrameDecodeError,
    InvalidSignature,
    ForbiddenOperation,
    NotAuthenticated,
)
from llamabot_relay.auth import (
    SessionTokenSigner,
    HostHooks,
    llama_bot_allow,
    require_user_or_agent,
)
from llamabot_relay.relay import RelayManager, SessionRelay, default_state_builders

__all__ = [
    "__version__",
    # Configuration
    "RelaySettings",
    "settings_from_env",
    # Errors
    "RelayError",
    "UpstreamConnectionError",
    "UpstreamIOError",
    "FrameDecodeError",
    "InvalidSignature",
    "ForbiddenOperation",
    "NotAuthenticated",
    # Host integration
    "SessionTokenSigner",
    "HostHooks",
    "llama_bot_allow",
    "require_user_or_agent",
    "default_state_builders",
    # Relay
    "RelayManager",
    "SessionRelay",
]
