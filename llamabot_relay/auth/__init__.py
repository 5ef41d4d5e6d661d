# Agent Authentication
# Signed session tokens, capability allow-list and the user-or-agent guard

from llamabot_relay.auth.token import (
    DEFAULT_TOKEN_TTL,
    SessionTokenSigner,
    TokenClaims,
)
from llamabot_relay.auth.capabilities import (
    CapabilityAllowList,
    default_allow_list,
    llama_bot_allow,
)
from llamabot_relay.auth.hooks import HostHooks, user_id_of
from llamabot_relay.auth.agent_auth import (
    AUTH_SCHEME,
    AgentAuthenticator,
    AuthMethod,
    AuthResult,
    parse_authorization,
    require_user_or_agent,
)

__all__ = [
    "DEFAULT_TOKEN_TTL",
    "SessionTokenSigner",
    "TokenClaims",
    "CapabilityAllowList",
    "default_allow_list",
    "llama_bot_allow",
    "HostHooks",
    "user_id_of",
    "AUTH_SCHEME",
    "AgentAuthenticator",
    "AuthMethod",
    "AuthResult",
    "parse_authorization",
    "require_user_or_agent",
]
