"""
Agent Authentication

Unified "host user OR agent token" guard for host endpoints.

Decision order:
1. A host user already signed in -> allow
2. Authorization: LlamaBot <token> with a valid token:
   - operation allow-listed -> resolve the token's user, sign it in, allow
   - otherwise -> ForbiddenOperation naming the missing allow-list entry
3. Anything else (no header, other scheme, invalid or expired token)
   -> NotAuthenticated, so the host's ordinary auth path handles it
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from fastapi import HTTPException, Request

from llamabot_relay.auth.capabilities import CapabilityAllowList, default_allow_list
from llamabot_relay.auth.hooks import HostHooks, RequestContext
from llamabot_relay.auth.token import SessionTokenSigner, TokenClaims
from llamabot_relay.errors import ForbiddenOperation, InvalidSignature, NotAuthenticated

logger = logging.getLogger(__name__)

AUTH_SCHEME = "LlamaBot"


class AuthMethod(str, Enum):
    """How a request was authenticated."""
    USER = "user"
    AGENT = "agent"


@dataclass
class AuthResult:
    """Outcome of a successful authentication."""
    method: AuthMethod
    user: Any | None = None
    claims: TokenClaims | None = None

    @property
    def is_agent(self) -> bool:
        return self.method == AuthMethod.AGENT


def parse_authorization(authorization: str | None) -> str | None:
    """Return the token of a "LlamaBot <token>" header, or None."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme != AUTH_SCHEME or not token:
        return None
    return token


class AgentAuthenticator:
    """
    Authenticates host requests made either by a user or by an agent.

    The allow-list is consulted on every agent-authenticated call.
    """

    def __init__(
        self,
        signer: SessionTokenSigner,
        allow_list: CapabilityAllowList | None = None,
        hooks: HostHooks | None = None,
    ):
        self._signer = signer
        self._allow_list = allow_list if allow_list is not None else default_allow_list
        self._hooks = hooks or HostHooks()

    def verify_agent_token(self, authorization: str | None) -> TokenClaims | None:
        """Return the claims of a valid agent token header, else None."""
        token = parse_authorization(authorization)
        logger.debug(
            f"[LlamaBot] auth header token = {token[:8] + '...' if token else None}"
        )
        if token is None:
            return None
        try:
            return self._signer.verify(token)
        except InvalidSignature:
            return None

    def is_agent_request(self, authorization: str | None) -> bool:
        """True if the header carries a valid agent token."""
        return self.verify_agent_token(authorization) is not None

    def authenticate(
        self,
        context: RequestContext,
        authorization: str | None,
        endpoint_group: str,
        operation: str,
    ) -> AuthResult:
        """
        Authenticate a request to a host operation.

        Raises:
            ForbiddenOperation: Valid agent token, operation not allow-listed
            NotAuthenticated: No signed-in user and no usable agent token
        """
        user = self._hooks.current_user_resolver(context)
        if user is not None:
            return AuthResult(method=AuthMethod.USER, user=user)

        claims = self.verify_agent_token(authorization)
        if claims is not None:
            if not self._allow_list.is_allowed(endpoint_group, operation):
                error = ForbiddenOperation(endpoint_group, operation)
                logger.warning(f"[LlamaBot] {error}")
                raise error

            agent_user = self._hooks.user_resolver(claims.user_id)
            if not self._hooks.sign_in_method(context, agent_user):
                logger.warning(
                    f"[LlamaBot] Sign-in failed for agent session {claims.session_id}"
                )
                raise NotAuthenticated("Agent sign-in failed")
            return AuthResult(method=AuthMethod.AGENT, user=agent_user, claims=claims)

        raise NotAuthenticated()


def require_user_or_agent(
    authenticator: AgentAuthenticator,
    endpoint_group: str,
    operation: str,
):
    """
    Build a FastAPI dependency guarding a host endpoint.

    Usage:
        guard = require_user_or_agent(authenticator, "pages", "update")

        @app.post("/pages/{page_id}")
        async def update(page_id: int, auth: AuthResult = Depends(guard)):
            ...
    """

    async def dependency(request: Request) -> AuthResult:
        try:
            return authenticator.authenticate(
                request.scope,
                request.headers.get("Authorization"),
                endpoint_group,
                operation,
            )
        except ForbiddenOperation as e:
            raise HTTPException(status_code=403, detail=str(e))
        except NotAuthenticated as e:
            raise HTTPException(status_code=401, detail=e.reason)

    return dependency
