"""
Host Hooks

Pluggable callables through which the relay reaches into the host
application's user model. The host replaces the defaults at start-up.

A request context is the ASGI scope of the current request or WebSocket
(any mutable mapping works).
"""

import logging
from collections.abc import Callable, MutableMapping
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

RequestContext = MutableMapping[str, Any]

SIGNED_IN_USER_KEY = "llamabot.user"


def _default_current_user_resolver(context: RequestContext) -> Any | None:
    user = context.get(SIGNED_IN_USER_KEY)
    if user is None:
        logger.debug(
            "No current user in request context. "
            "Implement a current_user_resolver to attach host users to agent sessions."
        )
    return user


def _default_user_resolver(user_id: Any) -> Any | None:
    logger.warning(
        "Implement a user_resolver! Agent tokens will act as anonymous callers "
        f"(user_id={user_id!r})"
    )
    return None


def _default_sign_in_method(context: RequestContext, user: Any | None) -> bool:
    context[SIGNED_IN_USER_KEY] = user
    return True


@dataclass
class HostHooks:
    """
    Host collaborators used by authentication and the relay.

    Attributes:
        current_user_resolver: (request_context) -> user or None
        user_resolver: (user_id) -> user or None
        sign_in_method: (request_context, user) -> True if signed in
    """
    current_user_resolver: Callable[[RequestContext], Any | None] = field(
        default=_default_current_user_resolver
    )
    user_resolver: Callable[[Any], Any | None] = field(default=_default_user_resolver)
    sign_in_method: Callable[[RequestContext, Any | None], bool] = field(
        default=_default_sign_in_method
    )


def user_id_of(user: Any | None) -> str | int | None:
    """
    Extract the identifier of a host user object (attribute or mapping key).

    Integer and string ids are returned as-is; any other id type (UUID,
    ObjectId, ...) is converted with str() so it can be signed into a token.
    """
    if user is None:
        return None
    if isinstance(user, dict):
        user_id = user.get("id")
    else:
        user_id = getattr(user, "id", None)
    if user_id is None or isinstance(user_id, (int, str)):
        return user_id
    return str(user_id)
