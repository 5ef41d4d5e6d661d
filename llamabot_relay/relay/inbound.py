"""
Inbound Adapter

Turns a client chat message into the upstream "state payload" and writes it
to the session's upstream connection.

The upstream agent validates the payload against its graph state and embeds
an error in its reply (instead of rejecting the call) when a field is
misnamed, so the default builder keeps the exact field names. Hosts with
custom agent graphs register their own builder factory at start-up.
"""

import logging
from collections.abc import Callable
from typing import Any, Protocol
from uuid import uuid4

from pydantic import BaseModel, Field

from llamabot_relay.auth.hooks import HostHooks, RequestContext, user_id_of
from llamabot_relay.auth.token import SessionTokenSigner
from llamabot_relay.prompts import PromptProvider
from llamabot_relay.upstream.connection import UpstreamConnection

logger = logging.getLogger(__name__)

DEFAULT_THREAD_ID = "global_thread_id"
DEFAULT_AGENT_NAME = "llamabot"


class StatePayload(BaseModel):
    """Message sent upstream for one chat turn."""
    message: str = Field(
        ...,
        description="User-submitted text"
    )
    thread_id: str = Field(
        default=DEFAULT_THREAD_ID,
        description="Conversation continuity key"
    )
    api_token: str = Field(
        ...,
        description="Signed session token the agent uses to call back into the host"
    )
    agent_prompt: str = Field(
        ...,
        description="System instructions for the agent"
    )
    agent_name: str = Field(
        default=DEFAULT_AGENT_NAME,
        description="Upstream agent graph to invoke"
    )


class StateBuilder(Protocol):
    def build(self) -> StatePayload | dict[str, Any]: ...


StateBuilderFactory = Callable[..., StateBuilder]


class AgentStateBuilder:
    """
    Default builder mapping a chat message onto the llamabot agent state.

    Args:
        params: Message received from the client ({"message", "thread_id"?})
        context: Relay-provided values (thread_id, api_token, agent_prompt, agent_name)
    """

    def __init__(self, params: dict[str, Any], context: dict[str, Any]):
        self.params = params
        self.context = context

    def build(self) -> StatePayload:
        return StatePayload(
            message=self.params.get("message"),
            thread_id=self.context.get("thread_id") or DEFAULT_THREAD_ID,
            api_token=self.context["api_token"],
            agent_prompt=self.context["agent_prompt"],
            agent_name=self.context.get("agent_name") or DEFAULT_AGENT_NAME,
        )


class StateBuilderRegistry:
    """
    Holds the default builder factory and an optional host override.

    The host registers its factory once at start-up; relays resolve the
    factory when a session is created and keep it for the session's lifetime.
    """

    def __init__(self, default: StateBuilderFactory = AgentStateBuilder):
        self._default = default
        self._override: StateBuilderFactory | None = None

    def register(self, factory: StateBuilderFactory) -> None:
        self._override = factory
        logger.info(f"State builder registered: {getattr(factory, '__name__', factory)!r}")

    def reset(self) -> None:
        self._override = None

    def resolve(self) -> StateBuilderFactory:
        return self._override or self._default


# Process-wide registry used when a relay is not given one explicitly
default_state_builders = StateBuilderRegistry()


class InboundAdapter:
    """
    Builds state payloads and writes them upstream.

    One adapter serves one relay session; its builder factory is fixed at
    construction.
    """

    def __init__(
        self,
        signer: SessionTokenSigner,
        prompts: PromptProvider,
        hooks: HostHooks | None = None,
        builder_factory: StateBuilderFactory | None = None,
        agent_name: str = DEFAULT_AGENT_NAME,
    ):
        self._signer = signer
        self._prompts = prompts
        self._hooks = hooks or HostHooks()
        self._builder_factory = builder_factory or default_state_builders.resolve()
        self._agent_name = agent_name

    def build_payload(
        self,
        data: dict[str, Any],
        request_context: RequestContext,
    ) -> dict[str, Any]:
        """
        Build the upstream payload for a client message.

        A fresh token is issued per message, scoped to a newly generated
        session id and the current host user (if any).
        """
        user = self._hooks.current_user_resolver(request_context)
        api_token = self._signer.issue(uuid4().hex, user_id=user_id_of(user))
        context = {
            "thread_id": data.get("thread_id") or DEFAULT_THREAD_ID,
            "api_token": api_token,
            "agent_prompt": self._prompts.text(),
            "agent_name": self._agent_name,
        }
        state = self._builder_factory(params=data, context=context).build()
        if isinstance(state, StatePayload):
            return state.model_dump()
        return dict(state)

    async def send(
        self,
        connection: UpstreamConnection,
        data: dict[str, Any],
        request_context: RequestContext,
    ) -> dict[str, Any]:
        """Build the payload and write it upstream; returns what was sent."""
        payload = self.build_payload(data, request_context)
        await connection.send_frame(payload)
        logger.info(
            f"Relayed message upstream (session: {connection.connection_id}, "
            f"thread: {payload.get('thread_id')})"
        )
        return payload
