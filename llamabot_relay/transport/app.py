"""
LlamaBot Relay Application

FastAPI application exposing the relay to browsers:
- WS   /ws/chat                      duplex chat session (one relay per socket)
- POST /agent/send_message           one-shot chat turn streamed as SSE
- GET  /agent/threads                upstream conversation list
- GET  /agent/chat-history/{id}      upstream conversation history
- GET  /health                       relay counters

Configuration is read from LLAMABOT_* environment variables (see
llamabot_relay.config). Environment variables can be loaded from a .env file
in the project root.

Host applications embed the relay by calling create_app() with their own
HostHooks and capability allow-list; the allow-list is frozen once start-up
completes.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta

from dotenv import load_dotenv
from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()

from llamabot_relay.auth.agent_auth import AgentAuthenticator
from llamabot_relay.auth.capabilities import CapabilityAllowList, default_allow_list
from llamabot_relay.auth.hooks import HostHooks
from llamabot_relay.auth.token import SessionTokenSigner
from llamabot_relay.config import RelaySettings, settings_from_env
from llamabot_relay.prompts import PromptProvider
from llamabot_relay.relay.inbound import StateBuilderRegistry, default_state_builders
from llamabot_relay.relay.manager import RelayManager
from llamabot_relay.relay.streaming import SSE_HEADERS, StreamingRequestAdapter
from llamabot_relay.transport.channel import ChannelHub
from llamabot_relay.transport.handler import ChatWebSocketHandler
from llamabot_relay.upstream.client import LlamaBotClient
from llamabot_relay.upstream.connection import UpstreamConnectionFactory

logger = logging.getLogger(__name__)


@dataclass
class RelayServices:
    """Components created at start-up and shared by every request."""
    settings: RelaySettings
    signer: SessionTokenSigner
    allow_list: CapabilityAllowList
    authenticator: AgentAuthenticator
    prompts: PromptProvider
    hub: ChannelHub
    manager: RelayManager
    client: LlamaBotClient
    streaming: StreamingRequestAdapter
    handler: ChatWebSocketHandler


class SendMessageRequest(BaseModel):
    """Body of a one-shot chat turn."""
    message: str = Field(
        ...,
        description="User-submitted text"
    )
    thread_id: str | None = Field(
        default=None,
        description="Conversation to continue (global thread if omitted)"
    )


def configure_logging(settings: RelaySettings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def create_app(
    settings: RelaySettings | None = None,
    hooks: HostHooks | None = None,
    allow_list: CapabilityAllowList | None = None,
    state_builders: StateBuilderRegistry | None = None,
    connection_factory: UpstreamConnectionFactory | None = None,
    llamabot_client: LlamaBotClient | None = None,
) -> FastAPI:
    """
    Build the relay application.

    Args:
        settings: Relay settings (read from the environment if None)
        hooks: Host user resolvers
        allow_list: Capability allow-list (process default if None)
        state_builders: Payload builder registry (process default if None)
        connection_factory: Upstream connection factory override
        llamabot_client: Upstream HTTP client override
    """
    settings = settings or settings_from_env()
    hooks = hooks or HostHooks()
    allow_list = allow_list if allow_list is not None else default_allow_list
    state_builders = state_builders or default_state_builders

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Initializes and tears down all relay components.
        """
        # Startup
        logger.info("Starting LlamaBot relay...")

        signer = SessionTokenSigner(
            secret_key=settings.secret_key,
            default_ttl=timedelta(seconds=settings.token_ttl_seconds),
        )
        prompts = PromptProvider(settings.agent_prompt_path)
        hub = ChannelHub(max_queue_size=settings.channel_queue_size)
        manager = RelayManager(
            channel=hub,
            connection_factory=connection_factory or UpstreamConnectionFactory(settings),
            signer=signer,
            prompts=prompts,
            hooks=hooks,
            state_builders=state_builders,
            agent_name=settings.agent_name,
            heartbeat_interval_seconds=settings.heartbeat_interval_seconds,
        )
        client = llamabot_client or LlamaBotClient(settings.api_url)

        allow_list.freeze()
        logger.info(f"Capability allow-list frozen: {sorted(allow_list.allowed_routes)}")

        if settings.console_tool_enabled:
            logger.warning("Console tool enabled (development only)")

        app.state.relay = RelayServices(
            settings=settings,
            signer=signer,
            allow_list=allow_list,
            authenticator=AgentAuthenticator(signer, allow_list=allow_list, hooks=hooks),
            prompts=prompts,
            hub=hub,
            manager=manager,
            client=client,
            streaming=StreamingRequestAdapter(
                client=client,
                signer=signer,
                prompts=prompts,
                hooks=hooks,
                state_builders=state_builders,
                agent_name=settings.agent_name,
            ),
            handler=ChatWebSocketHandler(hub=hub, manager=manager),
        )

        logger.info(f"LlamaBot relay started (upstream: {settings.websocket_url or 'not configured'})")

        yield

        # Shutdown
        logger.info("Shutting down LlamaBot relay...")
        await manager.shutdown()
        await hub.shutdown()
        await client.close()
        logger.info("LlamaBot relay stopped")

    app = FastAPI(
        title="LlamaBot Relay",
        description="Relay between browser chat sessions and a LlamaBot agent service",
        version="0.1.0",
        lifespan=lifespan
    )

    @app.websocket("/ws/chat")
    async def chat_websocket(websocket: WebSocket):
        """
        WebSocket endpoint for chat sessions.

        Each connection gets its own relay to the upstream agent.
        """
        services: RelayServices | None = getattr(websocket.app.state, "relay", None)
        if services is None:
            await websocket.close(code=1011, reason="Relay not initialized")
            return

        await services.handler.handle_connection(websocket)

    @app.post("/agent/send_message")
    async def send_message(body: SendMessageRequest, request: Request):
        """Relay one chat turn and stream the agent's frames back as SSE."""
        services: RelayServices = request.app.state.relay
        writer = services.streaming.start(body.message, body.thread_id, request.scope)
        return StreamingResponse(writer, headers=SSE_HEADERS)

    @app.get("/agent/threads")
    async def threads(request: Request):
        services: RelayServices = request.app.state.relay
        return await services.client.get_threads()

    @app.get("/agent/chat-history/{thread_id}")
    async def chat_history(thread_id: str, request: Request):
        services: RelayServices = request.app.state.relay
        return await services.client.get_chat_history(thread_id)

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        services: RelayServices | None = getattr(request.app.state, "relay", None)
        return {
            "status": "healthy",
            "upstream_configured": bool(settings.websocket_url),
            "relays": services.manager.session_count if services else 0,
            "open_relays": services.manager.open_count if services else 0,
            "client_connections": services.hub.connection_count if services else 0,
            "console_tool_enabled": settings.console_tool_enabled,
        }

    return app


def main() -> None:
    """Run the relay with uvicorn."""
    import uvicorn

    settings = settings_from_env()
    configure_logging(settings)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8080)


if __name__ == "__main__":
    main()
