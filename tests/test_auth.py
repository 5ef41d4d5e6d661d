"""Tests for the capability allow-list and the user-or-agent guard."""

from uuid import UUID

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from llamabot_relay.auth.agent_auth import (
    AgentAuthenticator,
    AuthMethod,
    AuthResult,
    parse_authorization,
    require_user_or_agent,
)
from llamabot_relay.auth.capabilities import (
    CapabilityAllowList,
    default_allow_list,
    llama_bot_allow,
)
from llamabot_relay.auth.hooks import SIGNED_IN_USER_KEY, HostHooks, user_id_of
from llamabot_relay.errors import ForbiddenOperation, NotAuthenticated

USERS = {7: {"id": 7, "name": "Ada"}}


@pytest.fixture
def allow_list() -> CapabilityAllowList:
    allow_list = CapabilityAllowList()
    allow_list.allow("pages", "update", "show")
    return allow_list


@pytest.fixture
def hooks() -> HostHooks:
    return HostHooks(user_resolver=USERS.get)


@pytest.fixture
def authenticator(signer, allow_list, hooks) -> AgentAuthenticator:
    return AgentAuthenticator(signer, allow_list=allow_list, hooks=hooks)


@pytest.mark.unit
class TestCapabilityAllowList:
    def test_allow_accumulates_and_deduplicates(self):
        allow_list = CapabilityAllowList()
        allow_list.allow("pages", "update")
        allow_list.allow("pages", "show", "update")

        assert allow_list.permitted("pages") == ["show", "update"]
        assert allow_list.is_allowed("pages", "show")
        assert not allow_list.is_allowed("pages", "destroy")
        assert not allow_list.is_allowed("users", "show")

    def test_allowed_routes(self, allow_list):
        allow_list.allow("posts", "create")
        assert allow_list.allowed_routes == {"pages#update", "pages#show", "posts#create"}

    def test_frozen_list_rejects_changes(self, allow_list):
        allow_list.freeze()

        with pytest.raises(RuntimeError):
            allow_list.allow("pages", "destroy")
        assert allow_list.frozen
        assert allow_list.is_allowed("pages", "update")

    def test_llama_bot_allow_uses_process_list(self):
        llama_bot_allow("pages", "update", ["show", "preview"])
        assert default_allow_list.permitted("pages") == ["preview", "show", "update"]


@pytest.mark.unit
class TestAgentAuthenticator:
    def test_signed_in_host_user_passes(self, authenticator):
        context = {SIGNED_IN_USER_KEY: USERS[7]}

        result = authenticator.authenticate(context, None, "pages", "destroy")

        assert result.method == AuthMethod.USER
        assert result.user == USERS[7]

    def test_agent_token_on_allow_listed_operation(self, authenticator, signer):
        context: dict = {}
        token = signer.issue("session-1", user_id=7)

        result = authenticator.authenticate(context, f"LlamaBot {token}", "pages", "update")

        assert result.is_agent
        assert result.user == USERS[7]
        assert result.claims.session_id == "session-1"
        assert context[SIGNED_IN_USER_KEY] == USERS[7]

    def test_agent_token_on_other_operation_is_forbidden(self, authenticator, signer):
        token = signer.issue("session-1", user_id=7)

        with pytest.raises(ForbiddenOperation) as exc_info:
            authenticator.authenticate({}, f"LlamaBot {token}", "pages", "destroy")

        message = str(exc_info.value)
        assert "Action 'destroy' isn't white-listed for LlamaBot" in message
        assert 'llama_bot_allow("pages", "destroy")' in message

    @pytest.mark.parametrize("header", [None, "", "Bearer abc", "LlamaBot", "LlamaBot not-a-token"])
    def test_without_usable_token_is_not_authenticated(self, authenticator, header):
        with pytest.raises(NotAuthenticated):
            authenticator.authenticate({}, header, "pages", "update")

    def test_token_signed_with_other_secret_is_not_authenticated(self, authenticator):
        from llamabot_relay.auth.token import SessionTokenSigner

        token = SessionTokenSigner(secret_key="elsewhere").issue("session-1")

        with pytest.raises(NotAuthenticated):
            authenticator.authenticate({}, f"LlamaBot {token}", "pages", "update")

    def test_failed_sign_in_is_not_authenticated(self, signer, allow_list):
        hooks = HostHooks(user_resolver=USERS.get, sign_in_method=lambda ctx, user: False)
        authenticator = AgentAuthenticator(signer, allow_list=allow_list, hooks=hooks)
        token = signer.issue("session-1", user_id=7)

        with pytest.raises(NotAuthenticated) as exc_info:
            authenticator.authenticate({}, f"LlamaBot {token}", "pages", "update")
        assert exc_info.value.reason == "Agent sign-in failed"

    def test_is_agent_request(self, authenticator, signer):
        assert authenticator.is_agent_request(f"LlamaBot {signer.issue('s')}")
        assert not authenticator.is_agent_request("LlamaBot forged")
        assert not authenticator.is_agent_request(None)

    def test_parse_authorization(self):
        assert parse_authorization("LlamaBot abc.def") == "abc.def"
        assert parse_authorization("Bearer abc.def") is None
        assert parse_authorization("LlamaBot   ") is None

    def test_user_id_of(self):
        class User:
            id = 3

        assert user_id_of(User()) == 3
        assert user_id_of({"id": "u-1"}) == "u-1"
        assert user_id_of(None) is None
        assert user_id_of({"id": UUID("12345678-1234-5678-1234-567812345678")}) == (
            "12345678-1234-5678-1234-567812345678"
        )


@pytest.mark.integration
class TestRequireUserOrAgent:
    @pytest.fixture
    def client(self, authenticator) -> TestClient:
        app = FastAPI()

        @app.post("/pages/{page_id}")
        async def update_page(
            page_id: int,
            auth: AuthResult = Depends(require_user_or_agent(authenticator, "pages", "update")),
        ):
            return {"page_id": page_id, "method": auth.method.value, "user": auth.user}

        @app.delete("/pages/{page_id}")
        async def destroy_page(
            page_id: int,
            auth: AuthResult = Depends(require_user_or_agent(authenticator, "pages", "destroy")),
        ):
            return {"page_id": page_id}

        return TestClient(app)

    def test_agent_call_to_allow_listed_route(self, client, signer):
        token = signer.issue("session-1", user_id=7)

        response = client.post("/pages/1", headers={"Authorization": f"LlamaBot {token}"})

        assert response.status_code == 200
        assert response.json() == {"page_id": 1, "method": "agent", "user": USERS[7]}

    def test_agent_call_to_other_route_is_403(self, client, signer):
        token = signer.issue("session-1", user_id=7)

        response = client.delete("/pages/1", headers={"Authorization": f"LlamaBot {token}"})

        assert response.status_code == 403
        assert "isn't white-listed for LlamaBot" in response.json()["detail"]

    def test_anonymous_call_is_401(self, client):
        response = client.post("/pages/1")
        assert response.status_code == 401
