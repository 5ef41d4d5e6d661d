"""Pytest configuration and shared fixtures for testing."""

import pytest

from llamabot_relay.auth.capabilities import default_allow_list
from llamabot_relay.auth.token import SessionTokenSigner
from llamabot_relay.prompts import PromptProvider
from llamabot_relay.relay.inbound import default_state_builders
from tests.fakes import FakeConnectionFactory, RecordingChannel

TEST_SECRET = "test-secret-key"


@pytest.fixture(autouse=True)
def reset_process_registries():
    """Keep the process-wide allow-list and builder registry test-local."""
    default_allow_list.clear()
    default_state_builders.reset()
    yield
    default_allow_list.clear()
    default_state_builders.reset()


@pytest.fixture
def signer() -> SessionTokenSigner:
    return SessionTokenSigner(secret_key=TEST_SECRET)


@pytest.fixture
def prompts(tmp_path) -> PromptProvider:
    """Prompt provider pointing at a file that does not exist yet."""
    return PromptProvider(tmp_path / "prompts" / "agent_prompt.txt")


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def factory() -> FakeConnectionFactory:
    return FakeConnectionFactory()
