import pytest
from fastapi.testclient import TestClient

from codex_gateway.api.deps import get_gateway
from codex_gateway.core.config import Settings
from codex_gateway.main import create_app
from codex_gateway.services.gateway import SessionGateway
from codex_gateway.tests.utils.agents import FakeAgentFactory


@pytest.fixture
def settings() -> Settings:
    return Settings(
        OPENAI_API_KEY=None,
        MODEL="o4-mini",
        PROVIDER="openai",
        LOG_JSON=False,
    )


@pytest.fixture
def agent_factory() -> FakeAgentFactory:
    return FakeAgentFactory()


@pytest.fixture
def gateway(agent_factory: FakeAgentFactory) -> SessionGateway:
    return SessionGateway(agent_factory, model="o4-mini", instructions="Be concise.")


@pytest.fixture
def client(settings: Settings, gateway: SessionGateway) -> TestClient:
    app = create_app(settings)
    app.dependency_overrides[get_gateway] = lambda: gateway
    return TestClient(app)
