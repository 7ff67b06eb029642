from fastapi.testclient import TestClient

from codex_gateway.tests.utils.agents import FakeAgentFactory
from codex_gateway.tests.utils.messages import assistant_with_calls, tool_call


def test_chat_creates_session(client: TestClient, gateway):
    r = client.post("/chat", json={"prompt": "hello"})

    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "completed"
    assert body["sessionId"] in gateway
    assert body["messages"] == [{"role": "assistant", "content": "turn 1: hello"}]
    assert "error" not in body


def test_chat_reuses_session(client: TestClient, agent_factory: FakeAgentFactory):
    first = client.post("/chat", json={"prompt": "one"}).json()
    second = client.post("/chat", json={"prompt": "two", "sessionId": first["sessionId"]}).json()

    assert second["sessionId"] == first["sessionId"]
    assert second["messages"][0]["content"] == "turn 2: two"
    assert len(agent_factory.agents) == 1


def test_chat_accepts_snake_case_fields(client: TestClient):
    first = client.post("/chat", json={"prompt": "one"}).json()
    second = client.post("/chat", json={"prompt": "two", "session_id": first["sessionId"]}).json()

    assert second["sessionId"] == first["sessionId"]


def test_chat_ignores_requested_approval_mode(client: TestClient, agent_factory: FakeAgentFactory):
    r = client.post("/chat", json={"prompt": "hello", "approvalMode": "full-auto"})

    assert r.status_code == 200
    assert agent_factory.agents[0].config.approval_policy.value == "suggest"


def test_chat_filters_write_calls(client: TestClient, agent_factory: FakeAgentFactory):
    agent_factory.script = lambda turn, item: [
        assistant_with_calls(tool_call("Edit", file_path="main.py"), content="Editing."),
    ]

    body = client.post("/chat", json={"prompt": "fix main.py"}).json()

    [message] = body["messages"]
    assert "tool_calls" not in message
    assert message["content"].startswith("Editing.\n\n")
    assert "Edit" in message["content"]


def test_chat_agent_error_is_reported_in_body(client: TestClient, agent_factory: FakeAgentFactory):
    agent_factory.error = RuntimeError("rate limited")

    r = client.post("/chat", json={"prompt": "hello"})

    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "error"
    assert body["error"] == "rate limited"
    assert body["messages"][0]["content"] == "turn 1: hello"


def test_chat_missing_image_is_reported_in_body(client: TestClient, tmp_path):
    r = client.post("/chat", json={"prompt": "see", "imagePaths": [str(tmp_path / "nope.png")]})

    assert r.status_code == 200
    assert r.json()["status"] == "error"


def test_chat_rejects_invalid_body(client: TestClient):
    r = client.post("/chat", json={"sessionId": "abc"})

    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "Invalid request body"
    assert body["details"][0]["loc"] == ["body", "prompt"]


def test_chat_rejects_malformed_json(client: TestClient):
    r = client.post("/chat", content=b"{not json", headers={"Content-Type": "application/json"})

    assert r.status_code == 400
    assert r.json()["error"] == "Invalid request body"


def test_chat_wrong_method_is_not_found(client: TestClient):
    r = client.get("/chat")

    assert r.status_code == 404
    assert r.json() == {"error": "Not found"}
