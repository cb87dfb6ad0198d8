"""HTTP-level tests for the gateway endpoints.

Provider clients are in-process fakes, so these tests exercise routing,
authentication and the per-protocol error shapes without any network.
"""

import pytest
from fastapi.testclient import TestClient

from gateway.core.oauth.exceptions import TokenError
from gateway.core.provider.base import AuthFlow
from gateway.main import create_app
from tests.conftest import TEST_GATEWAY_KEY
from tests.fixtures.fakes import (
    FakeProvider,
    build_test_container,
    make_account,
    upstream_failure,
)
from tests.fixtures.mock_http import chat_completion, parse_sse_frames, sse_body, text_stream_chunks

AUTH = {"Authorization": f"Bearer {TEST_GATEWAY_KEY}"}

CHAT_BODY = {"model": "glm-4.7", "messages": [{"role": "user", "content": "Hi"}]}
MESSAGES_BODY = {
    "model": "glm-4.7",
    "max_tokens": 100,
    "messages": [{"role": "user", "content": "Hi"}],
}


@pytest.fixture
def iflow():
    return FakeProvider("iflow")


@pytest.fixture
def client(iflow):
    container = build_test_container(
        [iflow, FakeProvider("nvidia_nim", AuthFlow.API_KEY)], [make_account("acct_a")]
    )
    with TestClient(create_app(container)) as test_client:
        yield test_client


@pytest.mark.unit
class TestPublicEndpoints:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_models_listing_needs_no_key(self, client):
        response = client.get("/v1/models")

        assert response.status_code == 200
        body = response.json()
        assert body["object"] == "list"
        ids = {model["id"] for model in body["data"]}
        assert {"glm-4.7", "qwen-vl-max", "qwen-vl-max-latest"} <= ids


@pytest.mark.unit
class TestAuthentication:
    def test_missing_key_openai_shape(self, client):
        response = client.post("/v1/chat/completions", json=CHAT_BODY)

        assert response.status_code == 401
        error = response.json()["error"]
        assert error["type"] == "authentication_error"
        assert error["message"] == "Missing Authorization header"

    def test_unknown_key_anthropic_shape(self, client):
        response = client.post(
            "/v1/messages", json=MESSAGES_BODY, headers={"x-api-key": "gw-wrong"}
        )

        assert response.status_code == 401
        assert response.json() == {
            "type": "error",
            "error": {"type": "authentication_error", "message": "Invalid API key"},
        }

    def test_x_api_key_header_is_accepted(self, client, iflow):
        iflow.responses = [chat_completion("Hi!")]

        response = client.post(
            "/v1/messages", json=MESSAGES_BODY, headers={"x-api-key": TEST_GATEWAY_KEY}
        )

        assert response.status_code == 200
        assert response.json()["content"][0]["text"] == "Hi!"


@pytest.mark.unit
class TestChatEndpoints:
    def test_chat_completion(self, client, iflow):
        iflow.responses = [chat_completion("Hello!")]

        response = client.post("/v1/chat/completions", json=CHAT_BODY, headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["choices"][0]["message"]["content"] == "Hello!"
        assert body["usage"]["total_tokens"] == 15

    def test_extra_sampling_parameters_reach_the_provider(self, client, iflow):
        iflow.responses = [chat_completion()]

        client.post(
            "/v1/chat/completions", json={**CHAT_BODY, "temperature": 0.2}, headers=AUTH
        )

        assert iflow.calls[0][1]["temperature"] == 0.2

    def test_streaming_chat_completion(self, client, iflow):
        iflow.responses = [sse_body(*text_stream_chunks("Hel", "lo")).decode().split("\n")]

        response = client.post(
            "/v1/chat/completions", json={**CHAT_BODY, "stream": True}, headers=AUTH
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        frames = parse_sse_frames(response.text)
        assert frames[-1] == (None, "[DONE]")

    def test_responses_endpoint(self, client, iflow):
        iflow.responses = [chat_completion("Answer")]

        response = client.post(
            "/v1/responses", json={"model": "glm-4.7", "input": "Question"}, headers=AUTH
        )

        assert response.status_code == 200
        body = response.json()
        assert body["object"] == "response"
        assert body["status"] == "completed"

    def test_missing_messages_is_invalid_request(self, client):
        response = client.post("/v1/chat/completions", json={"model": "glm-4.7"}, headers=AUTH)

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["type"] == "invalid_request_error"
        assert error["param"] == "messages"


@pytest.mark.unit
class TestErrorShapes:
    def test_unknown_model(self, client):
        response = client.post(
            "/v1/chat/completions", json={**CHAT_BODY, "model": "gpt-17"}, headers=AUTH
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_model"

    def test_no_eligible_account_is_overloaded_for_anthropic(self, client):
        body = {**MESSAGES_BODY, "model": "qwen3-coder-flash"}

        response = client.post("/v1/messages", json=body, headers=AUTH)

        assert response.status_code == 529
        assert response.json()["error"]["type"] == "overloaded_error"

    def test_no_eligible_account_is_503_for_openai(self, client):
        body = {**CHAT_BODY, "model": "qwen3-coder-flash"}

        response = client.post("/v1/chat/completions", json=body, headers=AUTH)

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "no_eligible_account"

    def test_upstream_status_is_passed_through(self, client, iflow):
        iflow.responses = [upstream_failure(400, "context too long")]

        response = client.post("/v1/messages", json=MESSAGES_BODY, headers=AUTH)

        assert response.status_code == 400
        assert response.json()["error"] == {
            "type": "invalid_request_error",
            "message": "context too long",
        }

    def test_credential_failure_is_bad_gateway(self, client, iflow):
        iflow.responses = [TokenError("Token refresh succeeded but storage failed: disk full")]

        response = client.post("/v1/chat/completions", json=CHAT_BODY, headers=AUTH)

        assert response.status_code == 502
        assert "storage failed" in response.json()["error"]["message"]

    def test_disabled_model_is_forbidden(self, client):
        container = client.app.state.container
        container.access_policy.disable("user-1", "glm-4.7")

        response = client.post("/v1/chat/completions", json=CHAT_BODY, headers=AUTH)

        assert response.status_code == 403
        assert response.json()["error"]["type"] == "permission_error"
