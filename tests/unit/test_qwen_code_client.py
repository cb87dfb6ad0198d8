"""Tests for the Qwen Code provider client (RESPX mocked)."""

import json
from urllib.parse import parse_qs

import httpx
import pytest

from gateway.conversion.normalizer import normalize_openai_stream
from gateway.core.oauth.constants import QwenEndpoints
from gateway.core.oauth.exceptions import OAuthFlowError, TokenError
from gateway.core.oauth.http_client import AsyncHttpClient
from gateway.core.provider.base import Credential, DevicePollStatus
from gateway.core.provider.qwen_code import QwenCodeClient
from tests.fixtures.mock_http import QWEN_CHAT_URL, chat_completion, chunk, sse_body


@pytest.fixture
def qwen(clock):
    return QwenCodeClient(AsyncHttpClient(), clock=clock)


def _device_code_response():
    return {
        "device_code": "dev-1",
        "user_code": "ABCD-1234",
        "verification_uri": "https://chat.qwen.ai/authorize",
        "verification_uri_complete": "https://chat.qwen.ai/authorize?user_code=ABCD-1234",
        "expires_in": 900,
    }


@pytest.mark.unit
@pytest.mark.asyncio
class TestQwenDeviceFlow:
    async def test_start_sends_pkce_challenge(self, qwen, mock_upstream):
        """Device code request is bound to an S256 challenge."""
        route = mock_upstream.post(QwenEndpoints.DEVICE_CODE_URL).mock(
            return_value=httpx.Response(200, json=_device_code_response())
        )

        device = await qwen.start_device_flow()

        form = parse_qs(route.calls.last.request.content.decode())
        assert form["client_id"] == [QwenEndpoints.CLIENT_ID]
        assert form["code_challenge_method"] == ["S256"]
        assert device.user_code == "ABCD-1234"
        assert device.expires_in == 900
        assert device.interval == QwenEndpoints.DEFAULT_POLL_INTERVAL
        assert len(device.code_verifier) == 128

    async def test_start_failure(self, qwen, mock_upstream):
        mock_upstream.post(QwenEndpoints.DEVICE_CODE_URL).mock(
            return_value=httpx.Response(500, text="down")
        )

        with pytest.raises(OAuthFlowError):
            await qwen.start_device_flow()

    @pytest.mark.parametrize(
        "error,status,slow_down",
        [
            ("authorization_pending", DevicePollStatus.PENDING, False),
            ("slow_down", DevicePollStatus.PENDING, True),
            ("expired_token", DevicePollStatus.ERROR, False),
            ("access_denied", DevicePollStatus.ERROR, False),
        ],
    )
    async def test_poll_error_codes(self, qwen, mock_upstream, error, status, slow_down):
        mock_upstream.post(QwenEndpoints.TOKEN_URL).mock(
            return_value=httpx.Response(400, json={"error": error})
        )

        result = await qwen.poll_device_flow("dev-1", "verifier")

        assert result.status is status
        assert result.slow_down is slow_down
        assert result.tokens is None

    async def test_poll_success(self, qwen, mock_upstream, clock):
        route = mock_upstream.post(QwenEndpoints.TOKEN_URL).mock(
            return_value=httpx.Response(
                200,
                json={
                    "access_token": "at",
                    "refresh_token": "rt",
                    "expires_in": 3600,
                    "resource_url": "portal.qwen.ai",
                },
            )
        )

        result = await qwen.poll_device_flow("dev-1", "verifier")

        assert result.status is DevicePollStatus.SUCCESS
        assert result.tokens.access_token == "at"
        assert result.tokens.expires_at == clock() + 3600
        assert result.tokens.extras == {"resource_url": "portal.qwen.ai"}
        form = parse_qs(route.calls.last.request.content.decode())
        assert form["code_verifier"] == ["verifier"]
        assert form["grant_type"] == ["urn:ietf:params:oauth:grant-type:device_code"]

    async def test_unexpected_status(self, qwen, mock_upstream):
        mock_upstream.post(QwenEndpoints.TOKEN_URL).mock(
            return_value=httpx.Response(503, text="maintenance")
        )

        result = await qwen.poll_device_flow("dev-1", "verifier")

        assert result.status is DevicePollStatus.ERROR
        assert "503" in result.error

    async def test_refresh_keeps_previous_token_when_not_rotated(self, qwen, mock_upstream):
        mock_upstream.post(QwenEndpoints.TOKEN_URL).mock(
            return_value=httpx.Response(200, json={"access_token": "at-2", "expires_in": 60})
        )

        tokens = await qwen.refresh("rt-1")

        assert tokens.access_token == "at-2"
        assert tokens.refresh_token == "rt-1"


@pytest.mark.unit
@pytest.mark.asyncio
class TestQwenChat:
    async def test_non_streaming_think_tags_move_to_reasoning(self, qwen, mock_upstream):
        mock_upstream.post(QWEN_CHAT_URL).mock(
            return_value=httpx.Response(
                200, json=chat_completion("<think>plan</think>answer")
            )
        )

        body = await qwen.call(
            Credential("at"), {"model": "qwen3-coder-plus", "messages": []}, False
        )

        message = body["choices"][0]["message"]
        assert message["content"] == "answer"
        assert message["reasoning_content"] == "plan"

    async def test_streaming_think_tags_split_across_chunks(self, qwen, mock_upstream):
        """Tags straddling chunk boundaries still end up in reasoning_content."""
        body = sse_body(
            chunk({"content": "<thi"}),
            chunk({"content": "nk>pl"}),
            chunk({"content": "an</think>ans"}),
            chunk({"content": "wer"}),
            chunk(finish_reason="stop"),
        )
        route = mock_upstream.post(QWEN_CHAT_URL).mock(
            return_value=httpx.Response(
                200, content=body, headers={"content-type": "text/event-stream"}
            )
        )

        stream = await qwen.call(
            Credential("at"), {"model": "qwen3-coder-plus", "messages": [], "tools": []}, True
        )
        events = [event async for event in normalize_openai_stream(stream)]

        assert "".join(e.content for e in events) == "answer"
        assert "".join(e.reasoning for e in events) == "plan"
        sent = json.loads(route.calls.last.request.content)
        assert sent["stream_options"] == {"include_usage": True}
        assert sent["tools"][0]["function"]["name"] == "do_not_call_me"

    async def test_unterminated_think_is_flushed_before_done(self, qwen, mock_upstream):
        body = sse_body(chunk({"content": "<think>half a thought <"}))
        mock_upstream.post(QWEN_CHAT_URL).mock(
            return_value=httpx.Response(
                200, content=body, headers={"content-type": "text/event-stream"}
            )
        )

        stream = await qwen.call(
            Credential("at"), {"model": "qwen3-coder-plus", "messages": []}, True
        )
        events = [event async for event in normalize_openai_stream(stream)]

        assert "".join(e.reasoning for e in events) == "half a thought <"

    async def test_upstream_reasoning_is_kept_alongside_think_tags(self, qwen, mock_upstream):
        body = sse_body(
            chunk({"reasoning_content": "first ", "content": "<think>second</think>done"}),
            chunk(finish_reason="stop"),
        )
        mock_upstream.post(QWEN_CHAT_URL).mock(
            return_value=httpx.Response(
                200, content=body, headers={"content-type": "text/event-stream"}
            )
        )

        stream = await qwen.call(
            Credential("at"), {"model": "qwen3-coder-plus", "messages": []}, True
        )
        events = [event async for event in normalize_openai_stream(stream)]

        assert "".join(e.reasoning for e in events) == "first second"
        assert "".join(e.content for e in events) == "done"

    async def test_non_object_stream_payload_is_passed_through(self, qwen, mock_upstream):
        body = b"data: 1\n\n" + sse_body(chunk({"content": "hi"}), chunk(finish_reason="stop"))
        mock_upstream.post(QWEN_CHAT_URL).mock(
            return_value=httpx.Response(
                200, content=body, headers={"content-type": "text/event-stream"}
            )
        )

        stream = await qwen.call(
            Credential("at"), {"model": "qwen3-coder-plus", "messages": []}, True
        )
        events = [event async for event in normalize_openai_stream(stream)]

        assert "".join(e.content for e in events) == "hi"

    async def test_refresh_with_non_json_body(self, qwen, mock_upstream):
        mock_upstream.post(QwenEndpoints.TOKEN_URL).mock(
            return_value=httpx.Response(200, text="<html>oops</html>")
        )

        with pytest.raises(TokenError):
            await qwen.refresh("rt-1")
