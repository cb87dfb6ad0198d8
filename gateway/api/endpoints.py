import time
import uuid
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from gateway.api.auth import require_gateway_key
from gateway.api.dependencies import get_container, get_orchestrator
from gateway.api.models import ChatCompletionRequest, MessagesRequest, ResponsesRequest
from gateway.api.orchestrator import GatewayOrchestrator
from gateway.api.services.streaming import streaming_response, with_stream_finalizer
from gateway.conversion.canonical import WireProtocol
from gateway.core.accounts.access import GatewayKey
from gateway.core.container import Container
from gateway.core.errors import StreamAborted
from gateway.core.logging import ConversationLogger, logger

router = APIRouter()


async def _dispatch(
    protocol: WireProtocol,
    body: dict[str, Any],
    http_request: Request,
    key: GatewayKey,
    orchestrator: GatewayOrchestrator,
) -> Response:
    request_id = str(uuid.uuid4())

    if await http_request.is_disconnected():
        raise StreamAborted("Client disconnected before processing")

    # Use correlation context for all logs within this request
    with ConversationLogger.correlation_context(request_id):
        logger.debug(
            "Processing %s request: model=%s, stream=%s",
            protocol.value,
            body.get("model"),
            body.get("stream", False),
        )
        result = await orchestrator.handle(protocol, body, key, request_id=request_id)

    if result.stream is not None:
        stream = with_stream_finalizer(
            original_stream=result.stream,
            on_close=lambda: logger.debug("Stream %s closed", request_id[:8]),
        )
        return streaming_response(stream=stream)
    return JSONResponse(content=result.body)


@router.post("/v1/chat/completions", response_model=None)
async def chat_completions(
    request: ChatCompletionRequest,
    http_request: Request,
    key: GatewayKey = Depends(require_gateway_key),
    orchestrator: GatewayOrchestrator = Depends(get_orchestrator),
) -> Response:
    return await _dispatch(
        WireProtocol.OPENAI_CHAT, request.to_payload(), http_request, key, orchestrator
    )


@router.post("/v1/messages", response_model=None)
async def create_message(
    request: MessagesRequest,
    http_request: Request,
    key: GatewayKey = Depends(require_gateway_key),
    orchestrator: GatewayOrchestrator = Depends(get_orchestrator),
) -> Response:
    return await _dispatch(
        WireProtocol.ANTHROPIC_MESSAGES, request.to_payload(), http_request, key, orchestrator
    )


@router.post("/v1/responses", response_model=None)
async def create_response(
    request: ResponsesRequest,
    http_request: Request,
    key: GatewayKey = Depends(require_gateway_key),
    orchestrator: GatewayOrchestrator = Depends(get_orchestrator),
) -> Response:
    return await _dispatch(
        WireProtocol.OPENAI_RESPONSES, request.to_payload(), http_request, key, orchestrator
    )


@router.get("/v1/models")
async def list_models(container: Container = Depends(get_container)) -> dict[str, Any]:
    return container.models.format_for_openai()


@router.get("/health")
async def health_check() -> dict[str, Any]:
    return {"status": "healthy", "timestamp": int(time.time())}
