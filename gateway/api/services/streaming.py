from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator, Callable

from fastapi.responses import StreamingResponse

from gateway.conversion.sse import aclose_stream


def sse_headers() -> dict[str, str]:
    # Centralize the SSE header contract used by every streaming endpoint.
    return {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Headers": "*",
    }


def streaming_response(
    *,
    stream: AsyncIterator[str],
    headers: dict[str, str] | None = None,
) -> StreamingResponse:
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers=headers or sse_headers(),
    )


def with_stream_finalizer(
    *,
    original_stream: AsyncIterator[str],
    on_close: Callable[[], None],
) -> AsyncGenerator[str, None]:
    """Run ``on_close`` once the stream ends, however it ends.

    This wrapper does not alter the stream content.
    """

    async def _wrapped() -> AsyncGenerator[str, None]:
        try:
            async for chunk in original_stream:
                yield chunk
        finally:
            await aclose_stream(original_stream)
            on_close()

    return _wrapped()
