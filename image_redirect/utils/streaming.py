"""Flush-aware streaming of long-running image operations.

Pull, import, push and export stream JSON progress (or tar data) to the
client. Once the first byte has been handed to the client the response status
is committed, so later errors can only be reported inside the stream.
``StreamingOutput`` tracks that fact and ``stream_operation`` turns an
operation into either an HTTP error (nothing written yet) or a streaming
response.
"""

import asyncio
import json
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import structlog
from fastapi.responses import StreamingResponse

from image_redirect.errors import ImageApiError

logger = structlog.stdlib.get_logger(__name__)

STREAM_DELIMITER = b"\r\n"

# Chunks held for a slow client before writers wait
MAX_BUFFERED_CHUNKS = 64


class StreamClosedError(RuntimeError):
    pass


def format_error(exc: BaseException) -> bytes:
    """Render an error as a JSON progress message understood by Docker clients."""
    message = exc.message if isinstance(exc, ImageApiError) else str(exc)
    detail: dict[str, Any] = {"message": message}
    code = getattr(exc, "code", None)
    if code:
        detail["code"] = code
    return json.dumps({"errorDetail": detail, "error": message}).encode() + STREAM_DELIMITER


class StreamingOutput:
    """Per-request output sink that knows whether anything has been flushed.

    Every ``write`` is handed to the response immediately, so ``flushed`` is
    true as soon as one non-empty write happened. ``close`` releases the sink
    exactly once; iterating the output ends after it.

    At most ``max_chunks`` writes are buffered. Further writes wait until the
    client has read, so a slow client slows the engine stream down.
    """

    def __init__(self, max_chunks: int = MAX_BUFFERED_CHUNKS) -> None:
        self._queue: asyncio.Queue[Optional[bytes]] = asyncio.Queue(maxsize=max_chunks)
        self._ready = asyncio.Event()
        self._flushed = False
        self._closed = False

    @property
    def flushed(self) -> bool:
        return self._flushed

    @property
    def closed(self) -> bool:
        return self._closed

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise StreamClosedError("write to a closed output")
        if not data:
            return
        await self._queue.put(data)
        self._flushed = True
        self._ready.set()

    async def write_json(self, message: dict[str, Any]) -> None:
        await self.write(json.dumps(message).encode() + STREAM_DELIMITER)

    async def write_error(self, exc: BaseException) -> None:
        await self.write(format_error(exc))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # A full queue ends iteration through the closed flag instead
        if not self._queue.full():
            self._queue.put_nowait(None)
        self._ready.set()

    async def wait_ready(self) -> None:
        """Wait until the first byte was written or the output was closed."""
        await self._ready.wait()

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            if self._closed and self._queue.empty():
                return
            chunk = await self._queue.get()
            if chunk is None:
                return
            yield chunk


async def surface_error(output: StreamingOutput, exc: Exception) -> None:
    """Report ``exc`` the only way still open to us.

    Raises ``exc`` when nothing was flushed yet, so it becomes an HTTP error
    response. Otherwise the client already has a 200 status and body bytes, and
    the error is appended to the stream instead.
    """
    if not output.flushed:
        raise exc

    logger.warning("Reporting error inside the response stream", error=str(exc))
    await output.write_error(exc)


async def _relay(
    output: StreamingOutput, task: "asyncio.Task[None]"
) -> AsyncIterator[bytes]:
    try:
        async for chunk in output:
            yield chunk
        await task
    finally:
        # Client went away: cancel the in-flight backend work
        if not task.done():
            logger.info("Client disconnected, cancelling image operation")
            task.cancel()


async def stream_operation(
    operation: Callable[[StreamingOutput], Awaitable[None]],
    media_type: str = "application/json",
) -> StreamingResponse:
    """Run ``operation`` against a fresh output and build the response.

    Errors raised before the first byte are re-raised here and handled by the
    application's exception handlers. Errors raised afterwards are written into
    the stream.
    """
    output = StreamingOutput()

    async def run() -> None:
        try:
            await operation(output)
        except Exception as e:
            await surface_error(output, e)
        finally:
            output.close()

    task = asyncio.create_task(run())

    try:
        await output.wait_ready()
    except asyncio.CancelledError:
        task.cancel()
        raise

    if not output.flushed:
        # Finished without writing anything; raises the operation's error
        await task

    return StreamingResponse(_relay(output, task), media_type=media_type)
