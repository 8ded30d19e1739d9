"""
Stream session driver.

Owns one request/response cycle once the HTTP response is open: validates
the status, reads the body chunk by chunk through an SSELineBuffer, extracts
text from every decoded chunk and reports the cumulative text to the caller
as it grows. The session ends in exactly one SessionOutcome.

Parsing problems never escape the driver: malformed lines are re-buffered or
dropped and chunks without text are skipped. Only transport and HTTP status
problems end the session as a Failure.
"""

import inspect
import json
import logging
from typing import Any

import httpx

from app.models.stream_types import (
    Cancelled,
    EmptySuccess,
    ErrorBody,
    Failure,
    FailureReason,
    JsonErrorBody,
    ProgressCallback,
    SessionOutcome,
    SSELine,
    Success,
    TextErrorBody,
)
from app.services.chunk_extractor import ChunkTextExtractor
from app.services.sse_buffer import SSELineBuffer

logger = logging.getLogger(__name__)

ERROR_TEXT_LIMIT = 200
RATE_LIMITED_MESSAGE = "Rate limit exceeded. Please try again later."
QUOTA_EXHAUSTED_MESSAGE = "AI credits depleted. Please add credits to continue."
NOT_CONFIGURED_MESSAGE = "AI service is not configured. Please contact support."
_NOT_CONFIGURED_MARKERS = ("not configured", "API_KEY")


def is_event_stream(content_type: str) -> bool:
    """True for `text/event-stream` and any other streaming content type"""
    content_type = content_type.lower()
    return "text/event-stream" in content_type or "stream" in content_type


def parse_error_body(body: bytes | str) -> ErrorBody:
    """
    Classify an error body as JSON or plain text.

    JSON bodies keep the parsed payload plus the best message found in it;
    anything else is kept as text, truncated to 200 characters.
    """
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return TextErrorBody(text=text[:ERROR_TEXT_LIMIT])
    return JsonErrorBody(payload=payload, message=_message_from_payload(payload))


def _message_from_payload(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None

    error = payload.get("error")
    if isinstance(error, str) and error.strip():
        return error
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]

    for key in ("message", "detail"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def error_message(body: ErrorBody | None) -> str | None:
    """Human readable message carried by an error body, if any"""
    if isinstance(body, JsonErrorBody):
        return body.message
    if isinstance(body, TextErrorBody):
        return body.text.strip() or None
    return None


def classify_status(status_code: int, message: str = "") -> FailureReason:
    """Map a rejected HTTP status (and its message) to a failure reason"""
    if status_code == 429:
        return FailureReason.RATE_LIMITED
    if status_code == 402:
        return FailureReason.QUOTA_EXHAUSTED
    if status_code == 500 and any(marker in message for marker in _NOT_CONFIGURED_MARKERS):
        return FailureReason.SERVICE_NOT_CONFIGURED
    return FailureReason.UPSTREAM_ERROR


class StreamSessionDriver:
    """
    Drive one streamed chat response to its terminal outcome.

    Each run() builds its own buffer and accumulator, so a driver can be
    reused for consecutive sessions but never runs two at once.

    Usage:
        driver = StreamSessionDriver()
        async with client.stream("POST", url, json=payload) as response:
            outcome = await driver.run(response, on_progress=render)
    """

    def __init__(
        self,
        extractor: ChunkTextExtractor | None = None,
        stop_on_done: bool = False,
    ):
        """
        Args:
            extractor: Chunk text extractor, defaults to the standard strategy order
            stop_on_done: End the session at `[DONE]` instead of at end of data
        """
        self.extractor = extractor or ChunkTextExtractor()
        self.stop_on_done = stop_on_done
        self._response: httpx.Response | None = None
        self._running = False
        self._cancelled = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def cancel(self):
        """Abandon the running session and close its response"""
        if not self._running:
            return
        self._cancelled = True
        logger.info("[StreamSession] Cancellation requested")
        if self._response is not None:
            await self._response.aclose()

    async def run(
        self,
        response: httpx.Response,
        on_progress: ProgressCallback | None = None,
    ) -> SessionOutcome:
        """
        Consume an open streaming response.

        Args:
            response: Response opened in streaming mode; the caller owns it
            on_progress: Called with the cumulative text after every chunk
                that contributes text (sync or async callable)

        Returns:
            Success, EmptySuccess, Failure or Cancelled
        """
        if self._running:
            raise RuntimeError("A stream session is already running on this driver")

        self._running = True
        self._cancelled = False
        self._response = response
        buffer = SSELineBuffer()

        try:
            content_type = response.headers.get("content-type", "")
            logger.info(
                f"[StreamSession] Response status: {response.status_code}, "
                f"content-type: {content_type!r}"
            )

            failure = await self._check_response(response, content_type)
            if failure is not None:
                logger.warning(
                    f"[StreamSession] Session failed before streaming: "
                    f"{failure.reason.value} ({failure.message})"
                )
                return failure

            return await self._consume(response, buffer, on_progress)
        finally:
            buffer.reset()
            self._response = None
            self._running = False

    async def _check_response(
        self, response: httpx.Response, content_type: str
    ) -> Failure | None:
        status = response.status_code

        if response.is_success:
            if is_event_stream(content_type) or "json" not in content_type.lower():
                return None
            body = parse_error_body(await response.aread())
            return Failure(
                reason=FailureReason.UNEXPECTED_RESPONSE,
                message=self._unexpected_response_message(body),
                status_code=status,
            )

        if status == 429:
            return Failure(FailureReason.RATE_LIMITED, RATE_LIMITED_MESSAGE, status)
        if status == 402:
            return Failure(FailureReason.QUOTA_EXHAUSTED, QUOTA_EXHAUSTED_MESSAGE, status)

        try:
            raw_body = await response.aread()
        except (httpx.TransportError, httpx.StreamError) as e:
            logger.warning(f"[StreamSession] Could not read error body: {e}")
            raw_body = b""

        body = parse_error_body(raw_body) if raw_body else None
        message = (
            error_message(body)
            or response.reason_phrase
            or f"Failed to connect (Status: {status})"
        )
        reason = classify_status(status, message)
        if reason == FailureReason.SERVICE_NOT_CONFIGURED:
            message = NOT_CONFIGURED_MESSAGE
        return Failure(reason=reason, message=message, status_code=status)

    @staticmethod
    def _unexpected_response_message(body: ErrorBody) -> str:
        if isinstance(body, JsonErrorBody):
            payload = body.payload
            if (
                isinstance(payload, list)
                and payload
                and isinstance(payload[0], dict)
                and "organization_id" in payload[0]
            ):
                return (
                    "Received database query response instead of chat response. "
                    "The chat endpoint may not be deployed or the URL is incorrect."
                )
            if isinstance(payload, dict):
                error = payload.get("error")
                if isinstance(error, str) and error.strip():
                    return error
        return "Unexpected response format from server."

    async def _consume(
        self,
        response: httpx.Response,
        buffer: SSELineBuffer,
        on_progress: ProgressCallback | None,
    ) -> SessionOutcome:
        accumulated = ""
        chunk_count = 0
        text_chunk_count = 0
        finished = False

        try:
            async for data in response.aiter_bytes():
                for line in buffer.feed(data):
                    if line.is_done:
                        finished = self.stop_on_done
                        break

                    chunk_count += 1
                    text = self._decode(line, buffer, final=False)
                    if text is None:
                        break
                    if text:
                        text_chunk_count += 1
                        accumulated += text
                        await self._notify(on_progress, accumulated)
                    if self._cancelled:
                        break

                if self._cancelled:
                    return self._abandon(buffer)
                if finished:
                    logger.info("[StreamSession] [DONE] received, ending session")
                    break
        except (httpx.TransportError, httpx.StreamError) as e:
            if self._cancelled:
                return self._abandon(buffer)
            logger.error(f"[StreamSession] Stream read failed: {e}")
            return Failure(reason=FailureReason.TRANSPORT_ERROR, message=str(e))

        # Closing the response from cancel() can end the byte stream without an error
        if self._cancelled:
            return self._abandon(buffer)

        if not finished:
            for line in buffer.finalize():
                if line.is_done:
                    continue
                chunk_count += 1
                text = self._decode(line, buffer, final=True)
                if text:
                    text_chunk_count += 1
                    accumulated += text
                    await self._notify(on_progress, accumulated)

        logger.info(
            f"[StreamSession] Stream ended. Chunks: {chunk_count}, "
            f"with text: {text_chunk_count}, characters: {len(accumulated)}"
        )

        if not accumulated:
            logger.warning(
                "[StreamSession] Stream completed but no content extracted"
            )
            return EmptySuccess()
        return Success(text=accumulated)

    def _decode(self, line: SSELine, buffer: SSELineBuffer, final: bool) -> str | None:
        """
        Parse one line and extract its text.

        Returns None when the line was pushed back for a later retry.
        """
        try:
            chunk = json.loads(line.payload)
        except json.JSONDecodeError as e:
            if final:
                logger.warning(
                    f"[StreamSession] Dropping unparseable trailing line: "
                    f"{line.payload[:100]!r} ({e})"
                )
                return ""
            logger.debug(f"[StreamSession] JSON parse error, buffering: {e}")
            buffer.pushback(line)
            return None

        text = self.extractor.extract(chunk)
        if not text:
            logger.debug(
                f"[StreamSession] Received chunk but extracted no text: {line.payload[:200]}"
            )
        return text

    @staticmethod
    async def _notify(on_progress: ProgressCallback | None, text: str):
        if on_progress is None:
            return
        result = on_progress(text)
        if inspect.isawaitable(result):
            await result

    @staticmethod
    def _abandon(buffer: SSELineBuffer) -> Cancelled:
        buffer.reset()
        logger.info("[StreamSession] Session cancelled, buffered state discarded")
        return Cancelled()
