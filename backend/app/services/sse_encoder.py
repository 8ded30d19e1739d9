"""
OpenAI-style SSE frame encoding.

Produces `chat.completion.chunk` frames so every client can decode the
stream with the primary (delta) extraction strategy, regardless of which
dialect the upstream gateway speaks.
"""

import json
import logging
import time
from collections.abc import AsyncIterable, Iterator

from app.services.chunk_extractor import ChunkTextExtractor
from app.services.sse_buffer import SSELineBuffer

logger = logging.getLogger(__name__)

DONE_FRAME = "data: [DONE]\n\n"
COMPLETION_ID = "chatcmpl-thinkmode"
DEFAULT_CHUNK_SIZE = 200


def format_delta_frame(text: str, created: int | None = None) -> str:
    """Wrap one text increment in a chat.completion.chunk SSE frame"""
    payload = {
        "id": COMPLETION_ID,
        "object": "chat.completion.chunk",
        "created": created if created is not None else int(time.time() * 1000),
        "choices": [
            {
                "delta": {"content": text},
                "index": 0,
                "finish_reason": None,
            }
        ],
    }
    return f"data: {json.dumps(payload)}\n\n"


def format_event(data: dict) -> str:
    """Plain `data:` frame for control messages such as cancellation"""
    return f"data: {json.dumps(data)}\n\n"


def chunk_text(text: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[str]:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return [text[i : i + chunk_size] for i in range(0, len(text), chunk_size)]


def encode_text_as_sse(text: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[str]:
    """
    Stream a complete text as delta frames followed by [DONE].

    Empty text produces only the [DONE] frame.
    """
    for piece in chunk_text(text, chunk_size):
        yield format_delta_frame(piece)
    yield DONE_FRAME


async def relay_as_openai_sse(
    byte_stream: AsyncIterable[bytes],
    extractor: ChunkTextExtractor | None = None,
) -> AsyncIterable[str]:
    """
    Re-encode an upstream SSE byte stream of any known dialect as delta frames.

    Args:
        byte_stream: Raw upstream body chunks
        extractor: Chunk text extractor, defaults to the standard strategy order

    Yields:
        One delta frame per text increment, then DONE_FRAME
    """
    extractor = extractor or ChunkTextExtractor()
    buffer = SSELineBuffer()
    chunk_count = 0
    text_chunk_count = 0

    def decode(line, final: bool) -> str | None:
        try:
            chunk = json.loads(line.payload)
        except json.JSONDecodeError:
            if not final:
                buffer.pushback(line)
                return None
            logger.warning(
                f"[SSERelay] Failed to parse final buffer: {line.payload[:100]!r}"
            )
            return ""
        return extractor.extract(chunk)

    try:
        async for data in byte_stream:
            for line in buffer.feed(data):
                if line.is_done:
                    break
                chunk_count += 1
                text = decode(line, final=False)
                if text is None:
                    break
                if text:
                    text_chunk_count += 1
                    yield format_delta_frame(text)

        for line in buffer.finalize():
            if line.is_done:
                continue
            chunk_count += 1
            text = decode(line, final=True)
            if text:
                text_chunk_count += 1
                yield format_delta_frame(text)
    finally:
        buffer.reset()
        logger.info(
            f"[SSERelay] Relay ended. Processed {chunk_count} chunks, "
            f"{text_chunk_count} with text"
        )

    yield DONE_FRAME
