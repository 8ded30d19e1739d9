"""
Services Package

Streaming building blocks (SSE line buffer, chunk text extractor, stream
session driver, SSE encoder) plus the Think Mode client, gateway and
session tracking services built on top of them.
"""

from .chunk_extractor import ChunkTextExtractor, extract_text
from .session_tracking_service import SessionTrackingService
from .sse_buffer import SSELineBuffer
from .stream_session import StreamSessionDriver
from .think_mode_client import ThinkModeClient, describe_outcome

__all__ = [
    "ChunkTextExtractor",
    "extract_text",
    "SessionTrackingService",
    "SSELineBuffer",
    "StreamSessionDriver",
    "ThinkModeClient",
    "describe_outcome",
]
