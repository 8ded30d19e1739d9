"""
Line-oriented buffer for Server-Sent Events byte streams.

Turns raw byte chunks from a streaming HTTP body into complete `data:` lines,
tolerating chunk boundaries that split a line (or a multi-byte character)
anywhere.

Framing rules:
- Lines end at `\n`; a trailing `\r` is stripped
- Blank lines and `:` comment lines are dropped
- Lines that do not start with `data:` are dropped
- `data: [DONE]` is yielded as a sentinel and ends the current feed
"""

import codecs
import logging
from collections.abc import Iterator

from app.models.stream_types import DATA_PREFIX, SSELine

logger = logging.getLogger(__name__)

# Prefixes of SSE fields. A raw line starting with one of these is never
# treated as the continuation of a pushed-back payload.
_FIELD_PREFIXES = ("data:", "event:", "id:", "retry:")


class SSELineBuffer:
    """
    Accumulate decoded text and hand out complete SSE lines one at a time.

    Lines are extracted lazily: if the consumer stops iterating, whatever was
    not consumed stays buffered and is offered again on the next `feed()`.

    Usage:
        buffer = SSELineBuffer()
        async for data in response.aiter_bytes():
            for line in buffer.feed(data):
                ...
        for line in buffer.finalize():
            ...
    """

    def __init__(self):
        """Initialize buffer with clean state"""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._text = ""
        self._pending: SSELine | None = None

    def reset(self):
        """Drop all buffered state"""
        self._decoder.reset()
        self._text = ""
        self._pending = None

    @property
    def buffered_text(self) -> str:
        """Decoded text not yet split into lines"""
        return self._text

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def feed(self, data: bytes) -> Iterator[SSELine]:
        """
        Append a byte chunk and iterate over the lines it completes.

        Args:
            data: Raw bytes exactly as read from the stream

        Yields:
            SSELine for every complete `data:` line, stopping after `[DONE]`
        """
        self._text += self._decoder.decode(data)
        return self._drain(stop_at_done=True)

    def finalize(self) -> Iterator[SSELine]:
        """
        Flush everything left once the stream has no more bytes.

        An unterminated last line is processed as if it ended with a newline.
        `[DONE]` sentinels are still yielded but do not stop the flush.
        """
        self._text += self._decoder.decode(b"", final=True)
        if self._text and not self._text.endswith("\n"):
            self._text += "\n"
        return self._drain(stop_at_done=False)

    def pushback(self, line: SSELine):
        """
        Return a line whose payload could not be parsed yet.

        The line is offered again ahead of everything else. If the next raw
        line is a continuation (not blank, not a comment, not another field)
        it is joined onto the payload first; otherwise the line can never be
        completed and is discarded.
        """
        if self._pending is not None:
            logger.warning(
                f"[SSEBuffer] Replacing unresolved pushed-back line: "
                f"{self._pending.payload[:100]!r}"
            )
        self._pending = line
        logger.debug(f"[SSEBuffer] Re-buffered line: {line.payload[:100]!r}")

    def _drain(self, stop_at_done: bool) -> Iterator[SSELine]:
        while True:
            if self._pending is not None:
                line = self._resolve_pending(final=not stop_at_done)
                if line is None:
                    if self._pending is not None:
                        # Waiting for the next raw line to arrive
                        return
                    continue
                yield line
                if not stop_at_done and self._pending is line:
                    # Pushed back again while flushing; nothing can complete it
                    logger.warning(
                        f"[SSEBuffer] Discarding unparseable payload at end of stream: "
                        f"{line.payload[:100]!r}"
                    )
                    self._pending = None
                continue

            raw = self._take_raw_line()
            if raw is None:
                return

            line = self._frame(raw)
            if line is None:
                continue

            yield line
            if stop_at_done and line.is_done:
                logger.debug("[SSEBuffer] [DONE] received, ending this feed")
                return

    def _resolve_pending(self, final: bool) -> SSELine | None:
        pending = self._pending
        raw = self._peek_raw_line()

        if raw is None:
            if final:
                self._pending = None
                return pending
            return None

        if not self._is_continuation(raw):
            logger.warning(
                f"[SSEBuffer] Discarding unparseable payload: {pending.payload[:100]!r}"
            )
            self._pending = None
            return None

        self._take_raw_line()
        continuation = raw.removesuffix("\r")
        self._pending = None
        return SSELine(
            raw=f"{pending.raw}\n{continuation}",
            payload=f"{pending.payload}\n{continuation}".strip(),
        )

    def _peek_raw_line(self) -> str | None:
        newline_index = self._text.find("\n")
        if newline_index == -1:
            return None
        return self._text[:newline_index]

    def _take_raw_line(self) -> str | None:
        newline_index = self._text.find("\n")
        if newline_index == -1:
            return None
        raw = self._text[:newline_index]
        self._text = self._text[newline_index + 1 :]
        return raw

    @staticmethod
    def _is_continuation(raw: str) -> bool:
        line = raw.removesuffix("\r")
        if not line.strip() or line.startswith(":"):
            return False
        return not line.startswith(_FIELD_PREFIXES)

    @staticmethod
    def _frame(raw: str) -> SSELine | None:
        line = raw.removesuffix("\r")
        if not line.strip() or line.startswith(":"):
            return None
        if not line.startswith(DATA_PREFIX):
            logger.debug(f"[SSEBuffer] Skipping non-data line: {line[:100]!r}")
            return None
        return SSELine.from_raw(line)
