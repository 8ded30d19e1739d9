"""
Unit tests for SSELineBuffer.

Tests cover:
- Complete lines in a single chunk
- Lines and multi-byte characters split across chunks
- CRLF line endings, comments, blank and non-data lines
- [DONE] sentinel handling
- Push-back of unparseable lines
- Finalize with unterminated lines
"""

import json

from app.services.sse_buffer import SSELineBuffer

STREAM = (
    'data: {"choices":[{"delta":{"content":"Hello"}}]}\n\n'
    ": keep-alive\n"
    'data: {"choices":[{"delta":{"content":" wörld 🌍"}}]}\r\n\r\n'
    "event: ping\n"
    'data: {"text":"!"}\n\n'
    "data: [DONE]\n\n"
).encode("utf-8")


def collect(buffer, chunks):
    lines = []
    for chunk in chunks:
        lines.extend(buffer.feed(chunk))
    lines.extend(buffer.finalize())
    return lines


def test_complete_lines_single_chunk():
    """Test every data line is yielded in order from one chunk"""
    buffer = SSELineBuffer()

    lines = collect(buffer, [STREAM])

    payloads = [line.payload for line in lines]
    assert payloads == [
        '{"choices":[{"delta":{"content":"Hello"}}]}',
        '{"choices":[{"delta":{"content":" wörld 🌍"}}]}',
        '{"text":"!"}',
        "[DONE]",
    ]
    assert lines[-1].is_done is True
    assert not any(line.is_done for line in lines[:-1])


def test_chunk_boundary_invariance_every_offset():
    """Test splitting the stream at any byte offset yields the same lines"""
    expected = [line.payload for line in collect(SSELineBuffer(), [STREAM])]

    for offset in range(1, len(STREAM)):
        buffer = SSELineBuffer()
        lines = collect(buffer, [STREAM[:offset], STREAM[offset:]])
        assert [line.payload for line in lines] == expected, f"split at {offset}"


def test_byte_at_a_time_streaming():
    """Test feeding one byte per chunk, splitting every multi-byte character"""
    buffer = SSELineBuffer()

    lines = collect(buffer, [STREAM[i : i + 1] for i in range(len(STREAM))])

    assert json.loads(lines[1].payload)["choices"][0]["delta"]["content"] == " wörld 🌍"


def test_partial_line_stays_buffered():
    """Test a line without newline is held until the rest arrives"""
    buffer = SSELineBuffer()

    assert list(buffer.feed(b'data: {"text":')) == []
    assert buffer.buffered_text == 'data: {"text":'

    lines = list(buffer.feed(b'"hi"}\n'))
    assert [line.payload for line in lines] == ['{"text":"hi"}']
    assert buffer.buffered_text == ""


def test_carriage_return_stripped():
    """Test CRLF terminated lines lose their trailing carriage return"""
    buffer = SSELineBuffer()

    lines = list(buffer.feed(b"data: abc\r\n"))

    assert lines[0].raw == "data: abc"
    assert lines[0].payload == "abc"


def test_comments_blank_and_non_data_lines_dropped():
    """Test only data lines are yielded"""
    buffer = SSELineBuffer()

    lines = list(buffer.feed(b": comment\n\n   \nevent: message\nid: 7\ndata:x\n"))

    assert [line.payload for line in lines] == ["x"]


def test_done_terminates_feed():
    """Test [DONE] ends the current feed; later lines wait for the next call"""
    buffer = SSELineBuffer()

    lines = list(buffer.feed(b'data: [DONE]\n\ndata: {"text":"late"}\n\n'))

    assert len(lines) == 1
    assert lines[0].is_done is True

    later = list(buffer.feed(b""))
    assert [line.payload for line in later] == ['{"text":"late"}']


def test_done_with_surrounding_whitespace():
    """Test the sentinel is recognised with extra whitespace around it"""
    buffer = SSELineBuffer()

    lines = list(buffer.feed(b"data:    [DONE]   \n"))

    assert lines[0].is_done is True


def test_done_like_payload_is_not_sentinel():
    """Test payloads merely containing [DONE] are regular lines"""
    buffer = SSELineBuffer()

    lines = list(buffer.feed(b'data: "[DONE]"\ndata: [DONE] later\n'))

    assert [line.is_done for line in lines] == [False, False]


def test_unconsumed_lines_stay_buffered():
    """Test stopping iteration early keeps remaining lines for the next feed"""
    buffer = SSELineBuffer()

    iterator = buffer.feed(b"data: 1\ndata: 2\ndata: 3\n")
    first = next(iterator)
    assert first.payload == "1"

    rest = list(buffer.feed(b""))
    assert [line.payload for line in rest] == ["2", "3"]


def test_pushback_joins_continuation_line():
    """Test a pushed-back payload is completed by a continuation line"""
    buffer = SSELineBuffer()

    for line in buffer.feed(b'data: {"text":\n'):
        buffer.pushback(line)
        break
    assert buffer.has_pending

    lines = list(buffer.feed(b'"joined"}\n\n'))

    assert len(lines) == 1
    assert json.loads(lines[0].payload) == {"text": "joined"}
    assert not buffer.has_pending


def test_pushback_waits_for_next_line():
    """Test a pushed-back line is held while no further line is complete"""
    buffer = SSELineBuffer()

    for line in buffer.feed(b"data: {bad\n"):
        buffer.pushback(line)

    assert list(buffer.feed(b"still partial")) == []
    assert buffer.has_pending


def test_pushback_discarded_at_event_boundary():
    """Test a pushed-back line followed by a blank line is dropped"""
    buffer = SSELineBuffer()

    for line in buffer.feed(b"data: {broken\n"):
        buffer.pushback(line)

    lines = list(buffer.feed(b'\ndata: {"text":"next"}\n'))

    assert [line.payload for line in lines] == ['{"text":"next"}']
    assert not buffer.has_pending


def test_pushback_discarded_before_next_data_line():
    """Test a pushed-back line cannot absorb another data line"""
    buffer = SSELineBuffer()

    for line in buffer.feed(b"data: {broken\n"):
        buffer.pushback(line)

    lines = list(buffer.feed(b"data: 2\n"))

    assert [line.payload for line in lines] == ["2"]


def test_finalize_processes_unterminated_line():
    """Test the last line is flushed even without a trailing newline"""
    buffer = SSELineBuffer()

    assert list(buffer.feed(b'data: {"text":"tail"}')) == []
    lines = list(buffer.finalize())

    assert [line.payload for line in lines] == ['{"text":"tail"}']


def test_finalize_does_not_stop_at_done():
    """Test finalize flushes lines after a sentinel"""
    buffer = SSELineBuffer()
    buffer._text = "data: [DONE]\ndata: after\n"

    lines = list(buffer.finalize())

    assert [line.payload for line in lines] == ["[DONE]", "after"]


def test_finalize_drops_repeated_pushback():
    """Test a line pushed back during finalize is retried once, then discarded"""
    buffer = SSELineBuffer()
    buffer.feed(b"data: {broken")

    seen = []
    for line in buffer.finalize():
        seen.append(line.payload)
        buffer.pushback(line)

    assert seen == ["{broken", "{broken"]
    assert not buffer.has_pending


def test_reset_discards_state():
    """Test reset drops buffered text and pending lines"""
    buffer = SSELineBuffer()
    for line in buffer.feed(b"data: {x\ndata: partial"):
        buffer.pushback(line)
        break

    buffer.reset()

    assert buffer.buffered_text == ""
    assert not buffer.has_pending
    assert list(buffer.finalize()) == []


def test_reset_drops_partial_character():
    """Test reset forgets half of a multi-byte character"""
    buffer = SSELineBuffer()
    assert list(buffer.feed(b'data: {"text":"\xc3')) == []

    buffer.reset()
    lines = list(buffer.feed(b'data: {"text":"ok"}\n'))

    assert [line.payload for line in lines] == ['{"text":"ok"}']
    assert buffer.buffered_text == ""
