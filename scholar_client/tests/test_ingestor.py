import httpx
import pytest

from scholar_client.domain.exceptions import StreamConsumedError
from scholar_client.domain.models import Completed, Failed, PartialUpdate
from scholar_client.streaming.framing import LineEventFraming, RawFraming
from scholar_client.streaming.ingestor import StreamIngestor


class FakeHandle:
    def __init__(self, chunks, exchange_id="ex-1"):
        self.exchange_id = exchange_id
        self._chunks = list(chunks)
        self.cancelled = False
        self.closed = False
        self.reads = 0
        self._consumed = False

    def iter_chunks(self):
        for chunk in self._chunks:
            self.reads += 1
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk

    def cancel(self):
        self.cancelled = True

    def close(self):
        self.closed = True

    def mark_consumed(self):
        if self._consumed:
            raise StreamConsumedError(code="STREAM_CONSUMED", message="consumed")
        self._consumed = True


def test_line_stream_with_done():
    handle = FakeHandle([
        'data: {"content":"Riba is "}\n',
        'data: {"content":"interest."}\n',
        'data: {"done": true}\n',
        'data: {"content":"ignored after done"}\n',
    ])
    events = list(StreamIngestor().consume(handle, LineEventFraming()))
    assert events == [
        PartialUpdate("ex-1", "Riba is "),
        PartialUpdate("ex-1", "interest."),
        Completed("ex-1", "Riba is interest."),
    ]
    assert handle.closed
    # reading stops at the done signal
    assert handle.reads == 3


def test_line_stream_error_signal():
    handle = FakeHandle(['data: {"error":"upstream timeout"}\n', 'data: {"content":"x"}\n'])
    events = list(StreamIngestor().consume(handle, LineEventFraming()))
    assert events == [Failed("ex-1", "upstream timeout")]
    assert handle.closed


def test_line_stream_exhausted_without_done_completes():
    handle = FakeHandle(['data: {"content":"par', 'tial"}\n', "garbage\n", 'data: {"content":" end"}'])
    events = list(StreamIngestor().consume(handle, LineEventFraming()))
    assert events[-1] == Completed("ex-1", "partial end")
    assert [e.delta_text for e in events if isinstance(e, PartialUpdate)] == ["partial", " end"]


def test_raw_stream_concatenates_chunks():
    handle = FakeHandle(["Hel", "lo wor", "ld"])
    events = list(StreamIngestor().consume(handle, RawFraming()))
    assert events[-1] == Completed("ex-1", "Hello world")
    assert len([e for e in events if isinstance(e, PartialUpdate)]) == 3


def test_empty_raw_stream_completes_with_empty_text():
    events = list(StreamIngestor().consume(FakeHandle([]), RawFraming()))
    assert events == [Completed("ex-1", "")]


def test_transport_failure_mid_stream():
    handle = FakeHandle(["Hel", httpx.ReadError("connection reset"), "never read"])
    events = list(StreamIngestor().consume(handle, RawFraming()))
    assert events[0] == PartialUpdate("ex-1", "Hel")
    assert isinstance(events[1], Failed)
    assert "connection reset" in events[1].error_detail
    assert len(events) == 2
    assert handle.reads == 2
    assert handle.closed


def test_cancellation_emits_nothing_more():
    handle = FakeHandle([
        'data: {"content":"a"}\n',
        'data: {"content":"b"}\n',
        'data: {"content":"c"}\n',
        'data: {"done": true}\n',
    ])
    events = StreamIngestor().consume(handle, LineEventFraming())
    assert next(events) == PartialUpdate("ex-1", "a")
    assert next(events) == PartialUpdate("ex-1", "b")
    handle.cancel()
    assert list(events) == []
    assert handle.closed


class CancelledWhileReadingHandle(FakeHandle):
    """Simulates another thread cancelling while a read is blocked."""

    def iter_chunks(self):
        yield "a"
        self.cancel()
        raise httpx.ReadError("response closed")


def test_cancellation_swallows_read_error():
    handle = CancelledWhileReadingHandle([])
    events = list(StreamIngestor().consume(handle, RawFraming()))
    assert events == [PartialUpdate("ex-1", "a")]
    assert handle.closed


def test_abandoned_iterator_closes_handle():
    handle = FakeHandle(["a", "b", "c"])
    events = StreamIngestor().consume(handle, RawFraming())
    next(events)
    events.close()
    assert handle.closed


def test_consume_is_not_restartable():
    handle = FakeHandle(["a"])
    ingestor = StreamIngestor()
    list(ingestor.consume(handle, RawFraming()))
    with pytest.raises(StreamConsumedError):
        ingestor.consume(handle, RawFraming())


@pytest.mark.parametrize(
    "chunks, framing",
    [
        (['data: {"content":"a"}\n', 'data: {"done": true}\n', "unread"], LineEventFraming()),
        (['data: {"error":"boom"}\n', "unread"], LineEventFraming()),
        (['data: {"content":"a"}\ndata: {"done": true}'], LineEventFraming()),
        (["a", "b"], RawFraming()),
        (["a", httpx.ReadError("reset")], RawFraming()),
    ],
)
def test_handle_released_before_terminal_event_is_seen(chunks, framing):
    handle = FakeHandle(chunks)
    events = StreamIngestor().consume(handle, framing)
    for event in events:
        if isinstance(event, (Completed, Failed)):
            assert handle.closed
            break
        assert not handle.closed
    else:
        pytest.fail("no terminal event")
