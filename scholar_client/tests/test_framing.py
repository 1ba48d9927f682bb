import pytest

from scholar_client.domain.exceptions import StreamDecodeError, ValidationError
from scholar_client.streaming.framing import (
    ContentSignal,
    DoneSignal,
    ErrorSignal,
    LineEventFraming,
    RawFraming,
    get_framing,
    parse_event_payload,
)


PAYLOAD = (
    'data: {"content":"Riba is "}\n'
    ": keep-alive comment\n"
    'data: {"content":"interest."}\r\n'
    "data: not json\n"
    "\n"
    'data: {"content":"\\u0631\\u0628\\u0627"}\n'
    'data: {"done": true}\n'
)


def _decode_all(framing, chunks):
    carry = ""
    signals = []
    for chunk in chunks:
        decoded, carry = framing.decode(chunk, carry)
        signals.extend(decoded)
    signals.extend(framing.flush(carry))
    return signals


def _split(text, points):
    pieces, last = [], 0
    for p in points:
        pieces.append(text[last:p])
        last = p
    pieces.append(text[last:])
    return pieces


def test_line_framing_decodes_known_shapes():
    signals = _decode_all(LineEventFraming(), [PAYLOAD])
    assert signals == [
        ContentSignal("Riba is "),
        ContentSignal("interest."),
        ContentSignal("ربا"),
        DoneSignal(),
    ]


def test_line_framing_is_independent_of_chunk_boundaries():
    framing = LineEventFraming()
    whole = _decode_all(framing, [PAYLOAD])
    by_char = _decode_all(framing, list(PAYLOAD))
    assert by_char == whole
    for step in (2, 3, 7, 11, 29):
        points = list(range(step, len(PAYLOAD), step))
        assert _decode_all(framing, _split(PAYLOAD, points)) == whole


def test_line_framing_carries_partial_line():
    framing = LineEventFraming()
    signals, carry = framing.decode('data: {"cont', "")
    assert signals == []
    assert carry == 'data: {"cont'
    signals, carry = framing.decode('ent":"a"}\ndata: ', carry)
    assert signals == [ContentSignal("a")]
    assert carry == "data: "


def test_line_framing_flushes_unterminated_last_line():
    framing = LineEventFraming()
    signals, carry = framing.decode('data: {"content":"x"}\ndata: {"done":true}', "")
    assert signals == [ContentSignal("x")]
    assert framing.flush(carry) == [DoneSignal()]


def test_line_framing_custom_marker():
    framing = LineEventFraming(marker="event-data:")
    signals = _decode_all(framing, ['event-data: {"content":"a"}\ndata: {"content":"b"}\n'])
    assert signals == [ContentSignal("a")]


def test_raw_framing_passes_chunks_through():
    framing = RawFraming()
    signals = _decode_all(framing, ["Hel", "lo wor", "", "ld\n"])
    assert signals == [ContentSignal("Hel"), ContentSignal("lo wor"), ContentSignal("ld\n")]


def test_parse_event_payload_shapes():
    assert parse_event_payload('{"error": "upstream timeout"}') == [ErrorSignal("upstream timeout")]
    assert parse_event_payload('{"content": "a", "done": true}') == [ContentSignal("a"), DoneSignal()]
    assert parse_event_payload('{"content": ""}') == []
    assert parse_event_payload("[DONE]") == [DoneSignal()]


@pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '{"unknown": 1}', '{"content": 5}'])
def test_parse_event_payload_rejects_malformed(raw):
    with pytest.raises(StreamDecodeError):
        parse_event_payload(raw)


def test_get_framing():
    assert isinstance(get_framing("raw"), RawFraming)
    line = get_framing("LINE", marker="x:")
    assert isinstance(line, LineEventFraming)
    assert line.marker == "x:"
    with pytest.raises(ValidationError):
        get_framing("sse")
