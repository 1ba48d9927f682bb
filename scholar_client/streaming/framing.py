"""Framing strategies for streamed response bodies.

A strategy turns arbitrarily split text chunks into signals:

- ContentSignal: a fragment of answer text.
- ErrorSignal: the service reported a failure inside the stream.
- DoneSignal: the service reported the end of the answer.

decode(chunk, carry) -> (signals, carry) keeps the carry-over (an unfinished
line) as explicit state so the ingestor can drop it on cancellation.
"""

import json
from dataclasses import dataclass
from typing import List, Protocol, Tuple, Union

from scholar_client.domain.exceptions import StreamDecodeError, ValidationError
from scholar_client.infrastructure.logging.logger import logger


@dataclass(frozen=True)
class ContentSignal:
    text: str


@dataclass(frozen=True)
class ErrorSignal:
    message: str


@dataclass(frozen=True)
class DoneSignal:
    pass


Signal = Union[ContentSignal, ErrorSignal, DoneSignal]


class FramingStrategy(Protocol):
    name: str

    def decode(self, chunk: str, carry: str) -> Tuple[List[Signal], str]:
        ...

    def flush(self, carry: str) -> List[Signal]:
        """Decode whatever is left in carry once the stream is exhausted."""

        ...


class RawFraming:
    """Plain text: every chunk is appended as-is."""

    name = "raw"

    def decode(self, chunk: str, carry: str) -> Tuple[List[Signal], str]:
        if not chunk:
            return [], ""
        return [ContentSignal(chunk)], ""

    def flush(self, carry: str) -> List[Signal]:
        return []


class LineEventFraming:
    """Newline separated lines; only lines starting with the marker carry JSON.

    Payload shapes: {"content": str}, {"error": msg}, {"done": true}. The
    bare "[DONE]" sentinel also ends the stream. Anything else is skipped.
    """

    name = "line"

    def __init__(self, marker: str = "data:"):
        self.marker = marker

    def decode(self, chunk: str, carry: str) -> Tuple[List[Signal], str]:
        lines = (carry + chunk).split("\n")
        # the last piece has no newline yet; keep it for the next chunk
        rest = lines.pop()
        signals: List[Signal] = []
        for line in lines:
            signals.extend(self._decode_line(line))
        return signals, rest

    def flush(self, carry: str) -> List[Signal]:
        if not carry:
            return []
        return self._decode_line(carry)

    def _decode_line(self, line: str) -> List[Signal]:
        line = line.rstrip("\r")
        if not line.startswith(self.marker):
            return []
        data_str = line[len(self.marker):].strip()
        if not data_str:
            return []
        try:
            return parse_event_payload(data_str)
        except StreamDecodeError as e:
            logger.debug("Skipped undecodable line", extra={"extra": {
                "reason": e.message,
                "line": data_str[:120],
            }})
            return []


def parse_event_payload(data_str: str) -> List[Signal]:
    """Parse one event payload. Raises StreamDecodeError for unknown shapes."""

    if data_str == "[DONE]":
        return [DoneSignal()]
    try:
        data = json.loads(data_str)
    except json.JSONDecodeError as e:
        raise StreamDecodeError(code="STREAM_DECODE_ERROR", message=f"invalid JSON: {e.msg}")
    if not isinstance(data, dict):
        raise StreamDecodeError(code="STREAM_DECODE_ERROR", message="payload is not an object")

    if "error" in data:
        return [ErrorSignal(str(data["error"]))]
    signals: List[Signal] = []
    content = data.get("content")
    if isinstance(content, str):
        if content:
            signals.append(ContentSignal(content))
    elif content is not None:
        raise StreamDecodeError(code="STREAM_DECODE_ERROR", message="content is not a string")
    if data.get("done") is True:
        signals.append(DoneSignal())
    if not signals and "content" not in data:
        raise StreamDecodeError(code="STREAM_DECODE_ERROR", message="unknown payload shape")
    return signals


def get_framing(name: str, marker: str = "data:") -> FramingStrategy:
    """Create a framing strategy by name ("raw" or "line")."""

    key = (name or "").lower()
    if key == "raw":
        return RawFraming()
    if key == "line":
        return LineEventFraming(marker=marker)
    raise ValidationError(code="UNKNOWN_FRAMING", message=f"Unknown framing: {name!r}")
