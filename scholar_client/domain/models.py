"""Shared data models for one question/answer exchange.

This module defines the structures the dispatcher, the ingestor and the
transcript store pass between each other:

- Message: an immutable transcript entry (user question or assistant answer).
- ExchangeOptions / ExchangeRequest: what is sent to the remote service.
- IngestionState: the transient state of the exchange currently streaming.
- PartialUpdate / Completed / Failed: events produced while a stream is read.

Transport adapters and stores must depend only on these models.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence, Tuple, Union
from uuid import uuid4

from scholar_client.domain.exceptions import InvalidStateError, ValidationError


# Transcript roles (matching the "role" field rendered by the chat front-end)
Role = Literal["user", "assistant"]

# Usuli framework identifiers understood by the scholar service
KNOWN_FRAMEWORKS: Tuple[str, ...] = (
    "Taswīr",
    "Taḥkīm",
    "Tadlīl",
    "Ta'līl",
    "Tafri'",
    "Tamsīl",
)


def new_message_id() -> str:
    return f"m-{uuid4().hex}"


def new_exchange_id() -> str:
    return f"ex-{uuid4().hex}"


@dataclass(frozen=True)
class Message:
    """One committed transcript entry.

    - role: "user" or "assistant".
    - content: the final text; never changes once the record exists.
    - exchange_id: links the user entry and the assistant entry of one exchange.
    - meta: read-only flags for the renderer (e.g. {"failed": True}); not sent upstream.
    """

    id: str
    role: Role
    content: str
    created_at: datetime
    exchange_id: Optional[str] = None
    meta: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "meta", MappingProxyType(dict(self.meta)))


@dataclass
class ExchangeOptions:
    """Optional request parameters. None means "use the service default".

    An empty framework selection is treated like no selection at all: the key
    is left out of the payload and the service analyses every framework.
    """

    deep_analysis: Optional[bool] = None
    frameworks: Optional[Sequence[str]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def selected_frameworks(self) -> List[str]:
        if not self.frameworks:
            return []
        seen: List[str] = []
        for fw in self.frameworks:
            if fw not in seen:
                seen.append(fw)
        return seen


@dataclass
class ExchangeRequest:
    """One outbound generation request, built fresh per submission."""

    prompt: str
    options: ExchangeOptions = field(default_factory=ExchangeOptions)
    exchange_id: str = field(default_factory=new_exchange_id)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if not isinstance(self.prompt, str) or not self.prompt.strip():
            raise ValidationError(code="EMPTY_PROMPT", message="Please enter a question")


class IngestionStatus(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class IngestionState:
    """Transient state of the exchange currently being ingested.

    A single instance is shared by the dispatcher (which starts an exchange)
    and the transcript store (which feeds it partial text and terminates it).
    Fragments only ever append until a terminal status is reached.
    """

    status: IngestionStatus = IngestionStatus.IDLE
    exchange_id: Optional[str] = None
    error_detail: Optional[str] = None
    _fragments: List[str] = field(default_factory=list, repr=False)

    @property
    def accumulated_text(self) -> str:
        return "".join(self._fragments)

    @property
    def fragment_count(self) -> int:
        return len(self._fragments)

    @property
    def is_terminal(self) -> bool:
        return self.status in (IngestionStatus.COMPLETED, IngestionStatus.FAILED)

    def begin(self, exchange_id: str) -> None:
        self.reset()
        self.exchange_id = exchange_id
        self.status = IngestionStatus.STREAMING

    def append(self, delta: str) -> None:
        self._require_streaming("append")
        self._fragments.append(delta)

    def complete(self) -> None:
        self._require_streaming("complete")
        self.status = IngestionStatus.COMPLETED

    def fail(self, detail: str) -> None:
        self._require_streaming("fail")
        self.status = IngestionStatus.FAILED
        self.error_detail = detail

    def reset(self) -> None:
        self.status = IngestionStatus.IDLE
        self.exchange_id = None
        self.error_detail = None
        self._fragments = []

    def _require_streaming(self, action: str) -> None:
        if self.status is not IngestionStatus.STREAMING:
            raise InvalidStateError(
                code="INVALID_STATE",
                message=f"cannot {action} while {self.status.value}",
                exchange_id=self.exchange_id,
            )


@dataclass(frozen=True)
class PartialUpdate:
    """A decoded fragment to append to the live partial text."""

    exchange_id: str
    delta_text: str


@dataclass(frozen=True)
class Completed:
    """Clean end of the exchange; final_text is every fragment concatenated."""

    exchange_id: str
    final_text: str


@dataclass(frozen=True)
class Failed:
    """Terminal failure. error_detail is for observability, not for the user."""

    exchange_id: str
    error_detail: str


IngestionEvent = Union[PartialUpdate, Completed, Failed]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
