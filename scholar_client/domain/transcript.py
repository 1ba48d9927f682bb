from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

from scholar_client.domain.models import IngestionEvent, IngestionStatus, Message


# Shown in place of an answer whenever an exchange fails; the real cause is logged
FAILURE_NOTICE = "Sorry, the scholar could not answer right now. Please try again."


@dataclass(frozen=True)
class TranscriptSnapshot:
    """What a renderer needs: committed history plus the uncommitted partial text."""

    messages: Tuple[Message, ...]
    partial_text: str
    status: IngestionStatus


class TranscriptStore(Protocol):
    """Append-only transcript with at most one open exchange.

    submit_user_message() opens an exchange and raises ConcurrentRequestError
    while another one is open. apply_event() starts the shared IngestionState
    itself when no one else has, for partial and terminal events alike.
    """

    def submit_user_message(self, text: str, exchange_id: Optional[str] = None) -> int:
        ...

    def apply_event(self, event: IngestionEvent) -> bool:
        ...

    def abandon(self, exchange_id: str) -> None:
        ...

    def messages(self) -> Tuple[Message, ...]:
        ...

    @property
    def partial_text(self) -> str:
        ...

    def snapshot(self) -> TranscriptSnapshot:
        ...
