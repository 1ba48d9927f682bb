import threading
from typing import List, Optional, Set, Tuple

from scholar_client.domain.exceptions import ConcurrentRequestError, InvalidStateError
from scholar_client.domain.models import (
    Completed,
    Failed,
    IngestionEvent,
    IngestionState,
    IngestionStatus,
    Message,
    PartialUpdate,
    new_exchange_id,
    new_message_id,
    utcnow,
)
from scholar_client.domain.transcript import FAILURE_NOTICE, TranscriptSnapshot, TranscriptStore
from scholar_client.infrastructure.logging.logger import logger


class InMemoryTranscriptStore(TranscriptStore):
    """Append-only transcript held in memory for the lifetime of the client.

    Partial text lives in the shared IngestionState and only becomes a
    Message when the exchange terminates. Each exchange accepts exactly one
    terminal event; anything arriving afterwards is ignored.
    """

    def __init__(self, state: Optional[IngestionState] = None, failure_notice: str = FAILURE_NOTICE):
        self._state = state if state is not None else IngestionState()
        self._failure_notice = failure_notice
        self._messages: List[Message] = []
        self._open_exchange: Optional[str] = None
        self._closed: Set[str] = set()
        self._lock = threading.Lock()

    @property
    def state(self) -> IngestionState:
        return self._state

    @property
    def open_exchange_id(self) -> Optional[str]:
        return self._open_exchange

    def submit_user_message(self, text: str, exchange_id: Optional[str] = None) -> int:
        with self._lock:
            if self._open_exchange is not None:
                raise ConcurrentRequestError(
                    code="REQUEST_IN_FLIGHT",
                    message="Another question is still being answered",
                    http_status=409,
                    exchange_id=self._open_exchange,
                )
            exchange_id = exchange_id or new_exchange_id()
            msg = Message(
                id=new_message_id(),
                role="user",
                content=text,
                created_at=utcnow(),
                exchange_id=exchange_id,
            )
            self._messages.append(msg)
            self._open_exchange = exchange_id
            return len(self._messages) - 1

    def apply_event(self, event: IngestionEvent) -> bool:
        with self._lock:
            if event.exchange_id in self._closed or event.exchange_id != self._open_exchange:
                logger.debug("Ignored event for inactive exchange", extra={"extra": {
                    "exchange_id": event.exchange_id,
                    "event": type(event).__name__,
                }})
                return False

            if self._state.status is not IngestionStatus.STREAMING:
                # nobody started the shared state: standalone store, or a
                # terminal event for a stream that never opened (transport error)
                self._state.begin(event.exchange_id)
            self._require_streaming(event.exchange_id)

            if isinstance(event, PartialUpdate):
                self._state.append(event.delta_text)
                return True
            if isinstance(event, Completed):
                self._commit_assistant(event.exchange_id, event.final_text, {})
                self._state.complete()
            elif isinstance(event, Failed):
                self._commit_assistant(event.exchange_id, self._failure_notice, {"failed": True})
                self._state.fail(event.error_detail)
            else:
                raise TypeError(f"Unsupported event: {event!r}")
            return True

    def abandon(self, exchange_id: str) -> None:
        """Close a cancelled exchange without an assistant entry."""

        with self._lock:
            if exchange_id != self._open_exchange:
                return
            self._closed.add(exchange_id)
            self._open_exchange = None
            if self._state.exchange_id in (exchange_id, None):
                self._state.reset()

    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def partial_text(self) -> str:
        if self._state.status is not IngestionStatus.STREAMING:
            return ""
        return self._state.accumulated_text

    def snapshot(self) -> TranscriptSnapshot:
        with self._lock:
            return TranscriptSnapshot(
                messages=tuple(self._messages),
                partial_text=self.partial_text,
                status=self._state.status,
            )

    def __len__(self) -> int:
        return len(self._messages)

    def _require_streaming(self, exchange_id: str) -> None:
        if self._state.status is not IngestionStatus.STREAMING or self._state.exchange_id != exchange_id:
            raise InvalidStateError(
                code="INVALID_STATE",
                message="exchange is not streaming",
                exchange_id=exchange_id,
                state_exchange_id=self._state.exchange_id,
            )

    def _commit_assistant(self, exchange_id: str, content: str, meta: dict) -> None:
        self._messages.append(
            Message(
                id=new_message_id(),
                role="assistant",
                content=content,
                created_at=utcnow(),
                exchange_id=exchange_id,
                meta=meta,
            )
        )
        self._closed.add(exchange_id)
        self._open_exchange = None
