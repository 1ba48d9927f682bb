"""Chat engine.

Wires one exchange end to end: validate the prompt, record the user message,
dispatch the request, ingest the stream and apply every event to the
transcript store in arrival order.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional

from scholar_client.config.settings import settings
from scholar_client.domain.exceptions import TransportError
from scholar_client.domain.models import (
    Completed,
    ExchangeOptions,
    ExchangeRequest,
    Failed,
    IngestionEvent,
    Message,
    PartialUpdate,
)
from scholar_client.domain.transcript import TranscriptSnapshot, TranscriptStore
from scholar_client.infrastructure.logging.logger import logger
from scholar_client.streaming.framing import FramingStrategy, get_framing
from scholar_client.streaming.ingestor import StreamIngestor
from scholar_client.transport.base import StreamHandle
from scholar_client.transport.dispatcher import RequestDispatcher


# (exchange_id, error_detail) -> None; receives the cause the user never sees
FailureReporter = Callable[[str, str], None]


def log_failure(exchange_id: str, detail: str) -> None:
    logger.error("Exchange failed", extra={"extra": {"exchange_id": exchange_id, "error": detail}})


@dataclass
class EngineConfig:
    framing: Optional[str] = None  # None: use the dispatcher profile's framing
    event_marker: str = "data:"


class ChatEngine:
    def __init__(
        self,
        store: TranscriptStore,
        dispatcher: RequestDispatcher,
        ingestor: Optional[StreamIngestor] = None,
        config: Optional[EngineConfig] = None,
        on_failure: Optional[FailureReporter] = None,
    ):
        self._store = store
        self._dispatcher = dispatcher
        self._ingestor = ingestor or StreamIngestor()
        self._config = config or EngineConfig(
            framing=getattr(settings, "framing", None),
            event_marker=getattr(settings, "event_marker", "data:"),
        )
        self._on_failure = on_failure or log_failure
        self._active: Optional[StreamHandle] = None
        self._driving = False

    @property
    def store(self) -> TranscriptStore:
        return self._store

    @property
    def busy(self) -> bool:
        return self._dispatcher.busy

    def framing(self) -> FramingStrategy:
        name = self._config.framing or self._dispatcher.profile.framing
        return get_framing(name, marker=self._config.event_marker)

    def ask_stream(
        self,
        prompt: str,
        options: Optional[ExchangeOptions] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Iterator[IngestionEvent]:
        """Start one exchange and return its events as they are applied.

        Validation, the busy check, the user message and the request itself
        happen before this returns; the stream is read as the caller iterates.

        Args:
            prompt: the question, must not be blank
            options: optional request parameters
            timeout: seconds after which the exchange is cancelled

        Raises:
            ValidationError: blank prompt (nothing is recorded)
            ConcurrentRequestError: another exchange has not terminated yet
        """
        request = ExchangeRequest(prompt=prompt, options=options or ExchangeOptions())
        log_ctx: Dict[str, Any] = {"exchange_id": request.exchange_id}
        # raises ConcurrentRequestError; the slot is held until dispatch settles
        self._dispatcher.reserve(request.exchange_id)
        try:
            position = self._store.submit_user_message(request.prompt, exchange_id=request.exchange_id)
        except BaseException:
            self._dispatcher.release_reservation(request.exchange_id)
            raise
        self._log(logging.INFO, "Stored user message", log_ctx, position=position)

        try:
            handle = self._dispatcher.dispatch(request)
        except TransportError as e:
            detail = f"{e.code}: {e.message}"
            self._on_failure(request.exchange_id, detail)
            event = Failed(exchange_id=request.exchange_id, error_detail=detail)
            self._store.apply_event(event)
            return iter([event])

        self._active = handle
        return self._drive(handle, request.exchange_id, timeout, log_ctx)

    def ask(
        self,
        prompt: str,
        options: Optional[ExchangeOptions] = None,
        *,
        timeout: Optional[float] = None,
        on_event: Optional[Callable[[IngestionEvent], None]] = None,
    ) -> Optional[Message]:
        """Run one exchange to the end; returns the assistant Message, or None if cancelled."""

        terminal = None
        for event in self.ask_stream(prompt, options, timeout=timeout):
            if on_event:
                on_event(event)
            if not isinstance(event, PartialUpdate):
                terminal = event
        if terminal is None:
            return None
        messages = self._store.messages()
        for msg in reversed(messages):
            if msg.role == "assistant" and msg.exchange_id == terminal.exchange_id:
                return msg
        return None

    def cancel(self) -> None:
        """Cancel the exchange in flight, if any. Safe to call repeatedly."""

        handle = self._active
        if handle is None:
            return
        handle.cancel()
        if not self._driving:
            # the event iterator was never started, so nothing else will clean up
            handle.close()
            self._store.abandon(handle.exchange_id)
            self._active = None

    def snapshot(self) -> TranscriptSnapshot:
        return self._store.snapshot()

    def _drive(
        self,
        handle: StreamHandle,
        exchange_id: str,
        timeout: Optional[float],
        log_ctx: Dict[str, Any],
    ) -> Iterator[IngestionEvent]:
        start_time = time.time()
        timer: Optional[threading.Timer] = None
        if timeout is not None:
            timer = threading.Timer(timeout, handle.cancel)
            timer.daemon = True
            timer.start()

        terminated = False
        self._driving = True
        try:
            for event in self._ingestor.consume(handle, self.framing()):
                if isinstance(event, Failed):
                    self._on_failure(exchange_id, event.error_detail)
                self._store.apply_event(event)
                if isinstance(event, (Completed, Failed)):
                    # free the engine before the consumer sees the terminal event
                    terminated = True
                    if timer is not None:
                        timer.cancel()
                    self._finish(handle)
                yield event
        finally:
            if timer is not None:
                timer.cancel()
            if not terminated:
                # cancelled, timed out, or the caller stopped iterating
                handle.cancel()
                handle.close()
                self._store.abandon(exchange_id)
                self._log(logging.INFO, "Exchange cancelled", log_ctx)
            self._finish(handle)
            self._log(
                logging.INFO,
                "Exchange finished",
                log_ctx,
                terminated=terminated,
                elapsed_seconds=round(time.time() - start_time, 2),
            )

    def _finish(self, handle: StreamHandle) -> None:
        # a newer exchange may already own the engine
        if self._active is handle:
            self._active = None
            self._driving = False

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
