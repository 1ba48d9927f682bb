"""Stream ingestion.

StreamIngestor.consume() reads an open StreamHandle chunk by chunk, hands
every chunk to a FramingStrategy and yields ingestion events:

- PartialUpdate for each decoded fragment, in arrival order;
- exactly one terminal Completed or Failed, unless the handle is cancelled,
  in which case nothing more is yielded at all.

An exhausted stream counts as a clean end even without an explicit done
signal. The handle is closed before the terminal event is yielded, so the
dispatcher is free again by the time a consumer sees it, and in any case on
every exit path.
"""

from typing import Iterator, List

import httpx

from scholar_client.domain.models import Completed, Failed, IngestionEvent, PartialUpdate
from scholar_client.infrastructure.logging.logger import logger
from scholar_client.streaming.framing import ContentSignal, ErrorSignal, FramingStrategy, Signal
from scholar_client.transport.base import StreamHandle


class StreamIngestor:
    def consume(self, handle: StreamHandle, framing: FramingStrategy) -> Iterator[IngestionEvent]:
        """Lazily ingest one stream. The returned iterator cannot be restarted."""

        handle.mark_consumed()
        return self._run(handle, framing)

    def _run(self, handle: StreamHandle, framing: FramingStrategy) -> Iterator[IngestionEvent]:
        exchange_id = handle.exchange_id
        log_ctx = {"exchange_id": exchange_id, "framing": framing.name}
        pieces: List[str] = []
        carry = ""
        logger.info("Ingestion started", extra={"extra": log_ctx})
        try:
            for chunk in handle.iter_chunks():
                if handle.cancelled:
                    break
                signals, carry = framing.decode(chunk, carry)
                for event in self._to_events(exchange_id, signals, pieces):
                    if handle.cancelled:
                        break
                    if isinstance(event, PartialUpdate):
                        yield event
                        continue
                    handle.close()
                    self._log_end(event, pieces, log_ctx)
                    yield event
                    return
                if handle.cancelled:
                    break

            if handle.cancelled:
                logger.info("Ingestion cancelled", extra={"extra": {**log_ctx, "fragments": len(pieces)}})
                return

            tail = framing.flush(carry)
            carry = ""
            for event in self._to_events(exchange_id, tail, pieces):
                if isinstance(event, PartialUpdate):
                    yield event
                    continue
                handle.close()
                self._log_end(event, pieces, log_ctx)
                yield event
                return

            event = Completed(exchange_id=exchange_id, final_text="".join(pieces))
            handle.close()
            self._log_end(event, pieces, log_ctx, explicit_done=False)
            yield event
        except (httpx.HTTPError, httpx.StreamError) as e:
            if handle.cancelled:
                logger.info("Ingestion cancelled", extra={"extra": {**log_ctx, "fragments": len(pieces)}})
                return
            logger.warning("Stream read failed", extra={"extra": {**log_ctx, "error": str(e)}})
            handle.close()
            yield Failed(exchange_id=exchange_id, error_detail=f"{type(e).__name__}: {e}")
        finally:
            carry = ""
            handle.close()

    @staticmethod
    def _to_events(exchange_id: str, signals: List[Signal], pieces: List[str]) -> Iterator[IngestionEvent]:
        for signal in signals:
            if isinstance(signal, ContentSignal):
                pieces.append(signal.text)
                yield PartialUpdate(exchange_id=exchange_id, delta_text=signal.text)
            elif isinstance(signal, ErrorSignal):
                yield Failed(exchange_id=exchange_id, error_detail=signal.message)
                return
            else:
                yield Completed(exchange_id=exchange_id, final_text="".join(pieces))
                return

    @staticmethod
    def _log_end(event: IngestionEvent, pieces: List[str], log_ctx: dict, explicit_done: bool = True) -> None:
        if isinstance(event, Failed):
            logger.warning("Stream reported error", extra={"extra": {**log_ctx, "error": event.error_detail}})
            return
        logger.info("Ingestion completed", extra={"extra": {
            **log_ctx,
            "fragments": len(pieces),
            "length": sum(len(p) for p in pieces),
            "explicit_done": explicit_done,
        }})
