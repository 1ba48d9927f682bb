"""Stream handle protocol.

The ingestor never touches httpx directly; it depends on this protocol:

- The dispatcher returns a StreamHandle for every successfully opened request.
- The handle yields decoded text chunks with arbitrary boundaries.
- cancel() may be called from another thread; close() releases the connection.

Tests and alternative transports only need to provide these members.
"""

from typing import Iterator, Protocol


class StreamHandle(Protocol):
    """An open response body belonging to one exchange."""

    exchange_id: str

    def iter_chunks(self) -> Iterator[str]:
        ...

    @property
    def cancelled(self) -> bool:
        ...

    def cancel(self) -> None:
        """Abandon the stream; pending and future reads yield nothing more."""

        ...

    def close(self) -> None:
        ...

    def mark_consumed(self) -> None:
        """Flag the handle as read; raises StreamConsumedError on the second call."""

        ...
