"""Response stream decoding.

- framing: raw and line-delimited event framing strategies.
- ingestor: turns an open stream into PartialUpdate / Completed / Failed events.
"""

from scholar_client.streaming.framing import FramingStrategy, LineEventFraming, RawFraming, get_framing
from scholar_client.streaming.ingestor import StreamIngestor

__all__ = ["FramingStrategy", "LineEventFraming", "RawFraming", "StreamIngestor", "get_framing"]
