"""Scholar client top-level package.

Streams answers from the fiqh scholar generation service: request dispatch,
incremental decoding of raw or line-framed responses, and an append-only
transcript exposing the live partial answer to a renderer.
"""

from scholar_client.api.service import ask, ask_stream, cancel, get_default_engine, get_transcript

__all__ = ["ask", "ask_stream", "cancel", "get_default_engine", "get_transcript"]
