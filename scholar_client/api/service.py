"""Public API module.

Simple function entry points for applications that do not want to wire the
engine themselves.
"""

from typing import Any, Dict, Iterator, List, Optional, Sequence

from scholar_client.config.settings import settings
from scholar_client.domain.models import ExchangeOptions, IngestionEvent, IngestionState, Message
from scholar_client.engine.chat_engine import ChatEngine
from scholar_client.infrastructure.logging.logger import logger
from scholar_client.infrastructure.storage.memory_store import InMemoryTranscriptStore
from scholar_client.transport import create_dispatcher


_engine: Optional[ChatEngine] = None


def get_default_engine() -> ChatEngine:
    """Return the default ChatEngine (singleton)."""
    global _engine
    if _engine is None:
        state = IngestionState()
        _engine = ChatEngine(
            store=InMemoryTranscriptStore(state),
            dispatcher=create_dispatcher(settings.service_profile, state=state),
        )
    return _engine


def reset_default_engine() -> None:
    """Drop the default engine and its transcript."""
    global _engine
    if _engine is not None:
        _engine.cancel()
    _engine = None


def _options(
    frameworks: Optional[Sequence[str]],
    deep_analysis: Optional[bool],
    extra: Optional[Dict[str, Any]],
) -> ExchangeOptions:
    return ExchangeOptions(
        deep_analysis=deep_analysis,
        frameworks=list(frameworks) if frameworks is not None else None,
        extra=dict(extra or {}),
    )


def ask(
    question: str,
    frameworks: Optional[Sequence[str]] = None,
    deep_analysis: Optional[bool] = None,
    extra: Optional[Dict[str, Any]] = None,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """Ask one question and wait for the whole answer.

    Args:
        question: the question text
        frameworks: restrict the analysis to these framework ids (None or empty: all)
        deep_analysis: request deep multi-framework analysis (None: service default)
        extra: additional payload keys passed through as-is
        timeout: cancel the exchange after this many seconds

    Returns:
        dict with exchange_id, status and the assistant message (None when cancelled)

    Raises:
        ValidationError, ConcurrentRequestError from scholar_client.domain.exceptions
    """
    try:
        engine = get_default_engine()
        assistant = engine.ask(
            question,
            _options(frameworks, deep_analysis, extra),
            timeout=timeout,
        )
        return {
            "exchange_id": assistant.exchange_id if assistant else None,
            "status": _status_of(assistant),
            "assistant_message": _message_to_dict(assistant) if assistant else None,
        }
    except Exception as e:
        logger.error(f"Ask failed: {e}", extra={"extra": {
            "error": str(e),
        }})
        raise


def ask_stream(
    question: str,
    frameworks: Optional[Sequence[str]] = None,
    deep_analysis: Optional[bool] = None,
    extra: Optional[Dict[str, Any]] = None,
    timeout: Optional[float] = None,
) -> Iterator[IngestionEvent]:
    """Ask one question and iterate over ingestion events as they arrive."""
    engine = get_default_engine()
    return engine.ask_stream(question, _options(frameworks, deep_analysis, extra), timeout=timeout)


def cancel() -> None:
    """Cancel the exchange in flight, if any."""
    get_default_engine().cancel()


def get_transcript() -> List[Dict[str, Any]]:
    """Return committed messages plus the live partial answer, if any."""
    snap = get_default_engine().snapshot()
    items = [_message_to_dict(m) for m in snap.messages]
    if snap.partial_text:
        items.append({
            "id": None,
            "role": "assistant",
            "content": snap.partial_text,
            "exchange_id": None,
            "created_at": None,
            "partial": True,
        })
    return items


def _status_of(message: Optional[Message]) -> str:
    if message is None:
        return "cancelled"
    return "failed" if message.meta.get("failed") else "completed"


def _message_to_dict(m: Message) -> Dict[str, Any]:
    return {
        "id": m.id,
        "role": m.role,
        "content": m.content,
        "exchange_id": m.exchange_id,
        "created_at": m.created_at.isoformat(),
        "partial": False,
    }
