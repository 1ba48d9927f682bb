"""Remote service transport layer.

Modules in this package:
- Define the StreamHandle protocol the ingestor depends on (base).
- Keep the per-endpoint wire conventions (registry).
- Open streamed HTTP requests one at a time (dispatcher).
"""

from typing import Optional

from scholar_client.config.settings import settings
from scholar_client.domain.models import IngestionState
from scholar_client.transport.base import StreamHandle
from scholar_client.transport.dispatcher import HttpStreamHandle, RequestDispatcher
from scholar_client.transport.registry import ServiceProfile, get_profile


def create_dispatcher(
    profile_name: Optional[str] = None,
    state: Optional[IngestionState] = None,
) -> RequestDispatcher:
    """Create a dispatcher for the named profile, defaulting to the configured one."""

    name = profile_name or getattr(settings, "service_profile", "scholar")
    return RequestDispatcher(settings, state=state, profile=get_profile(name))


__all__ = [
    "HttpStreamHandle",
    "RequestDispatcher",
    "ServiceProfile",
    "StreamHandle",
    "create_dispatcher",
    "get_profile",
]
