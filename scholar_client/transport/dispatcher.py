"""HTTP request dispatcher for the scholar service.

Responsibilities:

1. Validate the prompt and turn it into the JSON body of the active profile.
2. Guarantee that at most one request is outstanding at any time.
3. Open the streamed POST with httpx and map connection failures and
   non-200 answers onto TransportError subclasses.
4. Hand the open response back as an HttpStreamHandle and move the shared
   IngestionState from idle to streaming.

Reading the body is the ingestor's job; this module only opens and releases it.
"""

import logging
import threading
from contextlib import ExitStack
from typing import Any, Dict, Iterator, Optional

import httpx

from scholar_client.config.settings import settings
from scholar_client.domain.exceptions import (
    ApiError,
    ConcurrentRequestError,
    NetworkError,
    RateLimitError,
    StreamConsumedError,
)
from scholar_client.domain.models import (
    ExchangeOptions,
    ExchangeRequest,
    IngestionState,
    IngestionStatus,
)
from scholar_client.infrastructure.logging.logger import logger
from scholar_client.transport.registry import ServiceProfile, get_profile


class HttpStreamHandle:
    """An open streamed httpx response for one exchange.

    close() runs once no matter how many threads call it; cancel() only
    flags the handle and closes the response so a blocked read returns.
    """

    def __init__(self, exchange_id: str, stack: ExitStack, response: httpx.Response, on_release):
        self.exchange_id = exchange_id
        self._stack = stack
        self._response = response
        self._on_release = on_release
        self._cancel_event = threading.Event()
        self._lock = threading.Lock()
        self._closed = False
        self._consumed = False

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def closed(self) -> bool:
        return self._closed

    def iter_chunks(self) -> Iterator[str]:
        return self._response.iter_text()

    def mark_consumed(self) -> None:
        with self._lock:
            if self._consumed:
                raise StreamConsumedError(
                    code="STREAM_CONSUMED",
                    message="stream handle can only be consumed once",
                    exchange_id=self.exchange_id,
                )
            self._consumed = True

    def cancel(self) -> None:
        if self._cancel_event.is_set():
            return
        self._cancel_event.set()
        try:
            self._response.close()
        except httpx.HTTPError as e:
            logger.debug("Closing cancelled response failed", extra={"extra": {
                "exchange_id": self.exchange_id,
                "error": str(e),
            }})

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._stack.close()
        finally:
            self._on_release(self)


class RequestDispatcher:
    """Issues generation requests, one at a time."""

    def __init__(
        self,
        cfg=settings,
        state: Optional[IngestionState] = None,
        profile: Optional[ServiceProfile] = None,
    ):
        self._settings = cfg
        self._state = state if state is not None else IngestionState()
        self._profile = profile or get_profile(getattr(cfg, "service_profile", "scholar"))
        self._lock = threading.Lock()
        self._in_flight = False
        self._reserved: Optional[str] = None
        self._active: Optional[HttpStreamHandle] = None

    @property
    def state(self) -> IngestionState:
        return self._state

    @property
    def profile(self) -> ServiceProfile:
        return self._profile

    @property
    def active_handle(self) -> Optional[HttpStreamHandle]:
        return self._active

    @property
    def busy(self) -> bool:
        """True until the open exchange's handle is released and its terminal event applied."""

        return self._in_flight or self._state.status is IngestionStatus.STREAMING

    @property
    def endpoint_url(self) -> str:
        explicit = getattr(self._settings, "service_url", None)
        if explicit:
            return explicit
        base = getattr(self._settings, "service_base_url", "").rstrip("/")
        return f"{base}{self._profile.path}"

    def send(self, prompt: str, options: Optional[ExchangeOptions] = None) -> HttpStreamHandle:
        """Build a request from a raw prompt and dispatch it."""

        request = ExchangeRequest(prompt=prompt, options=options or ExchangeOptions())
        return self.dispatch(request)

    def reserve(self, exchange_id: str) -> None:
        """Claim the request slot for exchange_id ahead of dispatch().

        Lets a caller record the question only once the slot is certainly its
        own. Raises ConcurrentRequestError while another exchange is in flight.
        """
        with self._lock:
            self._claim()
            self._reserved = exchange_id

    def release_reservation(self, exchange_id: str) -> None:
        """Give back a slot taken by reserve() that will not be dispatched."""

        with self._lock:
            if self._reserved == exchange_id and self._active is None:
                self._reserved = None
                self._in_flight = False

    def dispatch(self, request: ExchangeRequest) -> HttpStreamHandle:
        """Open the streamed request. Raises ConcurrentRequestError or TransportError."""

        # fields may have been reassigned since construction
        request.validate()
        log_ctx: Dict[str, Any] = {
            "exchange_id": request.exchange_id,
            "profile": self._profile.name,
        }
        with self._lock:
            if self._reserved != request.exchange_id:
                self._claim()
            self._reserved = None

        url = self.endpoint_url
        stack = ExitStack()
        try:
            payload = self._build_payload(request)
            response = self._open(stack, url, payload, log_ctx)
        except BaseException:
            stack.close()
            self._release()
            raise

        self._state.begin(request.exchange_id)
        handle = HttpStreamHandle(request.exchange_id, stack, response, self._release)
        with self._lock:
            self._active = handle
        self._log(logging.INFO, "Stream opened", log_ctx, url=url)
        return handle

    # ---- helpers ----

    def _claim(self) -> None:
        # caller holds self._lock
        if self.busy:
            raise ConcurrentRequestError(
                code="REQUEST_IN_FLIGHT",
                message="Another question is still being answered",
                http_status=409,
                exchange_id=self._reserved or self._state.exchange_id,
            )
        self._in_flight = True

    def _open(self, stack: ExitStack, url: str, payload: dict, log_ctx: Dict[str, Any]) -> httpx.Response:
        self._log(
            logging.INFO,
            "Dispatching request",
            log_ctx,
            url=url,
            payload_keys=sorted(payload),
        )
        try:
            client = stack.enter_context(
                httpx.Client(
                    timeout=httpx.Timeout(self._settings.http_timeout, read=None),
                    trust_env=False,
                )
            )
            resp = stack.enter_context(
                client.stream(
                    "POST",
                    url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                )
            )
            if resp.status_code != 200:
                body = resp.read().decode("utf-8", errors="replace")
                self._log(logging.WARNING, "Non-success status", log_ctx, status=resp.status_code)
                if resp.status_code == 429:
                    raise RateLimitError(
                        code="RATE_LIMIT",
                        message="Scholar service rate limit",
                        http_status=429,
                        url=url,
                    )
                raise ApiError(
                    code="API_ERROR",
                    message=body[:500] or f"HTTP {resp.status_code}",
                    http_status=resp.status_code,
                    url=url,
                )
        except httpx.RequestError as e:
            # connection refused, DNS failure, connect timeout ...
            self._log(logging.WARNING, "Connection failed", log_ctx, error=str(e))
            raise NetworkError(code="NETWORK_ERROR", message=str(e), url=url) from e
        return resp

    def _build_payload(self, request: ExchangeRequest) -> dict:
        """Turn an ExchangeRequest into the profile's JSON body."""

        profile = self._profile
        opts = request.options
        payload: Dict[str, Any] = {profile.prompt_key: request.prompt}

        frameworks = opts.selected_frameworks()
        if frameworks:
            if profile.supports_frameworks:
                payload[profile.frameworks_key] = frameworks
            else:
                logger.debug("Dropping unsupported option", extra={"extra": {"option": "frameworks", "profile": profile.name}})
        if opts.deep_analysis is not None:
            if profile.supports_deep_analysis:
                payload[profile.deep_analysis_key] = bool(opts.deep_analysis)
            else:
                logger.debug("Dropping unsupported option", extra={"extra": {"option": "deep_analysis", "profile": profile.name}})
        for key, value in opts.extra.items():
            payload.setdefault(key, value)
        return payload

    def _release(self, handle: Optional[HttpStreamHandle] = None) -> None:
        with self._lock:
            if handle is None or self._active is handle or self._active is None:
                self._in_flight = False
                self._reserved = None
                self._active = None

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
