"""
HTTP client with connection pooling and request spacing.

Provides a robust HTTP session that:
- Pools connections for better performance
- Spaces requests to a provider through one shared RateLimiter
- Handles timeouts and cancellation gracefully
"""

import logging
import threading
import time
from typing import Callable, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from cancellation import CancellationToken, OperationCancelled, sleep
from constants import (
    MAX_RETRIES,
    RETRY_BACKOFF_BASE,
    SERVICE_NAME,
    SERVICE_VERSION,
    TMDB_MIN_REQUEST_INTERVAL,
)

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Thread-safe minimum-interval rate limiter.

    Every acquisition reserves the next free dispatch slot under the lock
    and only then sleeps until that slot, so concurrent callers are served
    in arrival order and consecutive dispatches are never closer than
    `min_interval`.

    One instance is meant to be shared by every caller that talks to the
    same provider; inject it rather than creating one per request.
    """

    def __init__(
        self,
        min_interval: float = TMDB_MIN_REQUEST_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize rate limiter.

        Args:
            min_interval: Minimum seconds between the start of two acquisitions
            clock: Monotonic time source (injectable for tests)
        """
        self.min_interval = min_interval
        self._clock = clock
        self._next_allowed = float("-inf")
        self._lock = threading.Lock()
        self.last_dispatch: Optional[float] = None

    def _reserve(self) -> float:
        with self._lock:
            slot = max(self._clock(), self._next_allowed)
            self._next_allowed = slot + self.min_interval
            return slot

    def _release(self, slot: float) -> None:
        # Give an abandoned slot back, but only if nobody queued behind it
        with self._lock:
            if self._next_allowed == slot + self.min_interval:
                self._next_allowed = slot

    def acquire(self, cancel: Optional[CancellationToken] = None) -> float:
        """
        Block until this caller's dispatch slot arrives.

        Args:
            cancel: Optional token; a cancelled wait raises OperationCancelled

        Returns:
            The reserved dispatch time (clock units)
        """
        slot = self._reserve()
        delay = slot - self._clock()
        if delay > 0:
            try:
                sleep(delay, cancel)
            except OperationCancelled:
                self._release(slot)
                raise
        elif cancel is not None:
            cancel.raise_if_cancelled()

        with self._lock:
            self.last_dispatch = slot
        return slot


class RateLimitedSession:
    """
    Requests session wrapper with optional rate limiting and pooling.

    Features:
    - Connection pooling via HTTPAdapter
    - Transport retries configurable (off by default)
    - Shared RateLimiter applied before every request
    - Timeouts clamped to the caller's cancellation budget

    Usage:
        with RateLimitedSession(rate_limiter=limiter) as session:
            response = session.get("https://api.themoviedb.org/3/movie/603")
    """

    def __init__(
        self,
        timeout: float = 30.0,
        rate_limiter: Optional[RateLimiter] = None,
        max_retries: int = MAX_RETRIES,
        backoff_factor: float = RETRY_BACKOFF_BASE,
        user_agent: str = None,
    ):
        """
        Initialize rate-limited session.

        Args:
            timeout: Default request timeout in seconds
            rate_limiter: Shared limiter; None means no spacing
            max_retries: Maximum number of transport retry attempts
            backoff_factor: Base for exponential backoff
            user_agent: Custom user agent string
        """
        self.timeout = timeout
        self.rate_limiter = rate_limiter
        self.session = requests.Session()

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
        )

        adapter = HTTPAdapter(
            max_retries=retry_strategy,
            pool_connections=10,
            pool_maxsize=20,
        )
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        self.session.headers.update({
            "User-Agent": user_agent or f"{SERVICE_NAME}/{SERVICE_VERSION}",
            "Accept": "application/json",
        })

    def _effective_timeout(self, requested: float, cancel: Optional[CancellationToken]) -> float:
        if cancel is None:
            return requested
        remaining = cancel.remaining()
        if remaining is None:
            return requested
        if remaining <= 0:
            raise OperationCancelled("no time left for request")
        return min(requested, remaining)

    def get(self, url: str, cancel: Optional[CancellationToken] = None, **kwargs) -> requests.Response:
        """
        Make a rate-limited GET request.

        Args:
            url: URL to request
            cancel: Optional cancellation token (also bounds the timeout)
            **kwargs: Additional arguments passed to requests.get

        Returns:
            Response object

        Raises:
            OperationCancelled: If cancelled while waiting or after the response
        """
        if self.rate_limiter is not None:
            self.rate_limiter.acquire(cancel)
        kwargs["timeout"] = self._effective_timeout(kwargs.get("timeout", self.timeout), cancel)
        response = self.session.get(url, **kwargs)
        if cancel is not None and cancel.cancelled:
            response.close()
            raise OperationCancelled(f"cancelled after GET {url.split('?')[0]}")
        return response

    def close(self) -> None:
        """Close the session and release resources."""
        self.session.close()

    def __enter__(self) -> "RateLimitedSession":
        return self

    def __exit__(self, *args) -> None:
        self.close()


def create_session(
    timeout: float = 30.0,
    rate_limiter: Optional[RateLimiter] = None,
    user_agent: str = None,
) -> RateLimitedSession:
    """
    Create a configured session.

    Args:
        timeout: Request timeout in seconds
        rate_limiter: Optional shared limiter
        user_agent: Optional custom user agent

    Returns:
        Configured RateLimitedSession
    """
    return RateLimitedSession(timeout=timeout, rate_limiter=rate_limiter, user_agent=user_agent)


class SessionAwareComponent:
    """
    Mixin for components that optionally manage HTTP sessions.

    Provides standardized session ownership tracking and cleanup.

    Usage:
        class MyClient(SessionAwareComponent):
            def __init__(self, session=None):
                self.init_session(session, timeout=15.0)
    """

    session: RateLimitedSession
    _owns_session: bool

    def init_session(
        self,
        session: RateLimitedSession = None,
        timeout: float = 30.0,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        """
        Initialize session with ownership tracking.

        Args:
            session: Optional existing session to use
            timeout: Timeout for new session if created
            rate_limiter: Limiter for new session if created
        """
        self.session = session or create_session(timeout=timeout, rate_limiter=rate_limiter)
        self._owns_session = session is None

    def close(self) -> None:
        """Close session if we own it."""
        if self._owns_session:
            self.session.close()
