"""
TMDB API client.

Fetches the item-detail document for a movie or TV series and normalizes the
handful of fields the tagger consumes into a MetadataRecord. Lookup failures
are reported as FetchResult values, never raised; only cancellation
propagates.
"""

import logging
from typing import Optional, Dict, Any, List

import requests

from cancellation import CancellationToken
from constants import TMDB_API_BASE, TMDB_REQUEST_TIMEOUT
from http_client import RateLimitedSession, RateLimiter, SessionAwareComponent
from metrics import metrics
from models import FetchResult, MetadataRecord, utc_now_iso

logger = logging.getLogger(__name__)

CONTENT_TYPES = ("movie", "tv")


def _as_list(value) -> list:
    return value if isinstance(value, list) else []


def _country_codes(values) -> List[str]:
    codes = []
    for value in _as_list(values):
        if isinstance(value, str) and value.strip():
            codes.append(value.strip().upper())
    return codes


def _ids_of(entries) -> set:
    ids = set()
    for entry in _as_list(entries):
        if isinstance(entry, dict) and entry.get("id") is not None:
            try:
                ids.add(int(entry["id"]))
            except (TypeError, ValueError):
                continue
    return ids


def parse_details(external_id: str, payload: Dict[str, Any]) -> MetadataRecord:
    """
    Build a MetadataRecord from a TMDB item-detail payload.

    Absent or oddly typed fields become empty collections / None.

    Args:
        external_id: TMDB id the payload was requested for
        payload: Decoded JSON object

    Returns:
        Normalized record
    """
    language = payload.get("original_language")
    imdb_id = payload.get("imdb_id")
    # TV payloads carry the IMDb id under external_ids when appended
    if not imdb_id and isinstance(payload.get("external_ids"), dict):
        imdb_id = payload["external_ids"].get("imdb_id")

    production_countries = [
        entry.get("iso_3166_1")
        for entry in _as_list(payload.get("production_countries"))
        if isinstance(entry, dict)
    ]

    return MetadataRecord(
        external_id=str(external_id),
        alternate_id=imdb_id if isinstance(imdb_id, str) and imdb_id else None,
        original_language=language.lower() if isinstance(language, str) and language else None,
        origin_countries=_country_codes(payload.get("origin_country")),
        production_countries=_country_codes(production_countries),
        production_company_ids=_ids_of(payload.get("production_companies")),
        network_ids=_ids_of(payload.get("networks")),
        last_updated=utc_now_iso(),
    )


class TMDBClient(SessionAwareComponent):
    """
    Client for the TMDB item-detail endpoint.

    All requests go through the session's shared RateLimiter.
    """

    def __init__(
        self,
        session: RateLimitedSession = None,
        rate_limiter: Optional[RateLimiter] = None,
        base_url: str = TMDB_API_BASE,
    ):
        """
        Initialize TMDB client.

        Args:
            session: Optional shared session for connection pooling.
            rate_limiter: Limiter for an owned session (ignored if session given).
            base_url: API root, overridable for tests.
        """
        self.base_url = base_url.rstrip("/")
        self.init_session(session, timeout=TMDB_REQUEST_TIMEOUT, rate_limiter=rate_limiter)

    def fetch_details(
        self,
        external_id: str,
        content_type: str,
        api_key: str,
        cancel: Optional[CancellationToken] = None,
    ) -> FetchResult:
        """
        Fetch and normalize one item.

        Args:
            external_id: TMDB id
            content_type: "movie" or "tv"
            api_key: TMDB API key
            cancel: Optional cancellation token

        Returns:
            FetchResult (FOUND / NOT_FOUND / TRANSIENT_ERROR)

        Raises:
            OperationCancelled: If the token fires before a result is produced
        """
        if not api_key:
            return FetchResult.transient("TMDB API key not configured")
        if content_type not in CONTENT_TYPES:
            return FetchResult.not_found(f"unsupported content type '{content_type}'")

        url = f"{self.base_url}/{content_type}/{external_id}"
        try:
            with metrics.timer("tmdb_request_ms"):
                response = self.session.get(
                    url,
                    cancel=cancel,
                    params={"api_key": api_key},
                    timeout=TMDB_REQUEST_TIMEOUT,
                )
        except requests.RequestException as e:
            logger.warning(f"TMDB request failed for {content_type}/{external_id}: {type(e).__name__}")
            return FetchResult.transient(f"request error: {type(e).__name__}")

        if response.status_code == 404:
            logger.debug(f"TMDB has no {content_type}/{external_id}")
            return FetchResult.not_found("HTTP 404")
        if not 200 <= response.status_code < 300:
            logger.warning(f"TMDB returned HTTP {response.status_code} for {content_type}/{external_id}")
            return FetchResult.transient(f"HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError:
            logger.warning(f"TMDB returned malformed JSON for {content_type}/{external_id}")
            return FetchResult.transient("malformed body")

        if not isinstance(payload, dict):
            logger.warning(f"TMDB returned unexpected payload type for {content_type}/{external_id}")
            return FetchResult.transient("malformed body")

        return FetchResult.found(parse_details(external_id, payload))
