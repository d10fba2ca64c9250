"""
Client for the upstream "next film" feed.

The feed is a single JSON document describing the next release and the one
after it (``following_production``). Calls go through a short retry loop
and the last good payload is kept in Django's cache for an hour, so page
loads within that window never hit the upstream.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import requests
from django.conf import settings
from django.core.cache import cache

from favourites.exceptions import UpstreamUnavailable
from .serializers import FeedFilmSerializer

logger = logging.getLogger(__name__)

CACHE_KEY = "film_feed_upcoming"

# Statuses worth another attempt; anything else is a hard failure.
RETRYABLE_STATUSES = {429, 500, 502, 503, 504}

# Transport errors retried like a 5xx.
TRANSIENT_ERRORS = (
    requests.ConnectionError,
    requests.Timeout,
    requests.exceptions.ChunkedEncodingError,
)


@dataclass(frozen=True)
class FeedResult:
    available: bool
    payload: Optional[dict] = None
    from_cache: bool = False

    @classmethod
    def unavailable(cls):
        return cls(available=False)


class FilmFeedClient:
    def __init__(
        self,
        url=None,
        timeout=None,
        retries=None,
        retry_delay=None,
        cache_ttl=None,
        session=None,
        video_urls=None,
    ):
        self.url = url or settings.FILM_FEED_URL
        self.timeout = timeout if timeout is not None else settings.FILM_FEED_TIMEOUT
        self.retries = max(
            1, retries if retries is not None else settings.FILM_FEED_RETRIES
        )
        self.retry_delay = (
            retry_delay if retry_delay is not None else settings.FILM_FEED_RETRY_DELAY
        )
        self.cache_ttl = (
            cache_ttl if cache_ttl is not None else settings.FILM_FEED_CACHE_TTL
        )
        self.session = session or requests.Session()
        self.video_urls = (
            video_urls if video_urls is not None else settings.FILM_VIDEO_URLS
        )

    def get_upcoming(self):
        """
        Return the upcoming-films payload, from cache when possible.

        Never raises: an upstream failure with nothing cached gives
        ``FeedResult.unavailable()`` so the caller can render a fallback.
        """
        cached = cache.get(CACHE_KEY)
        if cached is not None:
            logger.debug("Film feed: returning cached payload")
            return FeedResult(available=True, payload=cached, from_cache=True)

        try:
            payload = self.fetch()
        except UpstreamUnavailable:
            return FeedResult.unavailable()
        return FeedResult(available=True, payload=payload)

    def fetch(self):
        """
        Fetch, validate, enrich and cache the payload, bypassing the cache.

        Raises UpstreamUnavailable once every attempt has failed.
        """
        logger.info("Film feed: fetching %s", self.url)
        data = self._request_with_retries()

        serializer = FeedFilmSerializer(data=data)
        if not serializer.is_valid():
            logger.error("Film feed: invalid payload: %s", serializer.errors)
            raise UpstreamUnavailable("Received invalid data from the film feed.")

        payload = self.enrich(data)
        cache.set(CACHE_KEY, payload, self.cache_ttl)
        logger.info("Film feed: cached payload for %s seconds", self.cache_ttl)
        return payload

    def _request_with_retries(self):
        last_error = None
        for attempt in range(1, self.retries + 1):
            try:
                response = self.session.get(self.url, timeout=self.timeout)
            except TRANSIENT_ERRORS as exc:
                last_error = exc
                logger.warning(
                    "Film feed: attempt %s/%s failed: %s",
                    attempt,
                    self.retries,
                    exc,
                )
            except requests.RequestException as exc:
                logger.error("Film feed: request failed: %s", exc)
                raise UpstreamUnavailable() from exc
            else:
                if response.status_code < 400:
                    try:
                        return response.json()
                    except ValueError as exc:
                        logger.error("Film feed: response is not JSON")
                        raise UpstreamUnavailable() from exc

                logger.warning(
                    "Film feed: attempt %s/%s returned HTTP %s",
                    attempt,
                    self.retries,
                    response.status_code,
                )
                last_error = requests.HTTPError(
                    f"HTTP {response.status_code}", response=response
                )
                if response.status_code not in RETRYABLE_STATUSES:
                    break

            if attempt < self.retries and self.retry_delay:
                time.sleep(self.retry_delay)

        logger.error("Film feed: giving up after %s attempt(s)", attempt)
        raise UpstreamUnavailable() from last_error

    def enrich(self, data):
        """Attach ``video_url`` to the main and following film."""
        enriched = dict(data)
        enriched["video_url"] = self.video_urls.get(data.get("id"))

        following = data.get("following_production")
        if isinstance(following, dict):
            following = dict(following)
            following["video_url"] = self.video_urls.get(following.get("id"))
            enriched["following_production"] = following
        return enriched

    @staticmethod
    def clear_cache():
        cache.delete(CACHE_KEY)
        logger.info("Film feed: cache cleared")


def get_feed_client():
    return FilmFeedClient()
