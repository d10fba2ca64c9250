from io import StringIO
from unittest import mock

import requests
from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from favourites.exceptions import UpstreamUnavailable
from .feed import CACHE_KEY, FilmFeedClient

User = get_user_model()

FEED_PAYLOAD = {
    "id": 969681,
    "title": "Spider-Man: Brand New Day",
    "release_date": "2026-07-31",
    "days_until": 285,
    "overview": "Peter Parker returns.",
    "poster_url": "https://image.tmdb.org/t/p/w500/poster.jpg",
    "type": "Movie",
    "following_production": {
        "id": 1003596,
        "title": "Avengers: Doomsday",
        "release_date": "2026-12-18",
        "type": "Movie",
    },
}

FEED_SETTINGS = dict(
    FILM_FEED_URL="https://feed.example.com/api",
    FILM_FEED_RETRY_DELAY=0,
    FILM_FEED_RETRIES=3,
    FILM_FEED_TIMEOUT=15,
    FILM_FEED_CACHE_TTL=3600,
)


def fake_response(status_code=200, payload=None):
    response = mock.Mock()
    response.status_code = status_code
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


@override_settings(**FEED_SETTINGS)
class FilmFeedClientTests(SimpleTestCase):
    def setUp(self):
        cache.clear()
        self.session = mock.Mock()
        self.client = FilmFeedClient(session=self.session)

    def tearDown(self):
        cache.clear()

    def test_success_is_enriched_and_cached(self):
        self.session.get.return_value = fake_response(payload=FEED_PAYLOAD)

        result = self.client.get_upcoming()

        self.assertTrue(result.available)
        self.assertFalse(result.from_cache)
        self.assertEqual(result.payload["title"], "Spider-Man: Brand New Day")
        self.assertTrue(result.payload["video_url"].endswith(".mp4"))
        self.assertIsNone(result.payload["following_production"]["video_url"])
        self.session.get.assert_called_once_with(
            "https://feed.example.com/api", timeout=15
        )
        self.assertEqual(cache.get(CACHE_KEY), result.payload)

    def test_three_transient_failures_are_unavailable(self):
        self.session.get.side_effect = requests.ConnectionError("down")

        result = self.client.get_upcoming()

        self.assertFalse(result.available)
        self.assertIsNone(result.payload)
        self.assertEqual(self.session.get.call_count, 3)

    def test_broken_chunked_body_is_retried(self):
        self.session.get.side_effect = [
            requests.exceptions.ChunkedEncodingError("cut off"),
            fake_response(payload=FEED_PAYLOAD),
        ]

        result = self.client.get_upcoming()

        self.assertTrue(result.available)
        self.assertEqual(self.session.get.call_count, 2)

    def test_other_request_errors_are_unavailable_without_retry(self):
        errors = [
            requests.exceptions.ContentDecodingError("gzip"),
            requests.exceptions.TooManyRedirects("loop"),
            requests.exceptions.InvalidURL("bad"),
        ]
        for error in errors:
            with self.subTest(error=type(error).__name__):
                self.session.get.reset_mock()
                self.session.get.side_effect = error

                result = self.client.get_upcoming()

                self.assertFalse(result.available)
                self.assertIsNone(result.payload)
                self.assertEqual(self.session.get.call_count, 1)

    def test_cached_payload_is_served_without_new_request(self):
        self.session.get.return_value = fake_response(payload=FEED_PAYLOAD)
        first = self.client.get_upcoming()

        self.session.get.reset_mock()
        self.session.get.side_effect = requests.ConnectionError("down")
        second = self.client.get_upcoming()

        self.assertTrue(second.available)
        self.assertTrue(second.from_cache)
        self.assertEqual(second.payload, first.payload)
        self.session.get.assert_not_called()

    def test_retries_until_success(self):
        self.session.get.side_effect = [
            requests.Timeout("slow"),
            fake_response(status_code=503),
            fake_response(payload=FEED_PAYLOAD),
        ]

        result = self.client.get_upcoming()

        self.assertTrue(result.available)
        self.assertEqual(self.session.get.call_count, 3)

    def test_client_error_is_not_retried(self):
        self.session.get.return_value = fake_response(status_code=404)

        result = self.client.get_upcoming()

        self.assertFalse(result.available)
        self.assertEqual(self.session.get.call_count, 1)

    def test_invalid_shape_is_upstream_failure(self):
        bad_payloads = [
            {"title": "No id", "release_date": "2026-01-01"},
            {"id": 1, "release_date": "2026-01-01"},
            {"id": 1, "title": "Bad date", "release_date": "someday"},
            ["not", "a", "dict"],
        ]
        for payload in bad_payloads:
            with self.subTest(payload=payload):
                self.session.get.return_value = fake_response(payload=payload)
                self.assertFalse(self.client.get_upcoming().available)
                self.assertIsNone(cache.get(CACHE_KEY))

    def test_non_json_body_is_upstream_failure(self):
        self.session.get.return_value = fake_response(payload=ValueError("html"))

        with self.assertRaises(UpstreamUnavailable):
            self.client.fetch()

    def test_clear_cache_forces_refetch(self):
        self.session.get.return_value = fake_response(payload=FEED_PAYLOAD)
        self.client.get_upcoming()

        self.client.clear_cache()
        self.client.get_upcoming()

        self.assertEqual(self.session.get.call_count, 2)

    def test_cache_ttl_is_passed_to_cache(self):
        self.session.get.return_value = fake_response(payload=FEED_PAYLOAD)

        with mock.patch("films.feed.cache") as fake_cache:
            fake_cache.get.return_value = None
            self.client.get_upcoming()

        fake_cache.set.assert_called_once()
        self.assertEqual(fake_cache.set.call_args[0][0], CACHE_KEY)
        self.assertEqual(fake_cache.set.call_args[0][2], 3600)


@override_settings(**FEED_SETTINGS)
class UpcomingFilmsAPITests(APITestCase):
    def setUp(self):
        cache.clear()
        self.user = User.objects.create_user(
            username="maint",
            email="maint@example.com",
            password="testpass123",
        )
        self.url = reverse("film-upcoming")
        self.clear_url = reverse("film-upcoming-clear-cache")

    def tearDown(self):
        cache.clear()

    @mock.patch("films.feed.requests.Session.get")
    def test_upcoming_returns_payload(self, fake_get):
        fake_get.return_value = fake_response(payload=FEED_PAYLOAD)

        response = self.client.get(self.url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["id"], 969681)
        self.assertIn("video_url", response.data)

    @mock.patch("films.feed.requests.Session.get")
    def test_upcoming_is_503_when_feed_is_down(self, fake_get):
        fake_get.side_effect = requests.ConnectionError("down")

        response = self.client.get(self.url)

        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)
        self.assertIn("error", response.data)

    @mock.patch("films.feed.requests.Session.get")
    def test_upcoming_is_503_on_any_request_error(self, fake_get):
        fake_get.side_effect = requests.exceptions.TooManyRedirects("loop")

        response = self.client.get(self.url)

        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)
        self.assertEqual(response.data["error"], "Failed to fetch films data")

    def test_clear_cache_requires_authentication(self):
        cache.set(CACHE_KEY, FEED_PAYLOAD)

        response = self.client.post(self.clear_url)

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertIsNotNone(cache.get(CACHE_KEY))

    def test_authenticated_user_can_clear_cache(self):
        cache.set(CACHE_KEY, FEED_PAYLOAD)
        self.client.force_authenticate(user=self.user)

        response = self.client.post(self.clear_url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNone(cache.get(CACHE_KEY))


@override_settings(**FEED_SETTINGS)
class RefreshFilmFeedCommandTests(SimpleTestCase):
    def setUp(self):
        cache.clear()

    def tearDown(self):
        cache.clear()

    @mock.patch("films.feed.requests.Session.get")
    def test_refresh_refetches_and_caches(self, fake_get):
        cache.set(CACHE_KEY, {"id": 1, "title": "Stale", "release_date": "2020-01-01"})
        fake_get.return_value = fake_response(payload=FEED_PAYLOAD)
        out = StringIO()

        call_command("refresh_film_feed", stdout=out)

        self.assertIn("Spider-Man: Brand New Day", out.getvalue())
        self.assertIn("Avengers: Doomsday", out.getvalue())
        self.assertEqual(cache.get(CACHE_KEY)["id"], 969681)

    def test_clear_only(self):
        cache.set(CACHE_KEY, FEED_PAYLOAD)

        call_command("refresh_film_feed", "--clear-only", stdout=StringIO())

        self.assertIsNone(cache.get(CACHE_KEY))

    @mock.patch("films.feed.requests.Session.get")
    def test_refresh_failure_raises_command_error(self, fake_get):
        fake_get.side_effect = requests.ConnectionError("down")

        with self.assertRaises(CommandError):
            call_command("refresh_film_feed", stdout=StringIO())
