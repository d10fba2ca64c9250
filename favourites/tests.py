# favourites/tests.py

import datetime
import json
from unittest import mock

import requests

from django.contrib.auth import get_user_model
from django.test import Client, SimpleTestCase, TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from . import services
from .exceptions import (
    AuthenticationRequired,
    AuthorizationError,
    NotFound,
    SessionExpired,
    StoreUnavailable,
    ValidationError,
)
from .models import Favourite, FilmNote
from .records import FavouriteRecord, FilmSnapshot, Identity
from .stores import (
    DatabaseFavouriteStore,
    FavouriteStore,
    HttpFavouriteStore,
    LocalFavouriteStore,
)
from .sync import ConfirmationGate, FavouritesSync

User = get_user_model()

TEST_FILM = {
    "id": 42,
    "title": "Test Film",
    "overview": "A film used in tests.",
    "poster_url": "https://img.example.com/42.jpg",
    "release_date": "2026-01-01",
    "type": "Movie",
}

OTHER_FILM = {
    "id": 43,
    "title": "Other Film",
    "release_date": "2026-07-24",
    "type": "TV",
}


def film_payload(film=TEST_FILM):
    return FilmSnapshot.from_film(film).to_payload()


class FavouriteAPITests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(
            username="favuser",
            email="fav@example.com",
            password="testpass123",
        )
        self.other = User.objects.create_user(
            username="otheruser",
            email="other@example.com",
            password="otherpass123",
        )

        # from router: router.register("favourites", FavouriteViewSet,
        # basename="favourite")
        self.list_url = reverse("favourite-list")
        self.toggle_url = reverse("favourite-toggle")
        self.check_url = reverse("favourite-check")

    def detail_url(self, favourite):
        return reverse("favourite-detail", args=[favourite.id])

    def make_favourite(self, user, film=TEST_FILM, **fields):
        return Favourite.objects.create(
            user=user,
            film_id=film["id"],
            film_title=film["title"],
            film_release_date=film["release_date"],
            **fields,
        )

    def test_anonymous_cannot_add_favourite(self):
        response = self.client.post(self.list_url, film_payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(Favourite.objects.count(), 0)

    def test_anonymous_cannot_list_favourites(self):
        response = self.client.get(self.list_url)
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_authenticated_user_can_add_favourite(self):
        self.client.force_authenticate(user=self.user)

        response = self.client.post(self.list_url, film_payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Favourite.objects.count(), 1)

        data = response.data["favourite"]
        self.assertEqual(data["film_id"], 42)
        self.assertEqual(data["title"], "Test Film")
        self.assertEqual(data["release_date"], "2026-01-01")
        self.assertEqual(data["type"], "Movie")
        self.assertIsNone(data["theories"])
        self.assertIsNone(data["notes"])

        fav = Favourite.objects.first()
        self.assertEqual(fav.user, self.user)
        self.assertEqual(fav.film_poster_url, "https://img.example.com/42.jpg")

    def test_adding_same_film_twice_returns_existing(self):
        self.client.force_authenticate(user=self.user)

        first = self.client.post(self.list_url, film_payload(), format="json")
        self.assertEqual(first.status_code, status.HTTP_201_CREATED)

        second = self.client.post(self.list_url, film_payload(), format="json")
        self.assertEqual(second.status_code, status.HTTP_200_OK)
        self.assertEqual(second.data["message"], "Film is already in favourites")
        self.assertEqual(
            second.data["favourite"]["id"], first.data["favourite"]["id"]
        )
        self.assertEqual(Favourite.objects.count(), 1)

    def test_create_validates_required_fields(self):
        self.client.force_authenticate(user=self.user)

        payload = film_payload()
        payload["film_title"] = ""
        payload["film_release_date"] = "not-a-date"
        payload["film_id"] = "abc"
        response = self.client.post(self.list_url, payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("film_title", response.data)
        self.assertIn("film_release_date", response.data)
        self.assertIn("film_id", response.data)
        self.assertEqual(Favourite.objects.count(), 0)

    def test_create_rejects_overlong_title(self):
        self.client.force_authenticate(user=self.user)

        payload = film_payload()
        payload["film_title"] = "x" * 256
        response = self.client.post(self.list_url, payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("film_title", response.data)

    def test_create_defaults_film_type(self):
        self.client.force_authenticate(user=self.user)

        payload = film_payload()
        payload["film_type"] = None
        response = self.client.post(self.list_url, payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["favourite"]["type"], "Movie")

    def test_list_returns_only_user_favourites_newest_first(self):
        older = self.make_favourite(self.user, OTHER_FILM)
        newer = self.make_favourite(self.user, TEST_FILM)
        Favourite.objects.filter(pk=older.pk).update(
            created_at=newer.created_at - datetime.timedelta(days=1)
        )
        self.make_favourite(self.other, TEST_FILM)

        self.client.force_authenticate(user=self.user)
        response = self.client.get(self.list_url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        ids = [item["id"] for item in response.data["favourites"]]
        self.assertEqual(ids, [str(newer.id), str(older.id)])

    def test_owner_can_update_theories_without_touching_notes(self):
        fav = self.make_favourite(self.user, notes="Watch the credits")
        self.client.force_authenticate(user=self.user)

        response = self.client.put(
            self.detail_url(fav),
            {"theories": "  Maybe it's a prequel  "},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["favourite"]["theories"], "Maybe it's a prequel")
        fav.refresh_from_db()
        self.assertEqual(fav.theories, "Maybe it's a prequel")
        self.assertEqual(fav.notes, "Watch the credits")

    def test_blank_annotation_is_stored_as_absent(self):
        fav = self.make_favourite(self.user, theories="Old theory")
        self.client.force_authenticate(user=self.user)

        response = self.client.patch(
            self.detail_url(fav), {"theories": ""}, format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        fav.refresh_from_db()
        self.assertIsNone(fav.theories)

    def test_update_rejects_overlong_annotation(self):
        fav = self.make_favourite(self.user, notes="keep me")
        self.client.force_authenticate(user=self.user)

        response = self.client.put(
            self.detail_url(fav), {"notes": "x" * 5001}, format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("notes", response.data)
        fav.refresh_from_db()
        self.assertEqual(fav.notes, "keep me")

    def test_update_rejects_markup(self):
        fav = self.make_favourite(self.user)
        self.client.force_authenticate(user=self.user)

        response = self.client.put(
            self.detail_url(fav),
            {"theories": "<script>alert(1)</script>"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("contains disallowed markup", response.data["theories"])

    def test_update_requires_a_field(self):
        fav = self.make_favourite(self.user)
        self.client.force_authenticate(user=self.user)

        response = self.client.put(self.detail_url(fav), {}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_other_user_cannot_update_favourite(self):
        fav = self.make_favourite(self.user, theories="Mine")
        self.client.force_authenticate(user=self.other)

        response = self.client.put(
            self.detail_url(fav), {"theories": "Hijacked"}, format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        fav.refresh_from_db()
        self.assertEqual(fav.theories, "Mine")

    def test_other_user_cannot_delete_favourite(self):
        fav = self.make_favourite(self.user)
        self.client.force_authenticate(user=self.other)

        response = self.client.delete(self.detail_url(fav))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertTrue(Favourite.objects.filter(pk=fav.pk).exists())

    def test_owner_can_delete_favourite_and_second_delete_is_404(self):
        fav = self.make_favourite(self.user)
        self.client.force_authenticate(user=self.user)

        first = self.client.delete(self.detail_url(fav))
        self.assertEqual(first.status_code, status.HTTP_200_OK)
        self.assertEqual(Favourite.objects.count(), 0)

        second = self.client.delete(self.detail_url(fav))
        self.assertEqual(second.status_code, status.HTTP_404_NOT_FOUND)

    def test_toggle_adds_then_removes(self):
        self.client.force_authenticate(user=self.user)

        added = self.client.post(self.toggle_url, film_payload(), format="json")
        self.assertEqual(added.status_code, status.HTTP_200_OK)
        self.assertTrue(added.data["is_favourite"])
        self.assertEqual(added.data["favourite"]["film_id"], 42)
        self.assertEqual(Favourite.objects.filter(user=self.user).count(), 1)

        removed = self.client.post(self.toggle_url, film_payload(), format="json")
        self.assertEqual(removed.status_code, status.HTTP_200_OK)
        self.assertFalse(removed.data["is_favourite"])
        self.assertNotIn("favourite", removed.data)
        self.assertEqual(Favourite.objects.filter(user=self.user).count(), 0)

    def test_toggle_only_affects_own_favourite(self):
        self.make_favourite(self.other)
        self.client.force_authenticate(user=self.user)

        response = self.client.post(self.toggle_url, film_payload(), format="json")

        self.assertTrue(response.data["is_favourite"])
        self.assertEqual(Favourite.objects.filter(film_id=42).count(), 2)

    def test_check_reports_favourite_state(self):
        self.make_favourite(self.user)
        self.client.force_authenticate(user=self.user)

        yes = self.client.post(self.check_url, {"film_id": 42}, format="json")
        no = self.client.post(self.check_url, {"film_id": 99}, format="json")

        self.assertTrue(yes.data["is_favourite"])
        self.assertFalse(no.data["is_favourite"])


class FavouriteCsrfTests(APITestCase):
    """Session clients must echo the csrftoken cookie on mutations."""

    def setUp(self):
        self.user = User.objects.create_user(
            username="csrfuser",
            email="csrf@example.com",
            password="testpass123",
        )
        self.client = APIClient(enforce_csrf_checks=True)
        self.client.login(username="csrfuser", password="testpass123")
        self.list_url = reverse("favourite-list")

    def test_mutation_without_token_is_session_expired(self):
        response = self.client.post(self.list_url, film_payload(), format="json")

        self.assertEqual(response.status_code, 419)
        self.assertEqual(response.data["code"], "session_expired")
        self.assertEqual(Favourite.objects.count(), 0)

    def test_mutation_with_token_succeeds(self):
        self.client.get(reverse("auth-csrf"))
        token = self.client.cookies["csrftoken"].value

        response = self.client.post(
            self.list_url,
            film_payload(),
            format="json",
            HTTP_X_CSRFTOKEN=token,
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_reads_do_not_need_token(self):
        response = self.client.get(self.list_url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)


class FilmNoteAPITests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(
            username="noter",
            email="noter@example.com",
            password="testpass123",
        )
        self.other = User.objects.create_user(
            username="reader",
            email="reader@example.com",
            password="testpass123",
        )

        # from router: router.register("film-notes", FilmNoteViewSet,
        # basename="film-note")
        self.list_url = reverse("film-note-list")

    def detail_url(self, note):
        return reverse("film-note-detail", args=[note.id])

    def make_note(self, user, film_id=42, text="It's a multiverse story", **fields):
        return FilmNote.objects.create(
            user=user, film_id=film_id, note_text=text, **fields
        )

    def test_anonymous_cannot_list_notes(self):
        response = self.client.get(self.list_url, {"film_id": 42})
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_create_note(self):
        self.client.force_authenticate(user=self.user)

        response = self.client.post(
            self.list_url,
            {"film_id": 42, "note_text": "  Cameo at the end  ", "note_type": "note"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["message"], "Note created successfully")
        self.assertEqual(response.data["note"]["note_text"], "Cameo at the end")
        self.assertEqual(response.data["note"]["note_type"], "note")
        note = FilmNote.objects.get()
        self.assertEqual(note.user, self.user)

    def test_many_notes_per_film_without_favouriting(self):
        self.client.force_authenticate(user=self.user)

        for text in ("first theory", "second theory"):
            self.client.post(
                self.list_url,
                {"film_id": 42, "note_text": text, "note_type": "theory"},
                format="json",
            )

        self.assertEqual(FilmNote.objects.filter(user=self.user).count(), 2)
        self.assertEqual(Favourite.objects.count(), 0)

    def test_create_validates_body(self):
        self.client.force_authenticate(user=self.user)
        bad_bodies = [
            {"film_id": 42, "note_text": "x" * 5001, "note_type": "theory"},
            {"film_id": 42, "note_text": "   ", "note_type": "theory"},
            {"film_id": 42, "note_text": "<script>x</script>", "note_type": "note"},
            {"film_id": 42, "note_text": "ok", "note_type": "rant"},
            {"film_id": 42, "note_text": "ok"},
            {"note_text": "ok", "note_type": "note"},
        ]
        for body in bad_bodies:
            with self.subTest(body=body):
                response = self.client.post(self.list_url, body, format="json")
                self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        self.assertEqual(FilmNote.objects.count(), 0)

    def test_list_is_per_film_and_per_user(self):
        mine = self.make_note(self.user)
        self.make_note(self.user, film_id=43)
        self.make_note(self.other)
        self.client.force_authenticate(user=self.user)

        response = self.client.get(self.list_url, {"film_id": 42})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([n["id"] for n in response.data["notes"]], [str(mine.id)])

    def test_list_requires_film_id(self):
        self.client.force_authenticate(user=self.user)

        response = self.client.get(self.list_url)

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_owner_can_update_text_only(self):
        note = self.make_note(self.user, note_type=FilmNote.THEORY)
        self.client.force_authenticate(user=self.user)

        response = self.client.put(
            self.detail_url(note),
            {"note_text": "Revised", "note_type": "note", "film_id": 99},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["message"], "Note updated successfully")
        note.refresh_from_db()
        self.assertEqual(note.note_text, "Revised")
        self.assertEqual(note.note_type, FilmNote.THEORY)
        self.assertEqual(note.film_id, 42)

    def test_non_owner_cannot_update_or_delete(self):
        note = self.make_note(self.other, text="reader's note")
        self.client.force_authenticate(user=self.user)

        update = self.client.put(
            self.detail_url(note), {"note_text": "hijacked"}, format="json"
        )
        delete = self.client.delete(self.detail_url(note))

        self.assertEqual(update.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(delete.status_code, status.HTTP_403_FORBIDDEN)
        note.refresh_from_db()
        self.assertEqual(note.note_text, "reader's note")

    def test_owner_can_delete(self):
        note = self.make_note(self.user)
        self.client.force_authenticate(user=self.user)

        response = self.client.delete(self.detail_url(note))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["message"], "Note deleted successfully")
        self.assertFalse(FilmNote.objects.exists())

    def test_deleting_favourite_keeps_notes(self):
        favourite = Favourite.objects.create(
            user=self.user,
            film_id=42,
            film_title="Test Film",
            film_release_date="2026-01-01",
        )
        self.make_note(self.user)

        services.delete_favourite(self.user, favourite)

        self.assertEqual(FilmNote.objects.filter(film_id=42).count(), 1)


class FavouriteServiceTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="svc", password="pw12345!x")
        self.snapshot = {
            "film_id": 42,
            "film_title": "Test Film",
            "film_overview": None,
            "film_poster_url": None,
            "film_release_date": "2026-01-01",
            "film_type": "Movie",
        }

    def test_toggle_recovers_when_racing_insert_wins(self):
        winner = Favourite.objects.create(
            user=self.user,
            film_id=42,
            film_title="Test Film",
            film_release_date="2026-01-01",
        )
        real_filter = Favourite.objects.filter

        # The delete sees nothing (as if the other request had not committed
        # yet), so our insert trips the unique constraint.
        def filter_missing_first(*args, **kwargs):
            filter_missing_first.calls += 1
            if filter_missing_first.calls == 1:
                return Favourite.objects.none()
            return real_filter(*args, **kwargs)

        filter_missing_first.calls = 0

        with mock.patch.object(
            Favourite.objects, "filter", side_effect=filter_missing_first
        ):
            is_favourite, favourite = services.toggle_favourite(
                self.user, self.snapshot
            )

        self.assertTrue(is_favourite)
        self.assertEqual(favourite.pk, winner.pk)
        self.assertEqual(Favourite.objects.filter(user=self.user).count(), 1)

    def test_create_is_idempotent(self):
        first, created_first = services.create_favourite(self.user, self.snapshot)
        second, created_second = services.create_favourite(self.user, self.snapshot)

        self.assertTrue(created_first)
        self.assertFalse(created_second)
        self.assertEqual(first.pk, second.pk)

    def test_get_favourite_rejects_malformed_id(self):
        with self.assertRaises(NotFound):
            services.get_favourite(self.user, "not-a-uuid")


def _encode(payload):
    return json.dumps(payload)


class DjangoClientSession:
    """
    Minimal ``requests.Session`` stand-in that sends requests through
    Django's test client, so HttpFavouriteStore is exercised against the
    real views, session auth and CSRF checks.
    """

    class _Cookies:
        def __init__(self, client):
            self.client = client
            self.override = None

        def get(self, name, default=None):
            if self.override is not None:
                return self.override
            morsel = self.client.cookies.get(name)
            return morsel.value if morsel is not None else default

    class _Response:
        def __init__(self, response, url):
            self.status_code = response.status_code
            self.content = response.content
            self.url = url

        def json(self):
            return json.loads(self.content)

    def __init__(self, client):
        self.client = client
        self.cookies = self._Cookies(client)
        self.calls = []

    def request(self, method, url, json=None, headers=None, timeout=None):
        path = url.replace("http://testserver", "")
        self.calls.append((method, path))
        extra = {}
        for name, value in (headers or {}).items():
            extra["HTTP_" + name.upper().replace("-", "_")] = value
        body = "" if json is None else _encode(json)
        response = self.client.generic(
            method,
            path,
            data=body,
            content_type="application/json",
            **extra,
        )
        return self._Response(response, url)


class HttpFavouriteStoreTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="http", password="pw12345!x")
        self.identity = Identity.from_user(self.user)
        self.client = Client(enforce_csrf_checks=True)
        self.client.force_login(self.user)
        self.session = DjangoClientSession(self.client)
        self.store = HttpFavouriteStore("http://testserver", session=self.session)
        self.snapshot = FilmSnapshot.from_film(TEST_FILM)

    def test_crud_round_trip_through_api(self):
        record, created = self.store.create(self.identity, self.snapshot)
        self.assertTrue(created)
        self.assertEqual(record.film_id, 42)
        # the CSRF cookie was fetched once before the first mutation
        self.assertIn(("GET", "/api/auth/csrf/"), self.session.calls)

        _again, created_again = self.store.create(self.identity, self.snapshot)
        self.assertFalse(created_again)

        updated = self.store.update(
            self.identity, record.id, {"theories": "Maybe it's a prequel"}
        )
        self.assertEqual(updated.theories, "Maybe it's a prequel")

        listed = self.store.list(self.identity)
        self.assertEqual([r.id for r in listed], [record.id])

        self.store.delete(self.identity, record.id)
        self.assertEqual(self.store.list(self.identity), [])

        with self.assertRaises(NotFound):
            self.store.delete(self.identity, record.id)

    def test_toggle_through_api(self):
        is_favourite, record = self.store.toggle(self.identity, self.snapshot)
        self.assertTrue(is_favourite)
        self.assertEqual(record.title, "Test Film")

        is_favourite, record = self.store.toggle(self.identity, self.snapshot)
        self.assertFalse(is_favourite)
        self.assertIsNone(record)

    def test_other_users_record_is_authorization_error(self):
        owner = User.objects.create_user(username="owner", password="pw12345!x")
        fav = Favourite.objects.create(
            user=owner,
            film_id=7,
            film_title="Owned",
            film_release_date="2026-01-01",
            notes="owner notes",
        )

        with self.assertRaises(AuthorizationError):
            self.store.update(self.identity, fav.id, {"notes": "mine now"})

        fav.refresh_from_db()
        self.assertEqual(fav.notes, "owner notes")

    def test_server_validation_error_is_mapped(self):
        record, _ = self.store.create(self.identity, self.snapshot)

        with self.assertRaises(ValidationError) as ctx:
            self.store.update(self.identity, record.id, {"notes": "x" * 5001})

        self.assertIn("notes", ctx.exception.errors)

    def test_stale_csrf_token_is_session_expired(self):
        self.client.get("/api/auth/csrf/")
        self.session.cookies.override = "stale" * 6 + "xy"

        with self.assertRaises(SessionExpired) as ctx:
            self.store.create(self.identity, self.snapshot)

        self.assertEqual(
            ctx.exception.user_message,
            "Your session has expired. Please sign in again.",
        )
        self.assertEqual(Favourite.objects.count(), 0)

    def test_logged_out_session_is_authentication_required(self):
        self.client.logout()

        with self.assertRaises(AuthenticationRequired):
            self.store.list(self.identity)

    def test_transport_failure_is_store_unavailable(self):
        session = mock.Mock()
        session.cookies.get.return_value = "token"
        session.request.side_effect = requests.ConnectionError("down")
        store = HttpFavouriteStore("http://api.example.com", session=session)

        with self.assertRaises(StoreUnavailable):
            store.list(self.identity)
        # never retried
        self.assertEqual(session.request.call_count, 1)

    def test_body_without_records_is_store_unavailable(self):
        session = mock.Mock()
        session.cookies.get.return_value = "token"
        response = mock.Mock(status_code=200, content=b"{}")
        response.json.return_value = {}
        session.request.return_value = response
        store = HttpFavouriteStore("http://api.example.com", session=session)

        with self.assertRaises(StoreUnavailable):
            store.list(self.identity)
        with self.assertRaises(StoreUnavailable):
            store.create(self.identity, self.snapshot)
        with self.assertRaises(StoreUnavailable):
            store.update(self.identity, "some-id", {"notes": "x"})
        with self.assertRaises(StoreUnavailable):
            store.toggle(self.identity, self.snapshot)

        response.json.return_value = {"favourite": {"title": "no id"}}
        with self.assertRaises(StoreUnavailable):
            store.create(self.identity, self.snapshot)


class DatabaseFavouriteStoreTests(TestCase):
    def setUp(self):
        self.alice = User.objects.create_user(username="alice", password="pw12345!x")
        self.bob = User.objects.create_user(username="bob", password="pw12345!x")
        self.store = DatabaseFavouriteStore()
        self.a = Identity.from_user(self.alice)
        self.b = Identity.from_user(self.bob)
        self.snapshot = FilmSnapshot.from_film(TEST_FILM)

    def test_store_is_a_favourite_store(self):
        self.assertIsInstance(self.store, FavouriteStore)

    def test_missing_identity_is_rejected(self):
        with self.assertRaises(AuthenticationRequired):
            self.store.list(None)

    def test_update_by_non_owner_fails_and_does_not_mutate(self):
        record, _ = self.store.create(self.a, self.snapshot)
        self.store.update(self.a, record.id, {"notes": "original"})

        with self.assertRaises(AuthorizationError):
            self.store.update(self.b, record.id, {"notes": "changed"})
        with self.assertRaises(AuthorizationError):
            self.store.delete(self.b, record.id)

        [stored] = self.store.list(self.a)
        self.assertEqual(stored.notes, "original")
        self.assertEqual(self.store.list(self.b), [])

    def test_partial_update_leaves_other_field(self):
        record, _ = self.store.create(self.a, self.snapshot)
        self.store.update(self.a, record.id, {"notes": "n", "theories": "t"})

        updated = self.store.update(self.a, record.id, {"theories": "t2"})

        self.assertEqual(updated.theories, "t2")
        self.assertEqual(updated.notes, "n")

    def test_update_missing_record_is_not_found(self):
        with self.assertRaises(NotFound):
            self.store.update(
                self.a, "00000000-0000-0000-0000-000000000000", {"notes": "x"}
            )

    def test_find_by_film_id(self):
        record, _ = self.store.create(self.a, self.snapshot)
        self.assertEqual(self.store.find(self.a, 42).id, record.id)
        self.assertIsNone(self.store.find(self.b, 42))


class LocalFavouriteStoreTests(SimpleTestCase):
    def setUp(self):
        self.storage = {}
        self.store = LocalFavouriteStore(self.storage)
        self.a = Identity(user_id=1, username="alice")
        self.b = Identity(user_id=2, username="bob")
        self.snapshot = FilmSnapshot.from_film(TEST_FILM)

    def test_documents_are_keyed_per_user(self):
        self.store.create(self.a, self.snapshot)

        self.assertIn("fanhub_favourites_1", self.storage)
        self.assertNotIn("fanhub_favourites_2", self.storage)
        self.assertEqual(self.store.list(self.b), [])

    def test_create_is_idempotent(self):
        first, created = self.store.create(self.a, self.snapshot)
        second, created_again = self.store.create(self.a, self.snapshot)

        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(first, second)
        self.assertEqual(len(self.store.list(self.a)), 1)

    def test_update_normalises_and_keeps_other_field(self):
        record, _ = self.store.create(self.a, self.snapshot)
        self.store.update(self.a, record.id, {"notes": "  keep  "})

        updated = self.store.update(self.a, record.id, {"theories": ""})

        self.assertIsNone(updated.theories)
        self.assertEqual(updated.notes, "keep")

    def test_update_validates_length(self):
        record, _ = self.store.create(self.a, self.snapshot)

        with self.assertRaises(ValidationError):
            self.store.update(self.a, record.id, {"theories": "x" * 5001})
        self.assertIsNone(self.store.list(self.a)[0].theories)

    def test_other_users_document_is_never_touched(self):
        record, _ = self.store.create(self.a, self.snapshot)

        with self.assertRaises(NotFound):
            self.store.update(self.b, record.id, {"notes": "x"})
        with self.assertRaises(NotFound):
            self.store.delete(self.b, record.id)
        self.assertEqual(len(self.store.list(self.a)), 1)
        self.assertIsNone(self.store.list(self.a)[0].notes)

    def test_same_film_for_two_users_is_not_found_once_gone(self):
        mine, _ = self.store.create(self.a, self.snapshot)
        theirs, _ = self.store.create(self.b, self.snapshot)
        self.assertEqual(mine.id, theirs.id)

        self.store.delete(self.a, mine.id)

        with self.assertRaises(NotFound):
            self.store.delete(self.a, mine.id)
        with self.assertRaises(NotFound):
            self.store.update(self.a, mine.id, {"notes": "x"})
        self.assertEqual(self.store.list(self.b), [theirs])

    def test_sync_remove_succeeds_when_record_already_gone(self):
        sync = FavouritesSync(self.store, self.a)
        sync.add_favourite(TEST_FILM)
        self.store.create(self.b, self.snapshot)
        errors = []
        sync.on_error(errors.append)

        # removed from another tab, the projection still has it
        self.store.delete(self.a, "42")

        self.assertTrue(sync.remove_favourite(42))
        self.assertFalse(sync.is_favourite(42))
        self.assertEqual(errors, [])
        self.assertEqual(len(self.store.list(self.b)), 1)

    def test_delete_missing_is_not_found(self):
        with self.assertRaises(NotFound):
            self.store.delete(self.a, "999")

    def test_toggle_flips_state(self):
        is_favourite, record = self.store.toggle(self.a, self.snapshot)
        self.assertTrue(is_favourite)
        self.assertEqual(record.film_id, 42)

        is_favourite, record = self.store.toggle(self.a, self.snapshot)
        self.assertFalse(is_favourite)
        self.assertIsNone(record)
        self.assertEqual(self.store.list(self.a), [])

    def test_unreadable_document_is_treated_as_empty(self):
        self.storage["fanhub_favourites_1"] = "{not json"
        self.assertEqual(self.store.list(self.a), [])


class FavouritesSyncTests(TestCase):
    """Sync layer over the database-backed store."""

    def setUp(self):
        self.alice = User.objects.create_user(username="alice", password="pw12345!x")
        self.bob = User.objects.create_user(username="bob", password="pw12345!x")
        self.a = Identity.from_user(self.alice)
        self.b = Identity.from_user(self.bob)
        self.store = DatabaseFavouriteStore()
        self.sync = FavouritesSync(self.store, self.a)

    def test_favourite_annotate_and_remove_scenario(self):
        self.sync.add_favourite(TEST_FILM)

        [record] = self.store.list(self.a)
        self.assertEqual(record.film_id, 42)
        self.assertIsNone(record.theories)
        self.assertIsNone(record.notes)
        self.assertTrue(self.sync.is_favourite(42))

        self.sync.update_theories(42, "Maybe it's a prequel")
        self.assertEqual(self.store.list(self.a)[0].theories, "Maybe it's a prequel")
        self.assertEqual(self.sync.get(42).theories, "Maybe it's a prequel")

        self.sync.remove_favourite(42)
        self.assertEqual(self.store.list(self.a), [])
        self.assertFalse(self.sync.is_favourite(42))

    def test_other_identity_cannot_update(self):
        self.sync.add_favourite(TEST_FILM)
        [record] = self.store.list(self.a)

        with self.assertRaises(AuthorizationError):
            self.store.update(self.b, record.id, {"theories": "nope"})

        self.assertEqual(self.store.list(self.b), [])
        self.assertIsNone(self.store.list(self.a)[0].theories)

    def test_toggle_twice_returns_to_original_state(self):
        first = self.sync.toggle_favourite(TEST_FILM)
        self.assertTrue(first.is_favourite)
        self.assertEqual(first.record.film_id, 42)
        self.assertEqual(Favourite.objects.filter(user=self.alice).count(), 1)

        second = self.sync.toggle_favourite(TEST_FILM)
        self.assertFalse(second.is_favourite)
        self.assertIsNone(second.record)
        self.assertEqual(Favourite.objects.filter(user=self.alice).count(), 0)
        self.assertFalse(self.sync.is_favourite(42))

    def test_add_is_idempotent(self):
        self.sync.add_favourite(TEST_FILM)
        self.sync.add_favourite(TEST_FILM)

        self.assertEqual(Favourite.objects.filter(user=self.alice).count(), 1)
        self.assertEqual(self.sync.count, 1)

    def test_clearing_theories_leaves_notes(self):
        self.sync.add_favourite(TEST_FILM)
        self.sync.update_notes(42, "Post-credit scene matters")

        self.sync.update_theories(42, "")
        self.sync.update_theories(42, "x")

        self.assertEqual(self.sync.get(42).notes, "Post-credit scene matters")
        self.assertEqual(self.store.list(self.a)[0].notes, "Post-credit scene matters")

    def test_delete_theories_blanks_field_but_keeps_favourite(self):
        self.sync.add_favourite(TEST_FILM)
        self.sync.update_theories(42, "A theory")

        self.sync.delete_theories(42)

        self.assertTrue(self.sync.is_favourite(42))
        self.assertIsNone(self.sync.get(42).theories)
        self.assertEqual(Favourite.objects.count(), 1)

    def test_remove_resolves_storage_id_from_store(self):
        # favourited from another device after this projection was loaded
        DatabaseFavouriteStore().create(self.a, FilmSnapshot.from_film(OTHER_FILM))
        self.assertFalse(self.sync.is_favourite(43))

        self.assertTrue(self.sync.remove_favourite(43))
        self.assertEqual(Favourite.objects.count(), 0)

    def test_remove_absent_favourite_is_success(self):
        self.assertFalse(self.sync.remove_favourite(999))

    def test_remove_already_deleted_record_is_success(self):
        self.sync.add_favourite(TEST_FILM)
        Favourite.objects.all().delete()

        self.assertTrue(self.sync.remove_favourite(42))
        self.assertFalse(self.sync.is_favourite(42))
        self.assertIsNone(self.sync.last_error)

    def test_identity_change_rebuilds_projection(self):
        self.sync.add_favourite(TEST_FILM)
        DatabaseFavouriteStore().create(self.b, FilmSnapshot.from_film(OTHER_FILM))

        self.sync.load_for_identity(self.b)
        self.assertEqual([r.film_id for r in self.sync.favourites], [43])

        self.sync.load_for_identity(None)
        self.assertEqual(self.sync.favourites, [])

        with self.assertRaises(AuthenticationRequired):
            self.sync.add_favourite(TEST_FILM)


class FavouritesSyncValidationTests(SimpleTestCase):
    """Client-side checks and failure handling, no database involved."""

    def setUp(self):
        self.store = mock.Mock(wraps=LocalFavouriteStore())
        self.identity = Identity(user_id=1, username="alice")
        self.sync = FavouritesSync(self.store, self.identity)
        self.errors = []
        self.sync.on_error(self.errors.append)

    def test_invalid_film_fails_before_store_call(self):
        bad_films = [
            {"id": "42", "title": "Test", "release_date": "2026-01-01"},
            {"id": True, "title": "Test", "release_date": "2026-01-01"},
            {"id": 42, "title": "   ", "release_date": "2026-01-01"},
            {"id": 42, "title": "Test", "release_date": "2026-02-30"},
            {"id": 42, "title": "Test"},
            {
                "id": 42,
                "title": "Test",
                "release_date": "2026-01-01",
                "poster_url": "not a url",
            },
        ]
        for film in bad_films:
            with self.subTest(film=film):
                with self.assertRaises(ValidationError):
                    self.sync.add_favourite(film)
                with self.assertRaises(ValidationError):
                    self.sync.toggle_favourite(film)

        self.store.create.assert_not_called()
        self.store.toggle.assert_not_called()
        self.assertEqual(self.sync.favourites, [])

    def test_overlong_annotation_rejected_before_store_update(self):
        self.sync.add_favourite(TEST_FILM)

        with self.assertRaises(ValidationError) as ctx:
            self.sync.update_theories(42, "x" * 5001)

        self.assertIn("exceeds max length", ctx.exception.user_message)
        self.store.update.assert_not_called()
        self.assertIsNone(self.sync.get(42).theories)

    def test_annotation_lists_every_violated_rule(self):
        self.sync.add_favourite(TEST_FILM)

        with self.assertRaises(ValidationError) as ctx:
            self.sync.update_notes(42, "<b>bold</b>\x07" + "x" * 5000)

        rules = ctx.exception.errors["notes"]
        self.assertIn("contains disallowed markup", rules)
        self.assertIn("contains control characters", rules)
        self.assertTrue(any("exceeds max length" in rule for rule in rules))

    def test_newlines_are_allowed(self):
        self.sync.add_favourite(TEST_FILM)
        self.sync.update_notes(42, "line one\nline two")
        self.assertEqual(self.sync.get(42).notes, "line one\nline two")

    def test_update_requires_existing_favourite(self):
        with self.assertRaises(NotFound):
            self.sync.update_notes(42, "hello")
        self.store.update.assert_not_called()

    def test_store_failure_leaves_projection_unchanged(self):
        self.sync.add_favourite(TEST_FILM)
        self.sync.update_notes(42, "before")
        before = self.sync.favourites

        self.store.update.side_effect = StoreUnavailable()
        with self.assertRaises(StoreUnavailable):
            self.sync.update_notes(42, "after")
        self.store.delete.side_effect = SessionExpired()
        with self.assertRaises(SessionExpired):
            self.sync.remove_favourite(42)

        self.assertEqual(self.sync.favourites, before)
        self.assertIsInstance(self.errors[-1], SessionExpired)
        self.assertEqual(
            self.sync.last_error.user_message,
            "Your session has expired. Please sign in again.",
        )
        # no automatic retries
        self.assertEqual(self.store.update.call_count, 2)

    def test_load_fails_open(self):
        failing = mock.Mock(spec=FavouriteStore)
        failing.list.side_effect = StoreUnavailable()
        sync = FavouritesSync(failing)
        seen = []
        sync.on_error(seen.append)

        result = sync.load_for_identity(self.identity)

        self.assertEqual(result, [])
        self.assertIsInstance(sync.last_error, StoreUnavailable)
        self.assertEqual(len(seen), 1)

    def test_load_wraps_unexpected_errors(self):
        failing = mock.Mock(spec=FavouriteStore)
        failing.list.side_effect = RuntimeError("boom")
        sync = FavouritesSync(failing)

        with self.assertLogs("favourites.sync", level="ERROR"):
            sync.load_for_identity(self.identity)

        self.assertEqual(sync.favourites, [])
        self.assertIsInstance(sync.last_error, StoreUnavailable)

    def test_update_only_changes_targeted_field_locally(self):
        record = self.sync.add_favourite(TEST_FILM)
        self.sync.update_notes(42, "notes")

        updated = self.sync.update_theories(42, "theory")

        self.assertEqual(updated.notes, "notes")
        self.assertEqual(updated.title, record.title)
        self.assertEqual(updated.poster_url, record.poster_url)


class ConfirmationGateTests(SimpleTestCase):
    def test_second_press_confirms(self):
        gate = ConfirmationGate()
        self.assertFalse(gate.press(("theories", 42)))
        self.assertTrue(gate.is_armed(("theories", 42)))
        self.assertTrue(gate.press(("theories", 42)))
        self.assertFalse(gate.is_armed(("theories", 42)))

    def test_pressing_another_key_rearms(self):
        gate = ConfirmationGate()
        gate.press(("theories", 42))
        self.assertFalse(gate.press(("notes", 42)))
        self.assertFalse(gate.press(("theories", 42)))

    def test_cancel_disarms(self):
        gate = ConfirmationGate()
        gate.press("x")
        gate.cancel()
        self.assertFalse(gate.press("x"))


class FavouriteRecordTests(SimpleTestCase):
    def test_blank_annotations_from_payload_are_absent(self):
        record = FavouriteRecord.from_payload(
            {
                "id": 1,
                "film_id": "42",
                "title": "Test Film",
                "release_date": "2026-01-01",
                "theories": "",
                "notes": None,
            }
        )
        self.assertEqual(record.id, "1")
        self.assertEqual(record.film_id, 42)
        self.assertIsNone(record.theories)
        self.assertIsNone(record.notes)
