"""
Favourite record stores.

Every store implements the same contract over ``FavouriteRecord`` values,
so ``FavouritesSync`` can sit on top of whichever tier a front end uses:

- ``DatabaseFavouriteStore``: in-process, straight through the ORM
- ``HttpFavouriteStore``: the JSON API, over a session with CSRF
- ``LocalFavouriteStore``: per-user JSON documents in a key/value mapping
  (the browser local-storage tier)
"""

import abc
import datetime
import json
import logging

import requests
from django.contrib.auth import get_user_model

from . import services
from .exceptions import (
    AuthenticationRequired,
    AuthorizationError,
    NotFound,
    SessionExpired,
    StoreUnavailable,
    ValidationError,
)
from .records import FavouriteRecord
from .serializers import (
    FavouriteAnnotationSerializer,
    FavouriteSerializer,
    FilmSnapshotSerializer,
)

logger = logging.getLogger(__name__)


class FavouriteStore(abc.ABC):
    """Durable per-identity CRUD over favourites."""

    @abc.abstractmethod
    def list(self, identity):
        """All records owned by ``identity``, newest first."""

    @abc.abstractmethod
    def create(self, identity, snapshot):
        """Return ``(record, created)``; re-adding returns the existing one."""

    @abc.abstractmethod
    def update(self, identity, record_id, changes):
        """Partially update ``theories``/``notes`` and return the record."""

    @abc.abstractmethod
    def delete(self, identity, record_id):
        """Delete the record; NotFound if it is already gone."""

    @abc.abstractmethod
    def toggle(self, identity, snapshot):
        """Return ``(is_favourite, record_or_None)``."""

    def find(self, identity, film_id):
        for record in self.list(identity):
            if record.film_id == film_id:
                return record
        return None


def _require_identity(identity):
    if identity is None:
        raise AuthenticationRequired()
    return identity


def _drf_errors(serializer):
    """Flatten DRF error detail into {field: [message, ...]}."""
    errors = {}
    for field, messages in serializer.errors.items():
        if not isinstance(messages, (list, tuple)):
            messages = [messages]
        errors[field] = [str(message) for message in messages]
    return errors


def _validated_snapshot(snapshot):
    serializer = FilmSnapshotSerializer(data=snapshot.to_payload())
    if not serializer.is_valid():
        raise ValidationError(_drf_errors(serializer))
    return serializer.validated_data


def _validated_changes(changes):
    serializer = FavouriteAnnotationSerializer(data=changes)
    if not serializer.is_valid():
        raise ValidationError(_drf_errors(serializer))
    return serializer.validated_data


class DatabaseFavouriteStore(FavouriteStore):
    """Talks to the database directly, for server-side callers."""

    def _user(self, identity):
        _require_identity(identity)
        User = get_user_model()
        try:
            return User.objects.get(pk=identity.user_id)
        except User.DoesNotExist:
            raise AuthenticationRequired()

    @staticmethod
    def _record(favourite):
        return FavouriteRecord.from_payload(FavouriteSerializer(favourite).data)

    def list(self, identity):
        user = self._user(identity)
        return [self._record(fav) for fav in services.list_favourites(user)]

    def create(self, identity, snapshot):
        data = _validated_snapshot(snapshot)
        user = self._user(identity)
        favourite, created = services.create_favourite(user, data)
        return self._record(favourite), created

    def update(self, identity, record_id, changes):
        data = _validated_changes(changes)
        user = self._user(identity)
        favourite = services.get_favourite(user, record_id)
        return self._record(services.update_favourite(user, favourite, data))

    def delete(self, identity, record_id):
        user = self._user(identity)
        favourite = services.get_favourite(user, record_id)
        services.delete_favourite(user, favourite)

    def toggle(self, identity, snapshot):
        data = _validated_snapshot(snapshot)
        user = self._user(identity)
        is_favourite, favourite = services.toggle_favourite(user, data)
        if not is_favourite:
            return False, None
        return True, self._record(favourite)


class HttpFavouriteStore(FavouriteStore):
    """
    Client for the favourites JSON API.

    Relies on a logged-in ``requests.Session``: the session cookie carries
    the identity, the ``csrftoken`` cookie is echoed back as X-CSRFToken
    on every mutating request. Failures are mapped onto the error taxonomy
    and never retried.
    """

    CSRF_COOKIE_NAME = "csrftoken"
    CSRF_HEADER_NAME = "X-CSRFToken"

    def __init__(self, base_url, session=None, timeout=10):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _url(self, path):
        return f"{self.base_url}{path}"

    def _csrf_token(self):
        token = self.session.cookies.get(self.CSRF_COOKIE_NAME)
        if token:
            return token
        data = self._json(self._send("GET", "/api/auth/csrf/", mutating=False))
        return self.session.cookies.get(self.CSRF_COOKIE_NAME) or data.get(
            "csrf_token"
        )

    def _send(self, method, path, payload=None, mutating=True):
        headers = {"Accept": "application/json"}
        if mutating:
            headers[self.CSRF_HEADER_NAME] = self._csrf_token()
            headers["Referer"] = self.base_url + "/"
        try:
            response = self.session.request(
                method,
                self._url(path),
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Favourites API %s %s failed: %s", method, path, exc)
            raise StoreUnavailable() from exc

        if response.status_code >= 400:
            raise self._error_for(response)
        return response

    @staticmethod
    def _json(response):
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            logger.error("Favourites API returned non-JSON: %s", response.url)
            raise StoreUnavailable() from exc

    @staticmethod
    def _error_for(response):
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        detail = body.get("detail") or body.get("message")
        status_code = response.status_code

        if status_code == 400:
            errors = body.get("errors") or {
                key: value if isinstance(value, list) else [value]
                for key, value in body.items()
            }
            return ValidationError(
                {key: [str(v) for v in value] for key, value in errors.items()}
            )
        if status_code == 401:
            return AuthenticationRequired(detail)
        if status_code == 403:
            if body.get("code") == "session_expired" or str(detail).startswith(
                "CSRF Failed"
            ):
                return SessionExpired()
            return AuthorizationError(detail)
        if status_code == 404:
            return NotFound()
        if status_code == 419:
            return SessionExpired()
        logger.error("Favourites API returned HTTP %s", status_code)
        return StoreUnavailable()

    @staticmethod
    def _records(data, key, many=False):
        """Pull ``key`` out of a response body as record(s)."""
        try:
            if many:
                return [FavouriteRecord.from_payload(item) for item in data[key]]
            return FavouriteRecord.from_payload(data[key])
        except (KeyError, TypeError, ValueError) as exc:
            logger.error("Favourites API response has no usable %r: %r", key, data)
            raise StoreUnavailable() from exc

    def list(self, identity):
        _require_identity(identity)
        data = self._json(self._send("GET", "/api/favourites/", mutating=False))
        return self._records(data, "favourites", many=True)

    def create(self, identity, snapshot):
        _require_identity(identity)
        response = self._send("POST", "/api/favourites/", snapshot.to_payload())
        data = self._json(response)
        created = response.status_code == 201
        return self._records(data, "favourite"), created

    def update(self, identity, record_id, changes):
        _require_identity(identity)
        data = self._json(
            self._send("PUT", f"/api/favourites/{record_id}/", changes)
        )
        return self._records(data, "favourite")

    def delete(self, identity, record_id):
        _require_identity(identity)
        self._send("DELETE", f"/api/favourites/{record_id}/")

    def toggle(self, identity, snapshot):
        _require_identity(identity)
        data = self._json(
            self._send("POST", "/api/favourites/toggle/", snapshot.to_payload())
        )
        if not isinstance(data, dict) or "is_favourite" not in data:
            logger.error("Favourites API toggle response is malformed: %r", data)
            raise StoreUnavailable()
        if not data["is_favourite"]:
            return False, None
        return True, self._records(data, "favourite")


class LocalFavouriteStore(FavouriteStore):
    """
    Keeps each user's favourites as one JSON document in ``storage``.

    ``storage`` is any mutable mapping of str -> str (a dict, a shelf, a
    browser-storage bridge). Record ids in this tier are the film ids, a
    user can only ever reach their own document.
    """

    KEY_PREFIX = "fanhub_favourites_"

    def __init__(self, storage=None, clock=None):
        self.storage = storage if storage is not None else {}
        self.clock = clock or (
            lambda: datetime.datetime.now(datetime.timezone.utc)
        )

    def _key(self, identity):
        return f"{self.KEY_PREFIX}{identity.user_id}"

    def _load(self, identity):
        raw = self.storage.get(self._key(identity))
        if not raw:
            return []
        try:
            items = json.loads(raw)
        except ValueError:
            logger.error(
                "Discarding unreadable favourites for user %s", identity.user_id
            )
            return []
        return [FavouriteRecord.from_payload(item) for item in items]

    def _save(self, identity, records):
        self.storage[self._key(identity)] = json.dumps(
            [record.to_payload() for record in records]
        )

    def _now(self):
        return self.clock().isoformat()

    @staticmethod
    def _index(records, record_id):
        # ids are film ids, only unique within one user's document
        for index, record in enumerate(records):
            if record.id == str(record_id):
                return index
        raise NotFound()

    def _new_record(self, data):
        now = self._now()
        return FavouriteRecord(
            id=str(data["film_id"]),
            film_id=data["film_id"],
            title=data["film_title"],
            release_date=data["film_release_date"].isoformat(),
            overview=data["film_overview"],
            poster_url=data["film_poster_url"],
            type=data["film_type"],
            added_at=now,
            updated_at=now,
        )

    def list(self, identity):
        _require_identity(identity)
        return sorted(
            self._load(identity),
            key=lambda record: record.added_at or "",
            reverse=True,
        )

    def create(self, identity, snapshot):
        _require_identity(identity)
        data = _validated_snapshot(snapshot)
        records = self._load(identity)
        for record in records:
            if record.film_id == data["film_id"]:
                return record, False
        record = self._new_record(data)
        records.append(record)
        self._save(identity, records)
        return record, True

    def update(self, identity, record_id, changes):
        _require_identity(identity)
        data = _validated_changes(changes)
        records = self._load(identity)
        index = self._index(records, record_id)
        record = records[index]
        for name in ("theories", "notes"):
            if name in data:
                record = record.with_field(name, data[name])
        record = record.with_field("updated_at", self._now())
        records[index] = record
        self._save(identity, records)
        return record

    def delete(self, identity, record_id):
        _require_identity(identity)
        records = self._load(identity)
        index = self._index(records, record_id)
        del records[index]
        self._save(identity, records)

    def toggle(self, identity, snapshot):
        _require_identity(identity)
        data = _validated_snapshot(snapshot)
        records = self._load(identity)
        remaining = [r for r in records if r.film_id != data["film_id"]]
        if len(remaining) != len(records):
            self._save(identity, remaining)
            return False, None
        record = self._new_record(data)
        self._save(identity, records + [record])
        return True, record
