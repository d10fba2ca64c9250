"""
Client-side view of a user's favourites.

``FavouritesSync`` is what a front end talks to. It answers "is this film
a favourite, and what did I write about it?" from a local projection and
keeps that projection in step with a ``FavouriteStore``:

- every mutation is confirm-then-apply: the store call runs first, and the
  projection only changes once it succeeds;
- failures are raised as ``FavouritesError`` subclasses carrying a
  ``user_message``, and are never retried here;
- the identity is passed in explicitly, there is no ambient session state.

Calls on the same film are not queued. Front ends disable the triggering
control while a call is in flight; otherwise the store's last write wins.
"""

import logging

from .exceptions import (
    AuthenticationRequired,
    FavouritesError,
    NotFound,
    StoreUnavailable,
    ValidationError,
)
from .records import FilmSnapshot, ToggleResult
from .validators import annotation_errors, film_errors

logger = logging.getLogger(__name__)


class FavouritesSync:
    def __init__(self, store, identity=None):
        self.store = store
        self.identity = None
        self.last_error = None
        self._favourites = []
        self._error_listeners = []
        if identity is not None:
            self.load_for_identity(identity)

    # ---- Projection ----

    @property
    def favourites(self):
        return list(self._favourites)

    @property
    def count(self):
        return len(self._favourites)

    def get(self, film_id):
        for record in self._favourites:
            if record.film_id == film_id:
                return record
        return None

    def is_favourite(self, film_id):
        return any(record.film_id == film_id for record in self._favourites)

    def _put(self, record):
        """Insert or replace the entry for ``record.film_id``."""
        for index, existing in enumerate(self._favourites):
            if existing.film_id == record.film_id:
                self._favourites[index] = record
                return
        self._favourites.append(record)

    def _drop(self, film_id):
        self._favourites = [r for r in self._favourites if r.film_id != film_id]

    # ---- Errors ----

    def on_error(self, listener):
        """Register ``listener(error)``, called for every surfaced failure."""
        self._error_listeners.append(listener)
        return listener

    def _report(self, error):
        self.last_error = error
        for listener in list(self._error_listeners):
            listener(error)

    def _call(self, action, func, *args):
        """Run a store call, reporting and re-raising any failure."""
        try:
            return func(*args)
        except FavouritesError as exc:
            logger.warning("Favourites %s failed: %s", action, exc.user_message)
            self._report(exc)
            raise

    def _require_identity(self, action):
        if self.identity is None:
            error = AuthenticationRequired(
                f"You must be logged in to {action}."
            )
            self._report(error)
            raise error
        return self.identity

    def _fail_validation(self, errors):
        error = ValidationError(errors)
        self._report(error)
        raise error

    # ---- Operations ----

    def load_for_identity(self, identity):
        """
        Rebuild the projection for ``identity``; ``None`` clears it.

        Never raises: a failing store leaves an empty projection and the
        error on ``last_error``.
        """
        self.identity = identity
        self.last_error = None
        if identity is None:
            self._favourites = []
            return self.favourites

        try:
            records = self.store.list(identity)
        except FavouritesError as exc:
            logger.warning("Could not load favourites: %s", exc.user_message)
            self._favourites = []
            self._report(exc)
        except Exception:
            logger.exception("Unexpected error loading favourites")
            self._favourites = []
            self._report(StoreUnavailable())
        else:
            self._favourites = list(records)
        return self.favourites

    def _snapshot(self, film):
        errors = film_errors(film)
        if errors:
            self._fail_validation(errors)
        return FilmSnapshot.from_film(film)

    def add_favourite(self, film):
        """Favourite ``film``. Adding an existing favourite is a no-op."""
        identity = self._require_identity("add favourites")
        snapshot = self._snapshot(film)
        record, _created = self._call(
            "add", self.store.create, identity, snapshot
        )
        self._put(record)
        return record

    def remove_favourite(self, film_id):
        """Remove the favourite for ``film_id``; already absent is fine."""
        identity = self._require_identity("remove favourites")
        record = self.get(film_id)
        if record is None:
            record = self._call("lookup", self.store.find, identity, film_id)
        if record is None:
            return False

        try:
            self.store.delete(identity, record.id)
        except NotFound:
            logger.info("Favourite for film %s was already gone", film_id)
        except FavouritesError as exc:
            logger.warning("Favourites remove failed: %s", exc.user_message)
            self._report(exc)
            raise
        self._drop(film_id)
        return True

    def toggle_favourite(self, film):
        """Let the store decide between add and remove in one call."""
        identity = self._require_identity("add favourites")
        snapshot = self._snapshot(film)
        is_favourite, record = self._call(
            "toggle", self.store.toggle, identity, snapshot
        )
        if is_favourite:
            self._put(record)
        else:
            self._drop(snapshot.film_id)
        return ToggleResult(is_favourite=is_favourite, record=record)

    def _update_annotation(self, film_id, field, text):
        identity = self._require_identity(f"update {field}")
        record = self.get(film_id)
        if record is None:
            error = NotFound("Add this film to your favourites first.")
            self._report(error)
            raise error

        errors = annotation_errors(text)
        if errors:
            self._fail_validation({field: errors})
        value = text.strip() if text is not None else ""

        updated = self._call(
            f"update {field}",
            self.store.update,
            identity,
            record.id,
            {field: value},
        )
        # only the targeted field changes locally
        self._put(record.with_field(field, getattr(updated, field)))
        return self.get(film_id)

    def update_theories(self, film_id, text):
        return self._update_annotation(film_id, "theories", text)

    def update_notes(self, film_id, text):
        return self._update_annotation(film_id, "notes", text)

    def delete_theories(self, film_id):
        return self._update_annotation(film_id, "theories", "")

    def delete_notes(self, film_id):
        return self._update_annotation(film_id, "notes", "")


class ConfirmationGate:
    """
    Two-step confirmation for destructive UI actions.

    The first ``press(key)`` arms the gate and returns False, a second
    press on the same key confirms and returns True. Pressing another key
    re-arms on that key instead.
    """

    def __init__(self):
        self.armed = None

    def press(self, key):
        if self.armed == key:
            self.armed = None
            return True
        self.armed = key
        return False

    def cancel(self):
        self.armed = None

    def is_armed(self, key):
        return self.armed == key
