"""
Database operations on favourites.

Used by the API views and by ``DatabaseFavouriteStore``. Ownership is
checked here as well as in the views so every caller gets the same rules.
"""

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction

from .exceptions import AuthorizationError, NotFound
from .models import Favourite

logger = logging.getLogger(__name__)

SNAPSHOT_FIELDS = (
    "film_title",
    "film_overview",
    "film_poster_url",
    "film_release_date",
    "film_type",
)
ANNOTATION_FIELDS = ("theories", "notes")


def _snapshot_defaults(snapshot):
    return {name: snapshot.get(name) for name in SNAPSHOT_FIELDS}


def list_favourites(user):
    return Favourite.objects.filter(user=user).order_by("-created_at")


def is_favourited(user, film_id):
    return Favourite.objects.filter(user=user, film_id=film_id).exists()


def get_favourite(user, favourite_id):
    """
    Fetch a favourite by storage id and check ``user`` owns it.

    Raises NotFound when missing, AuthorizationError when owned by someone
    else.
    """
    try:
        favourite = Favourite.objects.get(pk=favourite_id)
    except (Favourite.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound()
    ensure_owner(user, favourite)
    return favourite


def ensure_owner(user, favourite):
    if favourite.user_id != user.pk:
        logger.warning(
            "User %s tried to modify favourite %s owned by user %s",
            user.pk,
            favourite.pk,
            favourite.user_id,
        )
        raise AuthorizationError()


def create_favourite(user, snapshot):
    """
    Save a film for ``user``.

    Returns ``(favourite, created)``. An existing favourite for the same
    film is returned untouched with ``created=False``.
    """
    # get_or_create falls back to a lookup if a concurrent insert wins
    # the unique constraint.
    favourite, created = Favourite.objects.get_or_create(
        user=user,
        film_id=snapshot["film_id"],
        defaults=_snapshot_defaults(snapshot),
    )
    if created:
        logger.info("User %s favourited film %s", user.pk, favourite.film_id)
    return favourite, created


def toggle_favourite(user, snapshot):
    """
    Remove the favourite if it exists, otherwise create it.

    Returns ``(is_favourite, favourite_or_None)``. The delete is a single
    statement and a racing create is settled by the unique constraint, so
    two identical toggles in flight never leave two rows behind.
    """
    film_id = snapshot["film_id"]
    with transaction.atomic():
        deleted, _ = Favourite.objects.filter(user=user, film_id=film_id).delete()
        if deleted:
            logger.info("User %s unfavourited film %s", user.pk, film_id)
            return False, None

        try:
            with transaction.atomic():
                favourite = Favourite.objects.create(
                    user=user,
                    film_id=film_id,
                    **_snapshot_defaults(snapshot),
                )
        except IntegrityError:
            favourite = Favourite.objects.get(user=user, film_id=film_id)
        else:
            logger.info("User %s favourited film %s", user.pk, film_id)
    return True, favourite


def update_favourite(user, favourite, changes):
    """Apply a partial theories/notes update. Omitted fields are kept."""
    ensure_owner(user, favourite)
    update_fields = []
    for name in ANNOTATION_FIELDS:
        if name in changes:
            setattr(favourite, name, changes[name])
            update_fields.append(name)
    if update_fields:
        favourite.save(update_fields=update_fields + ["updated_at"])
    return favourite


def delete_favourite(user, favourite):
    ensure_owner(user, favourite)
    film_id = favourite.film_id
    favourite.delete()
    logger.info("User %s removed favourite for film %s", user.pk, film_id)
