"""
Input rules shared by every favourites tier.

The same functions back the DRF serializers on the server, the local store
and the client-side checks in ``favourites.sync``, so a value the client
accepts is one the server accepts too.
"""

import datetime
import re

from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import URLValidator

from .exceptions import ValidationError

ANNOTATION_MAX_LENGTH = 5000
FILM_TITLE_MAX_LENGTH = 255
FILM_TYPE_MAX_LENGTH = 50
POSTER_URL_MAX_LENGTH = 500

# C0/C1 control characters except tab, newline and carriage return
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_MARKUP = re.compile(r"<\s*/?\s*[a-zA-Z!][^>]*>")
_is_url = URLValidator()


def parse_release_date(value):
    """Return a ``date`` for ``value`` or ``None`` when it is not a date."""
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        return datetime.date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def annotation_errors(value):
    """
    List the rules a theories/notes value breaks.

    ``None`` and blank strings are always fine, they mean "absent".
    """
    if value is None:
        return []
    if not isinstance(value, str):
        return ["must be a string"]

    errors = []
    text = value.strip()
    if len(text) > ANNOTATION_MAX_LENGTH:
        errors.append(f"exceeds max length of {ANNOTATION_MAX_LENGTH} characters")
    if _CONTROL_CHARS.search(text):
        errors.append("contains control characters")
    if _MARKUP.search(text):
        errors.append("contains disallowed markup")
    return errors


def clean_annotation(value, field="theories"):
    """Validate and normalise an annotation; blank becomes ``None``."""
    errors = annotation_errors(value)
    if errors:
        raise ValidationError({field: errors})
    if value is None:
        return None
    text = value.strip()
    return text or None


def film_errors(film):
    """Check a film-like mapping has the fields needed to favourite it."""
    errors = {}
    if not isinstance(film, dict):
        return {"film": ["must be an object"]}

    film_id = film.get("id")
    if isinstance(film_id, bool) or not isinstance(film_id, int):
        errors["id"] = ["is required and must be an integer"]

    title = film.get("title")
    if not isinstance(title, str) or not title.strip():
        errors["title"] = ["is required and must be a non-empty string"]
    elif len(title.strip()) > FILM_TITLE_MAX_LENGTH:
        errors["title"] = [
            f"exceeds max length of {FILM_TITLE_MAX_LENGTH} characters"
        ]

    if parse_release_date(film.get("release_date")) is None:
        errors["release_date"] = ["is required and must be a valid date"]

    poster_url = film.get("poster_url")
    if poster_url not in (None, ""):
        if not isinstance(poster_url, str) or len(poster_url) > POSTER_URL_MAX_LENGTH:
            errors["poster_url"] = [
                f"must be a URL of at most {POSTER_URL_MAX_LENGTH} characters"
            ]
        else:
            try:
                _is_url(poster_url.strip())
            except DjangoValidationError:
                errors["poster_url"] = ["must be a valid URL"]

    film_type = film.get("type")
    if film_type is not None and (
        not isinstance(film_type, str) or len(film_type) > FILM_TYPE_MAX_LENGTH
    ):
        errors["type"] = [
            f"must be a string of at most {FILM_TYPE_MAX_LENGTH} characters"
        ]
    return errors


def validate_film(film):
    errors = film_errors(film)
    if errors:
        raise ValidationError(errors)
    return film
