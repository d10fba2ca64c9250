"""
Plain value types passed between the sync layer and the stores.
"""

import datetime
from dataclasses import dataclass, field, replace
from typing import Optional

from .validators import parse_release_date


@dataclass(frozen=True)
class Identity:
    """The signed-in user, threaded explicitly into every store call."""

    user_id: int
    username: str = ""

    @classmethod
    def from_user(cls, user):
        if user is None or not getattr(user, "is_authenticated", False):
            return None
        return cls(user_id=user.pk, username=user.get_username())


@dataclass(frozen=True)
class FilmSnapshot:
    """Display fields copied from the upstream film when favouriting it."""

    film_id: int
    title: str
    release_date: datetime.date
    overview: Optional[str] = None
    poster_url: Optional[str] = None
    type: str = "Movie"

    @classmethod
    def from_film(cls, film):
        """Build from an upstream film dict (``id``, ``title``, ...)."""
        return cls(
            film_id=film["id"],
            title=film["title"].strip(),
            release_date=parse_release_date(film["release_date"]),
            overview=film.get("overview") or None,
            poster_url=(film.get("poster_url") or "").strip() or None,
            type=film.get("type") or "Movie",
        )

    def to_payload(self):
        """Request body understood by the create and toggle endpoints."""
        return {
            "film_id": self.film_id,
            "film_title": self.title,
            "film_overview": self.overview,
            "film_poster_url": self.poster_url,
            "film_release_date": self.release_date.isoformat(),
            "film_type": self.type,
        }


@dataclass(frozen=True)
class FavouriteRecord:
    """
    Normalised favourite as returned by every store.

    ``id`` is the storage id, ``film_id`` the upstream id the UI keys on.
    """

    id: str
    film_id: int
    title: str
    release_date: str
    overview: Optional[str] = None
    poster_url: Optional[str] = None
    type: str = "Movie"
    theories: Optional[str] = None
    notes: Optional[str] = None
    added_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_payload(cls, data):
        return cls(
            id=str(data["id"]),
            film_id=int(data["film_id"]),
            title=data["title"],
            release_date=data["release_date"],
            overview=data.get("overview"),
            poster_url=data.get("poster_url"),
            type=data.get("type") or "Movie",
            theories=data.get("theories") or None,
            notes=data.get("notes") or None,
            added_at=data.get("added_at"),
            updated_at=data.get("updated_at"),
        )

    def to_payload(self):
        return {
            "id": self.id,
            "film_id": self.film_id,
            "title": self.title,
            "overview": self.overview,
            "poster_url": self.poster_url,
            "release_date": self.release_date,
            "type": self.type,
            "theories": self.theories,
            "notes": self.notes,
            "added_at": self.added_at,
            "updated_at": self.updated_at,
        }

    def with_field(self, name, value):
        return replace(self, **{name: value})


@dataclass(frozen=True)
class ToggleResult:
    is_favourite: bool
    record: Optional[FavouriteRecord] = field(default=None)
