import uuid
from django.db import models
from django.contrib.auth import get_user_model

User = get_user_model()


class Favourite(models.Model):
    """
    One row = one upstream film saved by one user.

    The film's display fields are snapshotted at the time of favouriting,
    the upstream feed is never consulted again for this row.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        User, on_delete=models.CASCADE, related_name="favourites"
    )

    # upstream film id + display snapshot
    film_id = models.BigIntegerField()
    film_title = models.CharField(max_length=255)
    film_overview = models.TextField(null=True, blank=True)
    film_poster_url = models.URLField(max_length=500, null=True, blank=True)
    film_release_date = models.DateField()
    film_type = models.CharField(max_length=50, default="Movie")

    # free-text annotations, null == absent
    theories = models.TextField(null=True, blank=True)
    notes = models.TextField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["user", "film_id"],
                name="unique_favourite_per_user_and_film",
            )
        ]
        indexes = [
            models.Index(
                fields=["user", "-created_at"],
                name="favourite_user_created_idx",
            ),
        ]
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.user} → {self.film_title} ({self.film_id})"


class FilmNote(models.Model):
    """
    A free-standing theory or note a user keeps about an upstream film.

    Unlike ``Favourite.theories``/``notes`` a user may keep any number of
    these per film, and the film does not have to be favourited.
    """

    THEORY = "theory"
    NOTE = "note"
    NOTE_TYPE_CHOICES = [
        (THEORY, "Theory"),
        (NOTE, "Note"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        User, on_delete=models.CASCADE, related_name="film_notes"
    )
    film_id = models.BigIntegerField()
    note_text = models.TextField()
    note_type = models.CharField(
        max_length=10, choices=NOTE_TYPE_CHOICES, default=THEORY
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["user", "film_id"], name="film_note_user_film_idx"),
        ]
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.user} – {self.note_type} on {self.film_id}"
