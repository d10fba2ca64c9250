from rest_framework import serializers

from .models import Favourite, FilmNote
from .validators import (
    FILM_TITLE_MAX_LENGTH,
    FILM_TYPE_MAX_LENGTH,
    POSTER_URL_MAX_LENGTH,
    annotation_errors,
)


class FavouriteSerializer(serializers.ModelSerializer):
    """Read shape of a favourite, flattened for the front end."""

    title = serializers.ReadOnlyField(source="film_title")
    overview = serializers.ReadOnlyField(source="film_overview")
    poster_url = serializers.ReadOnlyField(source="film_poster_url")
    release_date = serializers.DateField(source="film_release_date", read_only=True)
    type = serializers.ReadOnlyField(source="film_type")
    added_at = serializers.DateTimeField(source="created_at", read_only=True)

    class Meta:
        model = Favourite
        fields = [
            "id",
            "film_id",
            "title",
            "overview",
            "poster_url",
            "release_date",
            "type",
            "theories",
            "notes",
            "added_at",
            "updated_at",
        ]
        read_only_fields = fields


class FilmSnapshotSerializer(serializers.Serializer):
    """Validates the body of POST /favourites/ and /favourites/toggle/."""

    film_id = serializers.IntegerField()
    film_title = serializers.CharField(max_length=FILM_TITLE_MAX_LENGTH)
    film_overview = serializers.CharField(
        required=False, allow_null=True, allow_blank=True
    )
    film_poster_url = serializers.URLField(
        required=False,
        allow_null=True,
        allow_blank=True,
        max_length=POSTER_URL_MAX_LENGTH,
    )
    film_release_date = serializers.DateField(
        input_formats=["iso-8601", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M:%SZ"]
    )
    film_type = serializers.CharField(
        required=False,
        allow_null=True,
        allow_blank=True,
        max_length=FILM_TYPE_MAX_LENGTH,
    )

    def validate(self, attrs):
        # blank optional fields are stored as absent
        attrs["film_overview"] = attrs.get("film_overview") or None
        attrs["film_poster_url"] = attrs.get("film_poster_url") or None
        attrs["film_type"] = attrs.get("film_type") or "Movie"
        return attrs


class FavouriteAnnotationSerializer(serializers.Serializer):
    """
    Partial update of theories/notes.

    Fields left out of the body are left untouched on the record.
    """

    theories = serializers.CharField(
        required=False,
        allow_null=True,
        allow_blank=True,
        trim_whitespace=False,
    )
    notes = serializers.CharField(
        required=False,
        allow_null=True,
        allow_blank=True,
        trim_whitespace=False,
    )

    def _validate_annotation(self, value):
        errors = annotation_errors(value)
        if errors:
            raise serializers.ValidationError(errors)
        if value is None:
            return None
        return value.strip() or None

    def validate_theories(self, value):
        return self._validate_annotation(value)

    def validate_notes(self, value):
        return self._validate_annotation(value)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError(
                "Provide theories and/or notes to update."
            )
        return attrs


class FilmLookupSerializer(serializers.Serializer):
    film_id = serializers.IntegerField()


def _clean_note_text(value):
    errors = annotation_errors(value)
    if errors:
        raise serializers.ValidationError(errors)
    text = value.strip()
    if not text:
        raise serializers.ValidationError("This field may not be blank.")
    return text


class FilmNoteSerializer(serializers.ModelSerializer):
    """Read shape of a film note, and the body of POST /film-notes/."""

    note_text = serializers.CharField(trim_whitespace=False)

    class Meta:
        model = FilmNote
        fields = [
            "id",
            "film_id",
            "note_text",
            "note_type",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]
        extra_kwargs = {"note_type": {"required": True}}

    def validate_note_text(self, value):
        return _clean_note_text(value)


class FilmNoteTextSerializer(serializers.Serializer):
    """Body of PUT /film-notes/<id>/. Only the text can change."""

    note_text = serializers.CharField(trim_whitespace=False)

    def validate_note_text(self, value):
        return _clean_note_text(value)
