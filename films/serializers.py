from rest_framework import serializers

from favourites.validators import parse_release_date


class FeedFilmSerializer(serializers.Serializer):
    """
    Minimal shape the upstream feed must have before we trust it.

    Only ``id``, ``title`` and a parseable ``release_date`` are required,
    everything else is passed through untouched.
    """

    id = serializers.IntegerField()
    title = serializers.CharField()
    release_date = serializers.CharField()
    overview = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    poster_url = serializers.CharField(
        required=False, allow_blank=True, allow_null=True
    )
    type = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    days_until = serializers.IntegerField(required=False, allow_null=True)
    following_production = serializers.DictField(required=False, allow_null=True)

    def validate_release_date(self, value):
        if parse_release_date(value) is None:
            raise serializers.ValidationError("release_date is not a valid date.")
        return value
