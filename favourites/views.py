from rest_framework import viewsets, mixins, permissions, status
from rest_framework.decorators import action
from rest_framework.response import Response

from . import services
from .models import Favourite, FilmNote
from .serializers import (
    FavouriteSerializer,
    FilmSnapshotSerializer,
    FavouriteAnnotationSerializer,
    FilmLookupSerializer,
    FilmNoteSerializer,
    FilmNoteTextSerializer,
)


class IsOwner(permissions.BasePermission):
    """
    Object-level: only the user who saved a favourite may change it.
    """

    message = "You do not have permission to change this favourite."

    def has_object_permission(self, request, view, obj):
        return obj.user_id == request.user.id


class FavouriteViewSet(
    mixins.ListModelMixin,
    mixins.CreateModelMixin,
    mixins.UpdateModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    """
    - GET    /api/favourites/          -> list my favourites
    - POST   /api/favourites/          -> favourite a film (201, or 200 if already saved)
    - PUT    /api/favourites/<id>/     -> update theories and/or notes
    - DELETE /api/favourites/<id>/     -> remove a favourite
    - POST   /api/favourites/toggle/   -> add if absent, remove if present
    - POST   /api/favourites/check/    -> is this film favourited?
    """

    serializer_class = FavouriteSerializer
    permission_classes = [permissions.IsAuthenticated, IsOwner]

    def get_queryset(self):
        user = self.request.user
        if not user.is_authenticated:
            return Favourite.objects.none()

        # Object lookups span every user so that touching someone else's
        # favourite is a 403 rather than a 404.
        if self.action in ("update", "partial_update", "destroy"):
            return Favourite.objects.all()
        return services.list_favourites(user)

    def list(self, request, *args, **kwargs):
        serializer = self.get_serializer(self.get_queryset(), many=True)
        return Response({"favourites": serializer.data})

    def create(self, request, *args, **kwargs):
        snapshot = FilmSnapshotSerializer(data=request.data)
        snapshot.is_valid(raise_exception=True)

        favourite, created = services.create_favourite(
            request.user, snapshot.validated_data
        )
        if created:
            message = "Favourite added successfully"
            status_code = status.HTTP_201_CREATED
        else:
            message = "Film is already in favourites"
            status_code = status.HTTP_200_OK
        return Response(
            {
                "message": message,
                "favourite": self.get_serializer(favourite).data,
            },
            status=status_code,
        )

    def update(self, request, *args, **kwargs):
        favourite = self.get_object()
        changes = FavouriteAnnotationSerializer(data=request.data)
        changes.is_valid(raise_exception=True)

        favourite = services.update_favourite(
            request.user, favourite, changes.validated_data
        )
        return Response(
            {
                "message": "Favourite updated successfully",
                "favourite": self.get_serializer(favourite).data,
            }
        )

    def destroy(self, request, *args, **kwargs):
        favourite = self.get_object()
        services.delete_favourite(request.user, favourite)
        return Response({"message": "Favourite removed successfully"})

    @action(detail=False, methods=["post"])
    def toggle(self, request):
        snapshot = FilmSnapshotSerializer(data=request.data)
        snapshot.is_valid(raise_exception=True)

        is_favourite, favourite = services.toggle_favourite(
            request.user, snapshot.validated_data
        )
        if not is_favourite:
            return Response({"message": "Favourite removed", "is_favourite": False})
        return Response(
            {
                "message": "Favourite added",
                "is_favourite": True,
                "favourite": self.get_serializer(favourite).data,
            }
        )

    @action(detail=False, methods=["post"])
    def check(self, request):
        lookup = FilmLookupSerializer(data=request.data)
        lookup.is_valid(raise_exception=True)
        return Response(
            {
                "is_favourite": services.is_favourited(
                    request.user, lookup.validated_data["film_id"]
                )
            }
        )


class IsNoteOwner(IsOwner):
    message = "You do not have permission to change this note."


class FilmNoteViewSet(
    mixins.ListModelMixin,
    mixins.CreateModelMixin,
    mixins.UpdateModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    """
    - GET    /api/film-notes/?film_id=<id>  -> my notes on one film
    - POST   /api/film-notes/               -> add a theory or note
    - PUT    /api/film-notes/<id>/          -> change the text
    - DELETE /api/film-notes/<id>/          -> delete a note
    """

    serializer_class = FilmNoteSerializer
    permission_classes = [permissions.IsAuthenticated, IsNoteOwner]

    def get_queryset(self):
        user = self.request.user
        if not user.is_authenticated:
            return FilmNote.objects.none()
        if self.action in ("update", "partial_update", "destroy"):
            return FilmNote.objects.all()
        return FilmNote.objects.filter(user=user)

    def list(self, request, *args, **kwargs):
        lookup = FilmLookupSerializer(data=request.query_params)
        lookup.is_valid(raise_exception=True)

        notes = self.get_queryset().filter(film_id=lookup.validated_data["film_id"])
        serializer = self.get_serializer(notes, many=True)
        return Response({"notes": serializer.data})

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        self.perform_create(serializer)
        return Response(
            {"message": "Note created successfully", "note": serializer.data},
            status=status.HTTP_201_CREATED,
        )

    def perform_create(self, serializer):
        serializer.save(user=self.request.user)

    def update(self, request, *args, **kwargs):
        note = self.get_object()
        changes = FilmNoteTextSerializer(data=request.data)
        changes.is_valid(raise_exception=True)

        note.note_text = changes.validated_data["note_text"]
        note.save(update_fields=["note_text", "updated_at"])
        return Response(
            {
                "message": "Note updated successfully",
                "note": self.get_serializer(note).data,
            }
        )

    def destroy(self, request, *args, **kwargs):
        note = self.get_object()
        note.delete()
        return Response({"message": "Note deleted successfully"})
