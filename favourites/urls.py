from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import FavouriteViewSet, FilmNoteViewSet

router = DefaultRouter()
router.register(r"favourites", FavouriteViewSet, basename="favourite")
router.register(r"film-notes", FilmNoteViewSet, basename="film-note")

urlpatterns = [
    path("", include(router.urls)),
]
