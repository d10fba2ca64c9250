from django.urls import path

from .views import UpcomingFilmsView, ClearFeedCacheView

urlpatterns = [
    path("films/upcoming/", UpcomingFilmsView.as_view(), name="film-upcoming"),
    path(
        "films/upcoming/clear-cache/",
        ClearFeedCacheView.as_view(),
        name="film-upcoming-clear-cache",
    ),
]
