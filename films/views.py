from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .feed import get_feed_client


class UpcomingFilmsView(APIView):
    """
    GET /api/films/upcoming/

    Public. Returns the cached upstream payload (next film + following
    production, each with ``video_url``), or 503 when the feed is down and
    nothing is cached so the front end can show its fallback.
    """

    permission_classes = [AllowAny]

    def get(self, request):
        result = get_feed_client().get_upcoming()
        if not result.available:
            return Response(
                {
                    "error": "Failed to fetch films data",
                    "message": "Upcoming film data is unavailable right now.",
                },
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )
        return Response(result.payload)


class ClearFeedCacheView(APIView):
    """
    POST /api/films/upcoming/clear-cache/

    Maintenance action: drop the cached payload so the next GET refetches.
    Auth required.
    """

    permission_classes = [IsAuthenticated]

    def post(self, request):
        get_feed_client().clear_cache()
        return Response({"message": "Cache cleared successfully"})
