import logging

from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from favourites.exceptions import FavouritesError

logger = logging.getLogger(__name__)

# Status used when the session's CSRF token is rejected.
HTTP_419_SESSION_EXPIRED = 419


def api_exception_handler(exc, context):
    """
    DRF exception handler.

    - FavouritesError subclasses -> their own status with {detail, code}
    - NotAuthenticated -> 401 (SessionAuthentication would otherwise give 403)
    - CSRF rejection -> 419 so clients can show "session expired"
    """
    if isinstance(exc, FavouritesError):
        body = {"detail": exc.user_message, "code": exc.code}
        errors = getattr(exc, "errors", None)
        if errors:
            body["errors"] = errors
        return Response(body, status=exc.status_code)

    if isinstance(exc, exceptions.NotAuthenticated):
        return Response(
            {"detail": str(exc.detail), "code": "not_authenticated"},
            status=status.HTTP_401_UNAUTHORIZED,
        )

    if isinstance(exc, exceptions.PermissionDenied) and str(
        exc.detail
    ).startswith("CSRF Failed"):
        request = context.get("request")
        logger.info(
            "Rejected CSRF token for %s %s",
            getattr(request, "method", "?"),
            getattr(request, "path", "?"),
        )
        return Response(
            {
                "detail": "Your session has expired. Please sign in again.",
                "code": "session_expired",
            },
            status=HTTP_419_SESSION_EXPIRED,
        )

    return exception_handler(exc, context)
