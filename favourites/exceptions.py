"""
Error taxonomy shared by the favourites stores, the sync layer and the API.

Every error carries a ``user_message`` that front ends can show as-is, and
an HTTP ``status_code`` used when the error crosses the API boundary.
"""


class FavouritesError(Exception):
    status_code = 500
    code = "error"
    default_message = "Something went wrong. Please try again."

    def __init__(self, message=None):
        self.user_message = message or self.default_message
        super().__init__(self.user_message)


class ValidationError(FavouritesError):
    """Bad input shape or length. Raised before any store call."""

    status_code = 400
    code = "invalid"
    default_message = "Please check the highlighted fields."

    def __init__(self, errors, message=None):
        if isinstance(errors, str):
            errors = {"non_field_errors": [errors]}
        self.errors = errors
        if message is None:
            message = "; ".join(
                f"{field}: {', '.join(rules)}"
                if field != "non_field_errors"
                else ", ".join(rules)
                for field, rules in errors.items()
            )
        super().__init__(message)


class AuthenticationRequired(FavouritesError):
    status_code = 401
    code = "not_authenticated"
    default_message = "You must be logged in to manage favourites."


class AuthorizationError(FavouritesError):
    status_code = 403
    code = "permission_denied"
    default_message = "You do not have permission to change this favourite."


class NotFound(FavouritesError):
    status_code = 404
    code = "not_found"
    default_message = "That favourite no longer exists."


class SessionExpired(FavouritesError):
    status_code = 419
    code = "session_expired"
    default_message = "Your session has expired. Please sign in again."


class StoreUnavailable(FavouritesError):
    status_code = 503
    code = "store_unavailable"
    default_message = "Favourites are unavailable right now. Please try again."


class UpstreamUnavailable(FavouritesError):
    status_code = 503
    code = "upstream_unavailable"
    default_message = "Upcoming film data is unavailable right now."
