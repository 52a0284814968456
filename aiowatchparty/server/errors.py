"""Errors raised by the room coordination core."""

from aiowatchparty.models.types import AuthFailureReason

_AUTH_MESSAGES = {
    AuthFailureReason.INCORRECT_PASSWORD: "incorrect room password",
    AuthFailureReason.NOT_HOST: "only the host can do that",
    AuthFailureReason.NOT_ALLOWED: "not allowed to set video source",
}


class WatchPartyError(Exception):
    """Base class for errors of the watch party server."""


class AuthError(WatchPartyError):
    """
    The acting connection is not permitted to perform the action.

    Reported to the acting connection only, the room state is left untouched.
    """

    def __init__(self, reason: AuthFailureReason, message: str | None = None) -> None:
        """Initialize the error with the reason reported to the client."""
        self.reason = reason
        super().__init__(message or _AUTH_MESSAGES[reason])


class ValidationError(WatchPartyError):
    """A message was well formed but is missing data required to act on it."""
