"""Error taxonomy shared by the HTTP client, the controllers and the routes.

Tier 1 leaf module: stdlib only.

- ConfigError: required configuration missing (fatal for the caller).
- SessionExpiredError: no session or the API answered 401. Never shown as
  inline text; the caller signs out and redirects to the login view.
- ClientValidationError: local shape/regex check failed, no request made.
- ApiRequestError: non-2xx answer from the remote API.
- TransientApiError: 5xx answer, eligible for retry where a policy applies.
"""

from typing import Any

LOGIN_PATH = "/auth"


class DailyMirError(Exception):
    """Base class for every error raised by dailymir."""


class ConfigError(DailyMirError):
    """Required configuration is missing."""


class SessionExpiredError(DailyMirError):
    """The session is missing, invalid or was rejected by the API."""

    def __init__(self, message: str = "Sesión expirada. Inicia sesión de nuevo.") -> None:
        super().__init__(message)
        self.message = message
        self.redirect_to = LOGIN_PATH


class ClientValidationError(DailyMirError):
    """Client-side validation failed. No network call was made."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ApiRequestError(DailyMirError):
    """The remote API answered with a non-2xx status."""

    def __init__(
        self,
        status_code: int,
        message: str,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.payload = payload

    @property
    def already_completed(self) -> bool:
        """True when the server flags today's quiz as already completed."""
        return isinstance(self.payload, dict) and bool(self.payload.get("alreadyCompleted"))


class TransientApiError(ApiRequestError):
    """A 5xx answer from the remote API."""
