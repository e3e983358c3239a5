"""Error taxonomy shared by the backend client and the request handlers.

Every failure a user action can hit is one of these. Handlers never catch them
to hide a problem; the app-level exception handler turns them into
``{"error": "..."}`` responses with the status stored on the exception.
"""
from typing import Optional

LOGIN_PATH = "/account/login"


class StorefrontError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StorefrontError):
    """Bad input caught before any request went out."""

    status_code = 400


class HttpError(StorefrontError):
    """The backend answered with a non-2xx status."""

    def __init__(self, status: int, message: Optional[str] = None):
        super().__init__(message or f"Request failed with status {status}")
        self.status = status
        self.status_code = status


class AuthError(HttpError):
    """Missing, invalid, expired or insufficient credentials.

    Callers react with a forced logout; a 401 additionally carries the login
    path so the browser can be sent there.
    """

    def __init__(self, status: int = 401, message: Optional[str] = None):
        super().__init__(status, message or ("Forbidden" if status == 403 else "Not authenticated"))

    @property
    def redirect_to(self) -> Optional[str]:
        return LOGIN_PATH if self.status == 401 else None


class NetworkError(StorefrontError):
    """The backend could not be reached at all."""

    status_code = 502

    def __init__(self, message: str = "Backend is unreachable"):
        super().__init__(message)
