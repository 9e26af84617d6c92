"""
Domain errors raised by the service layer.

Each error carries the HTTP status the API answers with; the application
registers a single handler for ``LibraryError`` that turns them into
``{"detail": message}`` responses.
"""


class LibraryError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(LibraryError):
    status_code = 400


class NotFound(LibraryError):
    status_code = 404


class AuthenticationFailed(LibraryError):
    status_code = 401
