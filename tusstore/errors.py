"""Error types raised by the upload store and its lockers."""

from __future__ import annotations

from collections.abc import Iterable


class HTTPError(Exception):
    """An error that carries the HTTP status code it should be answered with."""

    default_message = "internal server error"
    default_status_code = 500

    def __init__(self, message: str | BaseException | None = None, status_code: int | None = None):
        self.message = str(message) if message is not None else self.default_message
        self.status_code = status_code if status_code is not None else self.default_status_code
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class FileLockedError(HTTPError):
    """The upload is currently locked by another request."""

    default_message = "file currently locked"
    default_status_code = 423


class NotFoundError(HTTPError):
    """The requested upload does not exist."""

    default_message = "upload not found"
    default_status_code = 404


class MultiError(Exception):
    """Several errors that happened during one operation."""

    def __init__(self, errors: Iterable[BaseException]):
        self.errors = list(errors)
        lines = "".join(f"\t{err}\n" for err in self.errors)
        super().__init__("Multiple errors occurred:\n" + lines)

    def __str__(self) -> str:
        return self.args[0]