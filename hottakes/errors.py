"""Error taxonomy shared by the pipeline, the broker and the HTTP layer."""

from __future__ import annotations


class HotTakesError(Exception):
    """Base error; `message` is safe to show to the caller."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ValidationError(HotTakesError):
    """Bad input: empty or oversized text, missing identifiers."""

    status_code = 400


class NotFoundError(ValidationError):
    """A referenced post or connection does not exist."""

    status_code = 404


class AuthorizationError(HotTakesError):
    """The caller is unauthenticated or does not own the referenced record."""

    status_code = 403


class UpstreamError(HotTakesError):
    """The embedding oracle failed or returned something unusable."""

    status_code = 502


class StorageError(HotTakesError):
    """A read or write against the backing store failed."""

    status_code = 500
