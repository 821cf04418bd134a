from __future__ import annotations


class ConsoleError(Exception):
    """Base error for the factory console library."""


class ApiError(ConsoleError):
    """A backend call failed: transport error or a ``success: false`` response."""

    def __init__(self, message: str, status: int | None = None) -> None:
        self.status = status
        super().__init__(message)


class EntityValidationError(ConsoleError):
    """Local validation rejected a payload before any request was sent."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class NotAuthenticatedError(ConsoleError):
    """The operation needs a logged-in console session."""
