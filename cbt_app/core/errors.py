"""Error taxonomy raised by the CBT core services."""

from __future__ import annotations


class CbtError(Exception):
    """Base class for every domain error raised by the core."""


class ValidationError(CbtError):
    """Raised when question, test or answer input is malformed."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors: list[str] = list(errors) if errors else [message]


class EligibilityError(CbtError):
    """Raised when a student may not start a test session."""


class InvalidStateError(CbtError):
    """Raised when an operation does not fit the entity's current state."""


class NotFoundError(CbtError):
    """Raised when a referenced entity does not exist."""

    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} '{entity_id}' not found.")
        self.kind = kind
        self.entity_id = entity_id


class SessionExpiredError(CbtError):
    """Raised when a session is used after its deadline."""

    def __init__(self, session_id: str) -> None:
        super().__init__("Time is up for this test session.")
        self.session_id = session_id


class EssayScoringError(CbtError):
    """Raised by essay scorers that cannot produce a score."""
