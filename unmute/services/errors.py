"""Service-level errors raised by the call orchestration layer.

The API layer maps each class onto an HTTP status code; nothing here knows
about HTTP.
"""
from typing import Optional


class UnmuteError(Exception):
    """Base class for call orchestration errors."""

    def __init__(self, message: str, error: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error = error


class ConfigurationError(UnmuteError):
    """A required adapter credential is missing."""


class InvalidRequestError(UnmuteError):
    """A required field is missing or malformed."""


class CallNotFoundError(UnmuteError):
    """The call SID is not present in the session store."""


class CallNotInProgressError(UnmuteError):
    """The live telephony status of the call is not in-progress."""

    def __init__(self, message: str, status: str):
        super().__init__(message)
        self.status = status


class UpstreamError(UnmuteError):
    """A vendor API (Twilio, OpenAI) call failed."""
