"""
Error taxonomy for usage tracking.

Core operations raise these and never catch them; the API and CLI
translate each kind into a response or exit code.
"""

from typing import Iterable, List


class TrackerError(Exception):
    """Base class for all LLM Tracker errors."""


class MissingFieldError(TrackerError, ValueError):
    """One or more required request fields are absent."""

    def __init__(self, fields: Iterable[str]):
        self.fields: List[str] = list(fields)
        super().__init__(f"Missing required fields: {', '.join(self.fields)}")


class InvalidFieldError(TrackerError, ValueError):
    """A request field is present but has an unusable value."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid value for '{field}': {reason}")


class UnknownModelError(TrackerError, ValueError):
    """Model identifier is not offered by any provider."""

    def __init__(self, model: str):
        self.model = model
        super().__init__(f"Unknown model: {model}")


class InvalidModelForProviderError(TrackerError, ValueError):
    """Provider does not offer the exact model identifier."""

    def __init__(self, model: str, provider: str):
        self.model = model
        self.provider = provider
        super().__init__(f"Invalid model {model} for provider {provider}")


class ProjectNotFoundError(TrackerError, LookupError):
    """No project matches the given key or id."""


class OrganizationNotFoundError(TrackerError, LookupError):
    """No organization matches the given id."""


class PersistenceError(TrackerError):
    """The storage layer failed to write a record."""
