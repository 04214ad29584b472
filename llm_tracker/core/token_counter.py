"""
Token counting and usage tracking.

Validates the token counts reported by client applications.
"""

from dataclasses import dataclass
from typing import Any

from .errors import InvalidFieldError

# Largest value an SQLite INTEGER column can hold
MAX_TOKEN_COUNT = 2**63 - 1


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported for a single request."""
    prompt_tokens: int
    completion_tokens: int

    def __post_init__(self):
        """Validate counts are non-negative integers."""
        _check_count("prompt_tokens", self.prompt_tokens)
        _check_count("completion_tokens", self.completion_tokens)
        if self.total_tokens > MAX_TOKEN_COUNT:
            raise InvalidFieldError("total_tokens", f"must be <= {MAX_TOKEN_COUNT}")

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


def _check_count(name: str, value: Any) -> None:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidFieldError(name, "must be an integer")
    if value < 0:
        raise InvalidFieldError(name, "must be >= 0")
    if value > MAX_TOKEN_COUNT:
        raise InvalidFieldError(name, f"must be <= {MAX_TOKEN_COUNT}")
