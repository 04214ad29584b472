"""
Data models for storage layer.

Defines database entities and data structures.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Organization:
    """Top-level grouping of projects, owned by a single user id."""
    id: str
    name: str
    owner_id: str
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None
    is_active: bool = True
    settings: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Project:
    """A tracked application; usage is attributed through its project key."""
    id: str
    organization_id: str
    name: str
    project_key: str
    created_by: str
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None
    is_active: bool = True
    settings: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UsageRecord:
    """Immutable record of one tracked LLM call.

    Append-only: once written, usage logs are never modified.
    """
    id: str
    project_id: str
    project_key: str
    timestamp: datetime
    model: str
    provider: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    input_cost: float
    output_cost: float
    total_cost: float
    currency: str = "USD"
    request_duration_ms: int = 0
    status_code: int = 200
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the API's snake_case representation."""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "timestamp": self.timestamp.isoformat(),
            "model": self.model,
            "provider": self.provider,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "input_cost": self.input_cost,
            "output_cost": self.output_cost,
            "total_cost": self.total_cost,
            "currency": self.currency,
            "request_duration_ms": self.request_duration_ms,
            "status_code": self.status_code,
            "error_message": self.error_message,
        }
