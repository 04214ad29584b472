"""
Usage tracking service.

Turns a client-reported usage payload into a priced, persisted
usage record.
"""

import logging
import sqlite3
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from ..storage.models import UsageRecord
from ..storage.repository import TrackerRepository
from .errors import InvalidFieldError, MissingFieldError, PersistenceError, ProjectNotFoundError
from .rates import DEFAULT_RATE_TABLE, RateTable, as_provider, compute_cost
from .token_counter import TokenUsage

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("model", "prompt_tokens", "completion_tokens", "api_key")
DEFAULT_CURRENCY = "USD"


@dataclass(frozen=True)
class TrackRequest:
    """Validated tracking payload."""
    model: str
    usage: TokenUsage
    api_key: str
    provider: Optional[str] = None
    currency: str = DEFAULT_CURRENCY


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _optional_str(payload: Mapping[str, Any], name: str) -> Optional[str]:
    value = payload.get(name)
    if _is_missing(value):
        return None
    if not isinstance(value, str):
        raise InvalidFieldError(name, "must be a string")
    return value


def parse_track_request(
    payload: Mapping[str, Any],
    default_currency: str = DEFAULT_CURRENCY,
) -> TrackRequest:
    """Validate a raw tracking payload.

    Args:
        payload: Decoded request body
        default_currency: Currency used when the payload has none

    Returns:
        Validated TrackRequest

    Raises:
        MissingFieldError: If any required field is absent or empty
        InvalidFieldError: If a field has the wrong type or a negative count
    """
    missing = [name for name in REQUIRED_FIELDS if _is_missing(payload.get(name))]
    if missing:
        raise MissingFieldError(missing)

    model = payload["model"]
    if not isinstance(model, str):
        raise InvalidFieldError("model", "must be a string")
    api_key = payload["api_key"]
    if not isinstance(api_key, str):
        raise InvalidFieldError("api_key", "must be a string")

    usage = TokenUsage(
        prompt_tokens=payload["prompt_tokens"],
        completion_tokens=payload["completion_tokens"],
    )

    return TrackRequest(
        model=model,
        usage=usage,
        api_key=api_key,
        provider=_optional_str(payload, "provider"),
        currency=_optional_str(payload, "currency") or default_currency,
    )


def track_usage(
    payload: Mapping[str, Any],
    repository: TrackerRepository,
    table: RateTable = DEFAULT_RATE_TABLE,
    default_currency: str = DEFAULT_CURRENCY,
) -> UsageRecord:
    """Price a usage report and append it to the project's usage log.

    Args:
        payload: Decoded request body
        repository: Storage used for project lookup and persistence
        table: Rate table used for provider and rate resolution
        default_currency: Currency used when the payload has none

    Returns:
        The persisted UsageRecord

    Raises:
        MissingFieldError, InvalidFieldError: If the payload is malformed
        ProjectNotFoundError: If no project has the given key
        UnknownModelError, InvalidModelForProviderError: If rates cannot be resolved
        PersistenceError: If the record could not be written
    """
    start = time.monotonic()
    request = parse_track_request(payload, default_currency)

    try:
        project = repository.get_project_by_key(request.api_key)
    except sqlite3.Error as e:
        raise PersistenceError(f"Failed to look up project: {e}") from e
    if project is None:
        raise ProjectNotFoundError("Invalid project key")

    if request.provider is None:
        provider = table.resolve_provider(request.model)
    else:
        provider = as_provider(request.model, request.provider)
    rates = table.resolve_rates(request.model, provider)
    cost = compute_cost(request.usage.prompt_tokens, request.usage.completion_tokens, rates)

    record = UsageRecord(
        id=uuid.uuid4().hex,
        project_id=project.id,
        project_key=project.project_key,
        timestamp=datetime.now(timezone.utc),
        model=request.model,
        provider=provider.value,
        prompt_tokens=request.usage.prompt_tokens,
        completion_tokens=request.usage.completion_tokens,
        total_tokens=request.usage.total_tokens,
        input_cost=cost.input_cost,
        output_cost=cost.output_cost,
        total_cost=cost.total_cost,
        currency=request.currency,
        request_duration_ms=int((time.monotonic() - start) * 1000),
        status_code=200,
        error_message=None,
    )

    try:
        repository.insert_usage_record(record)
    except sqlite3.Error as e:
        raise PersistenceError(f"Failed to store usage record: {e}") from e

    logger.info(
        "Tracked %s/%s for project %s: %d tokens, %.6f %s",
        record.provider, record.model, project.id,
        record.total_tokens, record.total_cost, record.currency,
    )
    return record
