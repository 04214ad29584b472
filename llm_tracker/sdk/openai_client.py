"""
Tracked OpenAI client wrapper.

Records usage for a project after each call without modifying behavior.
"""

from typing import Any, Dict, List, Optional

from openai import OpenAI

from ..core.rates import DEFAULT_RATE_TABLE, RateTable
from ..core.tracking import track_usage
from ..storage.db import DEFAULT_DB_PATH
from ..storage.models import UsageRecord
from ..storage.repository import TrackerRepository


class TrackedOpenAI:
    """OpenAI client wrapper that records usage against a project.

    All failures are loud to ensure no silent data loss.
    """

    def __init__(
        self,
        model: str,
        project_key: str,
        db_path: Optional[str] = None,
        table: RateTable = DEFAULT_RATE_TABLE,
    ):
        """Initialize tracked OpenAI client.

        Args:
            model: OpenAI model name (required)
            project_key: Key of the project usage is attributed to (required)
            db_path: Database file path (defaults to "llm_tracker.db")
            table: Rate table used to price calls

        Raises:
            ValueError: If model or project_key is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if not project_key or not project_key.strip():
            raise ValueError("project_key is required and cannot be empty")

        self.model = model
        self.project_key = project_key
        self.db_path = db_path or DEFAULT_DB_PATH
        self.repository = TrackerRepository(self.db_path)
        self.table = table
        self.client = OpenAI()
        self.last_record: Optional[UsageRecord] = None

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any
    ) -> Any:
        """Create chat completion and record its usage.

        Args:
            messages: List of message dictionaries (required)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            **kwargs: Additional OpenAI parameters

        Returns:
            OpenAI chat completion response, unchanged

        Raises:
            ValueError: If messages is empty or the response has no usage
            OpenAI API errors: Propagated without modification
            TrackerError: If the usage cannot be priced or stored
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs
        )

        usage = response.usage
        if not usage:
            raise ValueError("OpenAI response missing usage information")

        self.last_record = track_usage(
            {
                "model": self.model,
                "provider": "openai",
                "prompt_tokens": usage.prompt_tokens,
                "completion_tokens": usage.completion_tokens,
                "api_key": self.project_key,
            },
            repository=self.repository,
            table=self.table,
        )

        return response
