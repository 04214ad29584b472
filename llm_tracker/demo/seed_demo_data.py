# llm_tracker/demo/seed_demo_data.py

import random
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from llm_tracker.core.rates import DEFAULT_RATE_TABLE, RateTable, compute_cost
from llm_tracker.storage.models import Project, UsageRecord
from llm_tracker.storage.repository import TrackerRepository

DEMO_OWNER = "demo-user"

ORGANIZATIONS = [
    ("Acme AI", "Customer-facing assistants", [
        ("Support Chatbot", "gpt-4o"),
        ("Content Writer", "claude-3.7-sonnet"),
    ]),
    ("DataInsights Inc", "Analytics and reporting tools", [
        ("Report Summarizer", "gpt-4o-mini"),
        ("Data Query Assistant", "deepseek-v3"),
    ]),
]

# Mostly successful requests
STATUS_CODES = [200, 200, 200, 200, 200, 429, 500]


def seed_demo_data(
    repository: TrackerRepository,
    records_per_project: int = 100,
    days: int = 30,
    seed: Optional[int] = 42,
    table: RateTable = DEFAULT_RATE_TABLE,
) -> List[Project]:
    """Create demo organizations and projects with a month of usage.

    Failed calls carry no completion tokens and an error message.
    Returns the created projects.
    """
    rng = random.Random(seed)
    now = datetime.now(timezone.utc)
    models = [(provider, model) for provider, model, _ in table.entries()]

    projects = []
    for org_name, org_description, project_specs in ORGANIZATIONS:
        org = repository.create_organization(
            name=org_name, owner_id=DEMO_OWNER, description=org_description
        )
        for project_name, default_model in project_specs:
            project = repository.create_project(
                organization_id=org.id,
                name=project_name,
                created_by=DEMO_OWNER,
                settings={"model": default_model},
            )
            projects.append(project)

            records = []
            for _ in range(records_per_project):
                provider, model = rng.choice(models)
                status_code = rng.choice(STATUS_CODES)
                prompt_tokens = rng.randint(100, 2100)
                completion_tokens = rng.randint(50, 1550) if status_code == 200 else 0
                cost = compute_cost(prompt_tokens, completion_tokens, table.resolve_rates(model, provider))
                records.append(UsageRecord(
                    id=uuid.uuid4().hex,
                    project_id=project.id,
                    project_key=project.project_key,
                    timestamp=now - timedelta(days=rng.randint(0, days - 1), minutes=rng.randint(0, 1439)),
                    model=model,
                    provider=provider.value,
                    prompt_tokens=prompt_tokens,
                    completion_tokens=completion_tokens,
                    total_tokens=prompt_tokens + completion_tokens,
                    input_cost=cost.input_cost,
                    output_cost=cost.output_cost,
                    total_cost=cost.total_cost,
                    request_duration_ms=rng.randint(500, 5500),
                    status_code=status_code,
                    error_message=None if status_code == 200 else f"HTTP {status_code} Error",
                ))
            repository.insert_usage_records(records)

    return projects
