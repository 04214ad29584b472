"""
HTTP API for usage tracking.

Exposes the tracking endpoint used by client applications plus the
usage, organization and project endpoints behind the dashboard.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..config.loader import TrackerConfig
from ..core.analytics import MAX_WINDOW_DAYS, UsageSummary, summarize_usage
from ..core.errors import (
    InvalidFieldError,
    InvalidModelForProviderError,
    MissingFieldError,
    OrganizationNotFoundError,
    PersistenceError,
    ProjectNotFoundError,
    UnknownModelError,
)
from ..core.tracking import track_usage
from ..storage.models import Organization, Project
from ..storage.repository import TrackerRepository, initialize_schema

logger = logging.getLogger(__name__)


class OrganizationCreate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    owner_id: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None


class OrganizationUpdate(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


class ProjectBody(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = Field(None, description="Defaults to true on create")


def _error(status_code: int, error: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, **extra})


def _organization_dict(org: Organization) -> Dict[str, Any]:
    return {
        "id": org.id,
        "name": org.name,
        "description": org.description,
        "owner_id": org.owner_id,
        "is_active": org.is_active,
        "settings": org.settings,
        "created_at": org.created_at.isoformat(),
        "updated_at": org.updated_at.isoformat(),
    }


def _project_dict(project: Project) -> Dict[str, Any]:
    return {
        "id": project.id,
        "organization_id": project.organization_id,
        "name": project.name,
        "description": project.description,
        "project_key": project.project_key,
        "created_by": project.created_by,
        "is_active": project.is_active,
        "settings": project.settings,
        "created_at": project.created_at.isoformat(),
        "updated_at": project.updated_at.isoformat(),
    }


def _summary_dict(summary: UsageSummary) -> Dict[str, Any]:
    def breakdown(rows):
        return [
            {
                "name": row.name,
                "requests": row.requests,
                "share": row.share,
                "avg_tokens": row.avg_tokens,
                "avg_latency_ms": row.avg_latency_ms,
                "total_cost": row.total_cost,
                "success_rate": row.success_rate,
            }
            for row in rows
        ]

    return {
        "days": summary.days,
        "window_start": summary.window_start.isoformat(),
        "window_end": summary.window_end.isoformat(),
        "total_requests": summary.total_requests,
        "successful_requests": summary.successful_requests,
        "total_tokens": summary.total_tokens,
        "total_cost": summary.total_cost,
        "avg_latency_ms": summary.avg_latency_ms,
        "error_rate": summary.error_rate,
        "avg_cost_per_request": summary.avg_cost_per_request,
        "change": {
            "requests": summary.requests_change,
            "tokens": summary.tokens_change,
            "cost": summary.cost_change,
            "latency": summary.latency_change,
        },
        "daily": [
            {
                "date": point.day.isoformat(),
                "requests": point.requests,
                "tokens": point.tokens,
                "cost": point.cost,
                "avg_latency_ms": point.avg_latency_ms,
            }
            for point in summary.daily
        ],
        "by_model": breakdown(summary.by_model),
        "by_provider": breakdown(summary.by_provider),
    }


def create_app(config: Optional[TrackerConfig] = None) -> FastAPI:
    """Build the API application.

    The schema is created on startup if missing; the rate table is
    loaded once and shared by all requests.
    """
    config = config or TrackerConfig()
    initialize_schema(config.database_path)

    app = FastAPI(title="LLM Tracker", version="0.1.0")
    app.state.config = config
    app.state.repository = TrackerRepository(config.database_path)
    app.state.rate_table = config.rate_table()

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid request", details=jsonable_encoder(exc.errors()))

    @app.exception_handler(MissingFieldError)
    async def missing_field_handler(request: Request, exc: MissingFieldError):
        return _error(status.HTTP_400_BAD_REQUEST, "Missing required fields", missing=exc.fields)

    @app.exception_handler(InvalidFieldError)
    async def invalid_field_handler(request: Request, exc: InvalidFieldError):
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid field", details=str(exc))

    @app.exception_handler(UnknownModelError)
    async def unknown_model_handler(request: Request, exc: UnknownModelError):
        return _error(status.HTTP_400_BAD_REQUEST, "Unknown model", details=str(exc))

    @app.exception_handler(InvalidModelForProviderError)
    async def invalid_model_handler(request: Request, exc: InvalidModelForProviderError):
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid model for provider", details=str(exc))

    @app.exception_handler(ProjectNotFoundError)
    async def project_not_found_handler(request: Request, exc: ProjectNotFoundError):
        return _error(status.HTTP_404_NOT_FOUND, "Project not found", details=str(exc))

    @app.exception_handler(OrganizationNotFoundError)
    async def organization_not_found_handler(request: Request, exc: OrganizationNotFoundError):
        return _error(status.HTTP_404_NOT_FOUND, "Organization not found", details=str(exc))

    @app.exception_handler(PersistenceError)
    async def persistence_handler(request: Request, exc: PersistenceError):
        logger.exception("Persistence failure on %s", request.url.path, exc_info=exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", message=str(exc))

    @app.get("/api")
    def hello() -> Dict[str, str]:
        return {"message": "Hello LLM Tracker"}

    @app.post("/api/v1/track")
    def track(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
        """Record one LLM call reported by a client application."""
        try:
            record = track_usage(
                payload,
                repository=app.state.repository,
                table=app.state.rate_table,
                default_currency=app.state.config.default_currency,
            )
        except (MissingFieldError, InvalidFieldError, UnknownModelError,
                InvalidModelForProviderError, ProjectNotFoundError) as e:
            logger.warning("Rejected tracking request: %s", e)
            raise

        return {
            "id": record.id,
            "provider": record.provider,
            "model": record.model,
            "prompt_tokens": record.prompt_tokens,
            "completion_tokens": record.completion_tokens,
            "total_tokens": record.total_tokens,
            "input_cost": record.input_cost,
            "output_cost": record.output_cost,
            "total_cost": record.total_cost,
            "currency": record.currency,
            "timestamp": record.timestamp.isoformat(),
            "status": "success",
        }

    @app.get("/api/v1/usage")
    def list_usage(project_id: Optional[str] = Query(None, alias="projectId")):
        if not project_id:
            return _error(status.HTTP_400_BAD_REQUEST, "Missing required parameters")
        records = app.state.repository.fetch_usage_records(project_id)
        return {"data": [record.to_dict() for record in records]}

    @app.get("/api/v1/usage/summary")
    def usage_summary(
        project_id: Optional[str] = Query(None, alias="projectId"),
        days: int = Query(30, gt=0, le=MAX_WINDOW_DAYS),
    ):
        if not project_id:
            return _error(status.HTTP_400_BAD_REQUEST, "Missing required parameters")
        # Previous period is needed for the change figures
        records = app.state.repository.fetch_usage_records(project_id, days=2 * days)
        return {"data": _summary_dict(summarize_usage(records, days=days))}

    @app.get("/api/v1/organizations")
    def list_organizations(user_id: Optional[str] = Query(None, alias="userId")):
        if not user_id:
            return _error(status.HTTP_400_BAD_REQUEST, "Missing user ID parameter")
        orgs = app.state.repository.list_organizations(user_id)
        return {"data": [_organization_dict(org) for org in orgs]}

    @app.post("/api/v1/organizations")
    def create_organization(body: OrganizationCreate):
        if not body.name or not body.owner_id:
            return _error(status.HTTP_400_BAD_REQUEST, "Missing required fields")
        org = app.state.repository.create_organization(
            name=body.name,
            owner_id=body.owner_id,
            description=body.description,
            settings=body.settings,
        )
        return {"data": _organization_dict(org)}

    @app.put("/api/v1/organizations")
    def update_organization(body: OrganizationUpdate):
        if not body.id:
            return _error(status.HTTP_400_BAD_REQUEST, "Missing organization ID")
        org = app.state.repository.update_organization(
            body.id,
            name=body.name,
            description=body.description,
            settings=body.settings,
            is_active=body.is_active,
        )
        return {"data": _organization_dict(org)}

    @app.delete("/api/v1/organizations")
    def delete_organization(org_id: Optional[str] = Query(None, alias="orgId")):
        if not org_id:
            return _error(status.HTTP_400_BAD_REQUEST, "Missing organization ID")
        app.state.repository.delete_organization(org_id)
        return {"message": "Organization and associated projects deleted successfully"}

    @app.get("/api/v1/projects")
    def list_projects(
        org_id: Optional[str] = Query(None, alias="orgId"),
        user_id: Optional[str] = Query(None, alias="userId"),
    ):
        if not org_id or not user_id:
            return _error(status.HTTP_400_BAD_REQUEST, "Missing required parameters")
        projects = app.state.repository.list_projects(org_id, created_by=user_id)
        return {"data": [_project_dict(p) for p in projects]}

    @app.post("/api/v1/projects")
    def create_project(
        body: ProjectBody,
        org_id: Optional[str] = Query(None, alias="orgId"),
        user_id: Optional[str] = Query(None, alias="userId"),
    ):
        if not body.name or not org_id or not user_id:
            return _error(status.HTTP_400_BAD_REQUEST, "Missing required fields")
        project = app.state.repository.create_project(
            organization_id=org_id,
            name=body.name,
            created_by=user_id,
            description=body.description,
            settings=body.settings,
            is_active=True if body.is_active is None else body.is_active,
        )
        return {"data": _project_dict(project)}

    @app.put("/api/v1/projects")
    def update_project(
        body: ProjectBody,
        project_id: Optional[str] = Query(None, alias="projectId"),
    ):
        if not project_id:
            return _error(status.HTTP_400_BAD_REQUEST, "Missing project ID")
        project = app.state.repository.update_project(
            project_id,
            name=body.name,
            description=body.description,
            settings=body.settings,
            is_active=body.is_active,
        )
        return {"data": _project_dict(project)}

    @app.delete("/api/v1/projects")
    def delete_project(project_id: Optional[str] = Query(None, alias="projectId")):
        if not project_id:
            return _error(status.HTTP_400_BAD_REQUEST, "Missing project ID")
        app.state.repository.delete_project(project_id)
        return {"message": "Project deleted successfully"}

    return app
