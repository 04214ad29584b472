"""
Repository pattern for data access.

Handles database operations for organizations, projects and the
append-only usage log.
"""

import json
import secrets
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from ..core.errors import OrganizationNotFoundError, ProjectNotFoundError
from .db import DEFAULT_DB_PATH, get_connection
from .models import Organization, Project, UsageRecord


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def generate_project_key() -> str:
    """Create a new random project key."""
    return f"pk_{secrets.token_hex(16)}"


def _row_to_organization(row: sqlite3.Row) -> Organization:
    return Organization(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        owner_id=row["owner_id"],
        is_active=bool(row["is_active"]),
        settings=json.loads(row["settings"] or "{}"),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _row_to_project(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        organization_id=row["organization_id"],
        name=row["name"],
        description=row["description"],
        project_key=row["project_key"],
        created_by=row["created_by"],
        is_active=bool(row["is_active"]),
        settings=json.loads(row["settings"] or "{}"),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _row_to_usage_record(row: sqlite3.Row) -> UsageRecord:
    return UsageRecord(
        id=row["id"],
        project_id=row["project_id"],
        project_key=row["project_key"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
        model=row["model"],
        provider=row["provider"],
        prompt_tokens=row["prompt_tokens"],
        completion_tokens=row["completion_tokens"],
        total_tokens=row["total_tokens"],
        input_cost=row["input_cost"],
        output_cost=row["output_cost"],
        total_cost=row["total_cost"],
        currency=row["currency"],
        request_duration_ms=row["request_duration_ms"],
        status_code=row["status_code"],
        error_message=row["error_message"],
    )


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the organization, project and usage_log tables if missing.

    usage_log is an append-only ledger: no UPDATE is ever issued against
    it, rows only disappear when their project is deleted.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS organization (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                owner_id TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                settings TEXT NOT NULL DEFAULT '{}',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS project (
                id TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL
                    REFERENCES organization(id) ON DELETE CASCADE,
                name TEXT NOT NULL,
                description TEXT,
                project_key TEXT NOT NULL UNIQUE,
                created_by TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                settings TEXT NOT NULL DEFAULT '{}',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS usage_log (
                id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL
                    REFERENCES project(id) ON DELETE CASCADE,
                project_key TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                model TEXT NOT NULL,
                provider TEXT NOT NULL,
                prompt_tokens INTEGER NOT NULL,
                completion_tokens INTEGER NOT NULL,
                total_tokens INTEGER NOT NULL,
                input_cost REAL NOT NULL,
                output_cost REAL NOT NULL,
                total_cost REAL NOT NULL,
                currency TEXT NOT NULL DEFAULT 'USD',
                request_duration_ms INTEGER NOT NULL DEFAULT 0,
                status_code INTEGER NOT NULL DEFAULT 200,
                error_message TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_usage_log_project_time
                ON usage_log (project_id, timestamp);
        """)
        conn.commit()
    finally:
        conn.close()


class TrackerRepository:
    """Repository for organizations, projects and usage logs.

    Each call opens its own connection, so one instance can be shared
    between request handlers.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    # Organizations

    def create_organization(
        self,
        name: str,
        owner_id: str,
        description: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
    ) -> Organization:
        now = _now()
        org = Organization(
            id=_new_id(),
            name=name,
            description=description,
            owner_id=owner_id,
            is_active=True,
            settings=settings or {},
            created_at=now,
            updated_at=now,
        )
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO organization
                (id, name, description, owner_id, is_active, settings, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                org.id,
                org.name,
                org.description,
                org.owner_id,
                int(org.is_active),
                json.dumps(org.settings),
                org.created_at.isoformat(),
                org.updated_at.isoformat(),
            ))
            conn.commit()
        finally:
            conn.close()
        return org

    def get_organization(self, org_id: str) -> Optional[Organization]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("SELECT * FROM organization WHERE id = ?", (org_id,)).fetchone()
            return _row_to_organization(row) if row else None
        finally:
            conn.close()

    def list_organizations(self, owner_id: str) -> List[Organization]:
        """List organizations owned by a user, oldest first."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "SELECT * FROM organization WHERE owner_id = ? ORDER BY created_at ASC, rowid ASC",
                (owner_id,),
            )
            return [_row_to_organization(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def update_organization(
        self,
        org_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
        is_active: Optional[bool] = None,
    ) -> Organization:
        """Update the given fields of an organization; None leaves a field as is.

        Raises:
            OrganizationNotFoundError: If no organization has this id
        """
        existing = self.get_organization(org_id)
        if existing is None:
            raise OrganizationNotFoundError(f"No organization with id {org_id}")

        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                UPDATE organization
                SET name = ?, description = ?, settings = ?, is_active = ?, updated_at = ?
                WHERE id = ?
            """, (
                name if name is not None else existing.name,
                description if description is not None else existing.description,
                json.dumps(settings if settings is not None else existing.settings),
                int(is_active if is_active is not None else existing.is_active),
                _now().isoformat(),
                org_id,
            ))
            conn.commit()
        finally:
            conn.close()
        return self.get_organization(org_id)

    def delete_organization(self, org_id: str) -> None:
        """Delete an organization together with its projects and their usage.

        Raises:
            OrganizationNotFoundError: If no organization has this id
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("DELETE FROM organization WHERE id = ?", (org_id,))
            if cursor.rowcount == 0:
                conn.rollback()
                raise OrganizationNotFoundError(f"No organization with id {org_id}")
            conn.commit()
        finally:
            conn.close()

    # Projects

    def create_project(
        self,
        organization_id: str,
        name: str,
        created_by: str,
        description: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
        is_active: bool = True,
    ) -> Project:
        """Create a project with a freshly generated project key.

        Raises:
            OrganizationNotFoundError: If the organization does not exist
        """
        if self.get_organization(organization_id) is None:
            raise OrganizationNotFoundError(f"No organization with id {organization_id}")

        now = _now()
        project = Project(
            id=_new_id(),
            organization_id=organization_id,
            name=name,
            description=description,
            project_key=generate_project_key(),
            created_by=created_by,
            is_active=is_active,
            settings=settings or {},
            created_at=now,
            updated_at=now,
        )
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO project
                (id, organization_id, name, description, project_key, created_by,
                 is_active, settings, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                project.id,
                project.organization_id,
                project.name,
                project.description,
                project.project_key,
                project.created_by,
                int(project.is_active),
                json.dumps(project.settings),
                project.created_at.isoformat(),
                project.updated_at.isoformat(),
            ))
            conn.commit()
        finally:
            conn.close()
        return project

    def get_project(self, project_id: str) -> Optional[Project]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("SELECT * FROM project WHERE id = ?", (project_id,)).fetchone()
            return _row_to_project(row) if row else None
        finally:
            conn.close()

    def get_project_by_key(self, project_key: str) -> Optional[Project]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT * FROM project WHERE project_key = ?", (project_key,)
            ).fetchone()
            return _row_to_project(row) if row else None
        finally:
            conn.close()

    def list_projects(self, organization_id: str, created_by: Optional[str] = None) -> List[Project]:
        """List projects of an organization, newest first."""
        conn = get_connection(self.db_path)
        try:
            query = "SELECT * FROM project WHERE organization_id = ?"
            params: List[Any] = [organization_id]
            if created_by:
                query += " AND created_by = ?"
                params.append(created_by)
            query += " ORDER BY created_at DESC, rowid DESC"
            cursor = conn.execute(query, params)
            return [_row_to_project(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def update_project(
        self,
        project_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
        is_active: Optional[bool] = None,
    ) -> Project:
        """Update the given fields of a project; None leaves a field as is.

        Raises:
            ProjectNotFoundError: If no project has this id
        """
        existing = self.get_project(project_id)
        if existing is None:
            raise ProjectNotFoundError(f"No project with id {project_id}")

        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                UPDATE project
                SET name = ?, description = ?, settings = ?, is_active = ?, updated_at = ?
                WHERE id = ?
            """, (
                name if name is not None else existing.name,
                description if description is not None else existing.description,
                json.dumps(settings if settings is not None else existing.settings),
                int(is_active if is_active is not None else existing.is_active),
                _now().isoformat(),
                project_id,
            ))
            conn.commit()
        finally:
            conn.close()
        return self.get_project(project_id)

    def delete_project(self, project_id: str) -> None:
        """Delete a project and its usage logs.

        Raises:
            ProjectNotFoundError: If no project has this id
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("DELETE FROM project WHERE id = ?", (project_id,))
            if cursor.rowcount == 0:
                conn.rollback()
                raise ProjectNotFoundError(f"No project with id {project_id}")
            conn.commit()
        finally:
            conn.close()

    # Usage log

    def insert_usage_record(self, record: UsageRecord) -> None:
        """Append a single usage record to the ledger.

        Args:
            record: The usage record to store
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO usage_log
                (id, project_id, project_key, timestamp, model, provider,
                 prompt_tokens, completion_tokens, total_tokens,
                 input_cost, output_cost, total_cost, currency,
                 request_duration_ms, status_code, error_message)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, _usage_params(record))
            conn.commit()
        finally:
            conn.close()

    def insert_usage_records(self, records: List[UsageRecord]) -> None:
        """Append multiple usage records in one transaction."""
        if not records:
            return

        conn = get_connection(self.db_path)
        try:
            conn.executemany("""
                INSERT INTO usage_log
                (id, project_id, project_key, timestamp, model, provider,
                 prompt_tokens, completion_tokens, total_tokens,
                 input_cost, output_cost, total_cost, currency,
                 request_duration_ms, status_code, error_message)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, [_usage_params(r) for r in records])
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def fetch_usage_records(
        self,
        project_id: str,
        days: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[UsageRecord]:
        """Fetch usage records of a project, newest first.

        Args:
            project_id: Project to read
            days: Optional number of days to look back
            limit: Optional maximum number of records

        Returns:
            List of usage records ordered by timestamp (newest first)
        """
        conn = get_connection(self.db_path)
        try:
            query = "SELECT * FROM usage_log WHERE project_id = ?"
            params: List[Any] = [project_id]
            if days is not None:
                cutoff = (_now() - timedelta(days=days)).isoformat()
                query += " AND timestamp >= ?"
                params.append(cutoff)
            query += " ORDER BY timestamp DESC, rowid DESC"
            if limit is not None:
                query += " LIMIT ?"
                params.append(limit)

            cursor = conn.execute(query, params)
            return [_row_to_usage_record(row) for row in cursor.fetchall()]
        finally:
            conn.close()


def _usage_params(record: UsageRecord) -> tuple:
    return (
        record.id,
        record.project_id,
        record.project_key,
        record.timestamp.isoformat(),
        record.model,
        record.provider,
        record.prompt_tokens,
        record.completion_tokens,
        record.total_tokens,
        record.input_cost,
        record.output_cost,
        record.total_cost,
        record.currency,
        record.request_duration_ms,
        record.status_code,
        record.error_message,
    )


_default_repository: Optional[TrackerRepository] = None


def get_repository(db_path: str = DEFAULT_DB_PATH) -> TrackerRepository:
    """Get the shared repository instance.

    The instance is recreated when a different database path is requested.

    Args:
        db_path: Path to SQLite database file

    Returns:
        An instance of TrackerRepository
    """
    global _default_repository
    if _default_repository is None or _default_repository.db_path != db_path:
        _default_repository = TrackerRepository(db_path)
    return _default_repository
