"""
Document persistence backends.

A backend stores the live document of each project together with its
``current_version`` pointer and an append-only log of version snapshots.
``commit_version`` must advance the pointer and append the snapshot
atomically, and must refuse to commit when the pointer has moved since the
caller read it.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from postgrest.exceptions import APIError
from supabase import Client

from flowstudio.core.config import get_settings
from flowstudio.core.exceptions import (
    ConflictError,
    DocumentNotFoundError,
    StorageError,
    VersionNotFoundError,
)
from flowstudio.core.logging_config import get_logger
from flowstudio.document.model import normalize_document, snapshot

logger = get_logger("document.backends")

UNIQUE_VIOLATION = "23505"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ProjectRecord:
    """Live state of one project."""
    project_id: str
    name: str
    document: Dict[str, Any]
    current_version: int = 0
    updated_at: str = ""


@dataclass
class VersionRecord:
    """Immutable snapshot of a project document."""
    project_id: str
    version_number: int
    snapshot: Dict[str, Any]
    description: Optional[str] = None
    created_at: str = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "version_number": self.version_number,
            "description": self.description,
            "created_at": self.created_at,
        }


class DocumentBackend(ABC):
    """Abstract storage for project documents and their version log."""

    @abstractmethod
    async def create_project(
        self,
        project_id: str,
        name: str,
        document: Dict[str, Any]
    ) -> ProjectRecord:
        pass

    @abstractmethod
    async def get_project(self, project_id: str) -> ProjectRecord:
        """Raises DocumentNotFoundError."""
        pass

    @abstractmethod
    async def update_live(self, project_id: str, document: Dict[str, Any]) -> ProjectRecord:
        """Overwrite live content without touching ``current_version``."""
        pass

    @abstractmethod
    async def commit_version(
        self,
        project_id: str,
        expected_version: int,
        document: Dict[str, Any],
        description: Optional[str] = None
    ) -> VersionRecord:
        """
        Commit ``expected_version + 1`` with live content and snapshot.

        Raises ConflictError when ``current_version`` is no longer
        ``expected_version`` or the version number is already taken.
        """
        pass

    @abstractmethod
    async def list_versions(self, project_id: str) -> List[VersionRecord]:
        """Newest first."""
        pass

    @abstractmethod
    async def get_version(self, project_id: str, version_number: int) -> VersionRecord:
        """Raises VersionNotFoundError."""
        pass


# =============================================================================
# IN-MEMORY BACKEND
# =============================================================================

class MemoryDocumentBackend(DocumentBackend):
    """
    Process-local backend.

    Enforces the same constraints as the database: a unique version number
    per project and a conditional pointer advance, both under one lock.
    """

    def __init__(self):
        self._projects: Dict[str, ProjectRecord] = {}
        self._versions: Dict[str, Dict[int, VersionRecord]] = {}
        self._lock = asyncio.Lock()

    async def create_project(self, project_id, name, document):
        async with self._lock:
            if project_id in self._projects:
                raise ConflictError(project_id, 0, "project already exists")
            record = ProjectRecord(
                project_id=project_id,
                name=name,
                document=snapshot(document),
                current_version=0,
                updated_at=_now(),
            )
            self._projects[project_id] = record
            self._versions[project_id] = {}
            return self._copy(record)

    async def get_project(self, project_id):
        record = self._projects.get(project_id)
        if record is None:
            raise DocumentNotFoundError(project_id)
        return self._copy(record)

    async def update_live(self, project_id, document):
        async with self._lock:
            record = self._projects.get(project_id)
            if record is None:
                raise DocumentNotFoundError(project_id)
            record.document = snapshot(document)
            record.updated_at = _now()
            return self._copy(record)

    async def commit_version(self, project_id, expected_version, document, description=None):
        async with self._lock:
            record = self._projects.get(project_id)
            if record is None:
                raise DocumentNotFoundError(project_id)

            new_version = expected_version + 1
            versions = self._versions[project_id]
            if record.current_version != expected_version or new_version in versions:
                raise ConflictError(project_id, new_version)

            version = VersionRecord(
                project_id=project_id,
                version_number=new_version,
                snapshot=snapshot(document),
                description=description,
            )
            versions[new_version] = version
            record.document = snapshot(document)
            record.current_version = new_version
            record.updated_at = version.created_at
            return self._copy_version(version)

    async def list_versions(self, project_id):
        if project_id not in self._projects:
            raise DocumentNotFoundError(project_id)
        versions = sorted(
            self._versions[project_id].values(),
            key=lambda v: v.version_number,
            reverse=True
        )
        return [self._copy_version(v) for v in versions]

    async def get_version(self, project_id, version_number):
        if project_id not in self._projects:
            raise DocumentNotFoundError(project_id)
        version = self._versions[project_id].get(version_number)
        if version is None:
            raise VersionNotFoundError(project_id, version_number)
        return self._copy_version(version)

    @staticmethod
    def _copy(record: ProjectRecord) -> ProjectRecord:
        return ProjectRecord(
            project_id=record.project_id,
            name=record.name,
            document=snapshot(record.document),
            current_version=record.current_version,
            updated_at=record.updated_at,
        )

    @staticmethod
    def _copy_version(version: VersionRecord) -> VersionRecord:
        return VersionRecord(
            project_id=version.project_id,
            version_number=version.version_number,
            snapshot=snapshot(version.snapshot),
            description=version.description,
            created_at=version.created_at,
        )


# =============================================================================
# SUPABASE BACKEND
# =============================================================================

class SupabaseDocumentBackend(DocumentBackend):
    """
    Backend on the ``projects`` and ``project_versions`` tables.

    A versioned commit is a single conditional UPDATE on ``projects``
    (``WHERE current_version = expected``). The ``create_project_version``
    trigger appends the snapshot in the same transaction, and the unique
    ``(project_id, version_number)`` constraint rejects duplicates.
    """

    PROJECT_COLUMNS = "id, name, master_json, current_version, updated_at"
    VERSION_COLUMNS = "project_id, version_number, master_json, change_description, created_at"

    def __init__(
        self,
        client: Client,
        projects_table: Optional[str] = None,
        versions_table: Optional[str] = None
    ):
        settings = get_settings()
        self.client = client
        self.projects_table = projects_table or settings.projects_table
        self.versions_table = versions_table or settings.versions_table

    async def _execute(self, query):
        return await asyncio.to_thread(query.execute)

    def _to_project(self, row: Dict[str, Any]) -> ProjectRecord:
        return ProjectRecord(
            project_id=str(row["id"]),
            name=row.get("name") or "",
            document=normalize_document(row.get("master_json")),
            current_version=row.get("current_version") or 0,
            updated_at=row.get("updated_at") or "",
        )

    def _to_version(self, row: Dict[str, Any]) -> VersionRecord:
        return VersionRecord(
            project_id=str(row["project_id"]),
            version_number=row["version_number"],
            snapshot=normalize_document(row.get("master_json")),
            description=row.get("change_description"),
            created_at=row.get("created_at") or "",
        )

    async def create_project(self, project_id, name, document):
        try:
            response = await self._execute(
                self.client.table(self.projects_table).insert({
                    "id": project_id,
                    "name": name,
                    "master_json": document,
                    "current_version": 0,
                })
            )
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise ConflictError(project_id, 0, "project already exists")
            raise StorageError(f"Failed to create project: {e.message}", {"project_id": project_id})

        if not response.data:
            raise StorageError("Project insert returned no row", {"project_id": project_id})
        return self._to_project(response.data[0])

    async def get_project(self, project_id):
        response = await self._execute(
            self.client.table(self.projects_table)
            .select(self.PROJECT_COLUMNS)
            .eq("id", project_id)
            .limit(1)
        )
        if not response.data:
            raise DocumentNotFoundError(project_id)
        return self._to_project(response.data[0])

    async def update_live(self, project_id, document):
        response = await self._execute(
            self.client.table(self.projects_table)
            .update({"master_json": document, "updated_at": _now()})
            .eq("id", project_id)
        )
        if not response.data:
            raise DocumentNotFoundError(project_id)
        return self._to_project(response.data[0])

    async def commit_version(self, project_id, expected_version, document, description=None):
        new_version = expected_version + 1
        created_at = _now()
        try:
            response = await self._execute(
                self.client.table(self.projects_table)
                .update({
                    "master_json": document,
                    "current_version": new_version,
                    "last_change_description": description,
                    "updated_at": created_at,
                })
                .eq("id", project_id)
                .eq("current_version", expected_version)
            )
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise ConflictError(project_id, new_version, e.message)
            raise StorageError(
                f"Failed to commit version {new_version}: {e.message}",
                {"project_id": project_id, "code": e.code}
            )

        if not response.data:
            # Zero rows matched: the pointer moved, or the project is gone.
            await self.get_project(project_id)
            raise ConflictError(project_id, new_version)

        return VersionRecord(
            project_id=project_id,
            version_number=new_version,
            snapshot=snapshot(document),
            description=description,
            created_at=response.data[0].get("updated_at") or created_at,
        )

    async def list_versions(self, project_id):
        response = await self._execute(
            self.client.table(self.versions_table)
            .select(self.VERSION_COLUMNS)
            .eq("project_id", project_id)
            .order("version_number", desc=True)
        )
        return [self._to_version(row) for row in response.data or []]

    async def get_version(self, project_id, version_number):
        response = await self._execute(
            self.client.table(self.versions_table)
            .select(self.VERSION_COLUMNS)
            .eq("project_id", project_id)
            .eq("version_number", version_number)
            .limit(1)
        )
        if not response.data:
            raise VersionNotFoundError(project_id, version_number)
        return self._to_version(response.data[0])


def new_project_id() -> str:
    return str(uuid.uuid4())
