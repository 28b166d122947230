"""
FlowStudio Document Store

Persists one document per project. Every write goes through ``write``:

- silent (``advance_version=False``): overwrite live content only. No
  version row is created and ``current_version`` does not move.
- versioned (``advance_version=True``): commit ``current_version + 1`` with
  an immutable snapshot. This is the only path that grows history.

Versioned writes that lose a race are retried with a fresh read a bounded
number of times before ``ConflictError`` is surfaced.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from flowstudio.core.config import get_settings
from flowstudio.core.exceptions import ConflictError
from flowstudio.core.logging_config import get_logger
from flowstudio.core.retry import RetryConfig, CONFLICT_RETRY_CONFIG, retry_async_call
from flowstudio.document.backends import (
    DocumentBackend,
    ProjectRecord,
    VersionRecord,
    new_project_id,
)
from flowstudio.document.model import DocumentInput, new_document, parse_document

logger = get_logger("document.store")


@dataclass
class WriteResult:
    """Outcome of a document write."""
    project_id: str
    current_version: int
    versioned: bool
    version: Optional[VersionRecord] = None
    attempts: int = 1
    document: Dict[str, Any] = field(default_factory=dict)


class DocumentStore:
    """
    Versioned document storage.

    Args:
        backend: Storage backend (Supabase or in-memory)
        retry_config: Conflict retry policy. Defaults to
            ``CONFLICT_RETRY_CONFIG`` with ``max_retries`` from settings.
    """

    def __init__(self, backend: DocumentBackend, retry_config: Optional[RetryConfig] = None):
        self.backend = backend
        if retry_config is None:
            retry_config = RetryConfig(
                max_retries=get_settings().version_conflict_retries,
                base_delay=CONFLICT_RETRY_CONFIG.base_delay,
                max_delay=CONFLICT_RETRY_CONFIG.max_delay,
                exponential_base=CONFLICT_RETRY_CONFIG.exponential_base,
                jitter=CONFLICT_RETRY_CONFIG.jitter,
                retryable_exceptions=(ConflictError,),
            )
        self.retry_config = retry_config

    async def create_project(
        self,
        name: str,
        document: Optional[DocumentInput] = None,
        project_id: Optional[str] = None
    ) -> ProjectRecord:
        """Create a project at version 0 with a normalized document."""
        data = parse_document(document) if document is not None else new_document(name)
        project_id = project_id or new_project_id()
        record = await self.backend.create_project(project_id, name, data)
        logger.info(f"Created project {project_id} ({name})")
        return record

    async def read(self, project_id: str) -> Dict[str, Any]:
        """Return the live document. Raises DocumentNotFoundError."""
        record = await self.backend.get_project(project_id)
        return record.document

    async def get_project(self, project_id: str) -> ProjectRecord:
        return await self.backend.get_project(project_id)

    async def write(
        self,
        project_id: str,
        document: DocumentInput,
        advance_version: bool = False,
        description: Optional[str] = None
    ) -> WriteResult:
        """
        Persist a document.

        Raises:
            ValidationError: The payload is malformed. Nothing is written.
            DocumentNotFoundError: The project does not exist.
            ConflictError: Retries exhausted on a versioned write.
        """
        data = parse_document(document)

        if not advance_version:
            record = await self.backend.update_live(project_id, data)
            logger.debug(f"Silent write for project {project_id} (version {record.current_version})")
            return WriteResult(
                project_id=project_id,
                current_version=record.current_version,
                versioned=False,
                document=data,
            )

        attempts = 0

        async def commit() -> VersionRecord:
            nonlocal attempts
            attempts += 1
            current = await self.backend.get_project(project_id)
            return await self.backend.commit_version(
                project_id, current.current_version, data, description
            )

        version = await retry_async_call(commit, config=self.retry_config)
        logger.info(
            f"Saved project {project_id} as version {version.version_number}"
            + (f" ({description})" if description else "")
        )
        return WriteResult(
            project_id=project_id,
            current_version=version.version_number,
            versioned=True,
            version=version,
            attempts=attempts,
            document=data,
        )

    async def write_silent(self, project_id: str, document: DocumentInput) -> WriteResult:
        return await self.write(project_id, document, advance_version=False)

    async def write_versioned(
        self,
        project_id: str,
        document: DocumentInput,
        description: Optional[str] = None
    ) -> WriteResult:
        return await self.write(project_id, document, advance_version=True, description=description)

    async def list_versions(self, project_id: str) -> List[VersionRecord]:
        """All versions of a project, newest first."""
        return await self.backend.list_versions(project_id)

    async def read_version(self, project_id: str, version_number: int) -> Dict[str, Any]:
        """Return the snapshot of one version. Raises VersionNotFoundError."""
        version = await self.backend.get_version(project_id, version_number)
        return version.snapshot
