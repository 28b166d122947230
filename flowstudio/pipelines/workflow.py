"""
FlowStudio Project Workflow

Holds the in-memory document for one project and routes every change
through the Document Store:

- ``save`` creates a new version (explicit save)
- ``checkpoint`` and the generators use the silent path
- ``load_version`` only repopulates the in-memory document

Phase gates are re-evaluated after every persisted change.
"""

from typing import Any, Dict, List, Optional

from flowstudio.core.config import ImageParams, LLMConfig
from flowstudio.core.logging_config import get_logger
from flowstudio.document.backup import BackupData, BackupManager
from flowstudio.document.model import set_field, snapshot
from flowstudio.document.store import DocumentStore, WriteResult
from flowstudio.images.providers import ImageProvider
from flowstudio.llm.providers import TextProvider
from flowstudio.phases.gate import PhaseProgress, PhaseState, evaluate, phase_progress
from flowstudio.pipelines.base import BulkResult, CancellationToken, ProgressCallback
from flowstudio.pipelines.image_pipeline import BulkImageGenerator, build_image_requests
from flowstudio.pipelines.prompt_pipeline import BulkPromptGenerator

logger = get_logger("pipelines.workflow")


class ProjectWorkflow:
    """
    Editing session for a single project.

    Args:
        store: Document store
        project_id: Project to work on
        backup_manager: Optional local backup of unsaved edits
    """

    def __init__(
        self,
        store: DocumentStore,
        project_id: str,
        backup_manager: Optional[BackupManager] = None
    ):
        self.store = store
        self.project_id = project_id
        self.backup_manager = backup_manager
        self.document: Dict[str, Any] = {}
        self.current_version: int = 0
        self.dirty = False
        self.restorable_backup: Optional[BackupData] = None
        self._phases: List[PhaseState] = evaluate(self.document)

    @property
    def phases(self) -> List[PhaseState]:
        """Phase gates as of the last persisted change."""
        return self._phases

    @property
    def progress(self) -> PhaseProgress:
        return phase_progress(self.document)

    def _refresh_phases(self) -> None:
        self._phases = evaluate(self.document)

    def _after_write(self, write: WriteResult) -> WriteResult:
        self.document = write.document
        self.current_version = write.current_version
        self._refresh_phases()
        return write

    def _backup(self) -> None:
        if self.backup_manager is not None:
            self.backup_manager.save_backup(self.project_id, self.document, self.current_version)

    async def load(self) -> Dict[str, Any]:
        """Load the live document and look for a restorable local backup."""
        record = await self.store.get_project(self.project_id)
        self.document = record.document
        self.current_version = record.current_version
        self.dirty = False
        self._refresh_phases()

        if self.backup_manager is not None:
            self.restorable_backup = self.backup_manager.check_for_restoration(self.project_id)

        logger.info(f"Loaded project {self.project_id} at version {self.current_version}")
        return self.document

    def restore_backup(self) -> bool:
        """Replace the in-memory document with the pending backup, if any."""
        if self.restorable_backup is None:
            return False
        self.document = snapshot(self.restorable_backup.document)
        self.restorable_backup = None
        self.dirty = True
        return True

    def update_field(self, path: str, value: Any) -> None:
        """Edit the in-memory document by dot path. Nothing is persisted."""
        set_field(self.document, path, value)
        self.dirty = True
        self._backup()

    async def save(self, description: Optional[str] = None) -> WriteResult:
        """Persist the in-memory document as a new version."""
        write = await self.store.write(
            self.project_id, self.document, advance_version=True, description=description
        )
        self.dirty = False
        if self.backup_manager is not None:
            self.backup_manager.clear_backup(self.project_id)
        return self._after_write(write)

    async def checkpoint(self) -> WriteResult:
        """Persist the in-memory document without creating a version."""
        write = await self.store.write(self.project_id, self.document, advance_version=False)
        return self._after_write(write)

    async def load_version(self, version_number: int) -> Dict[str, Any]:
        """
        Load an old snapshot into memory.

        Stored history and the live document are untouched until the caller
        saves or checkpoints.
        """
        self.document = await self.store.read_version(self.project_id, version_number)
        self.dirty = True
        self._backup()
        logger.info(f"Loaded version {version_number} of project {self.project_id} into memory")
        return self.document

    async def _persist_generated(self, result: BulkResult) -> None:
        if result.document is None or not result.successful_scenes:
            return
        write = await self.store.write(self.project_id, result.document, advance_version=False)
        self._after_write(write)

    async def generate_prompts(
        self,
        provider: TextProvider,
        generator: Optional[BulkPromptGenerator] = None,
        llm_config: Optional[LLMConfig] = None,
        scene_ids: Optional[List[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> BulkResult:
        """Generate frame prompts and persist them silently."""
        generator = generator or BulkPromptGenerator()
        result = await generator.generate_all(
            self.document,
            provider,
            llm_config=llm_config,
            scene_ids=scene_ids,
            on_progress=on_progress,
            cancel_token=cancel_token,
        )
        await self._persist_generated(result)
        return result

    async def generate_images(
        self,
        provider: ImageProvider,
        generator: BulkImageGenerator,
        params: Optional[ImageParams] = None,
        scene_ids: Optional[List[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> BulkResult:
        """Generate start frames for scenes that have prompts and persist them silently."""
        requests = build_image_requests(self.document, self.project_id, scene_ids)
        result = await generator.generate_all(
            requests,
            provider,
            document=self.document,
            params=params,
            on_progress=on_progress,
            cancel_token=cancel_token,
        )
        await self._persist_generated(result)
        return result
