"""Local backups of unsaved document edits.

Edits made between explicit saves are mirrored to a JSON file per project so
they can be offered for restoration after a crash. Backup failures are
logged and never interrupt the caller.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from flowstudio.core.config import get_settings
from flowstudio.core.logging_config import get_logger

logger = get_logger("document.backup")

BACKUP_PREFIX = "flowstudio-backup-"


@dataclass
class BackupData:
    """One backed-up document."""
    project_id: str
    document: Dict[str, Any]
    version: int
    timestamp: str  # ISO format

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "document": self.document,
            "version": self.version,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupData":
        return cls(
            project_id=data["project_id"],
            document=data["document"],
            version=data.get("version", 0),
            timestamp=data["timestamp"],
        )

    @property
    def created(self) -> datetime:
        return datetime.fromisoformat(self.timestamp)


class BackupManager:
    """File-based backup of unsaved changes, one file per project."""

    def __init__(self, backup_dir: Optional[Path] = None, expiry_days: Optional[int] = None):
        settings = get_settings()
        self.backup_dir = Path(backup_dir or settings.backup_dir)
        self.expiry = timedelta(
            days=expiry_days if expiry_days is not None else settings.backup_expiry_days
        )

    def _get_backup_path(self, project_id: str) -> Path:
        return self.backup_dir / f"{BACKUP_PREFIX}{project_id}.json"

    def _is_expired(self, backup: BackupData) -> bool:
        return datetime.now(timezone.utc) - backup.created >= self.expiry

    def save_backup(self, project_id: str, document: Dict[str, Any], version: int) -> bool:
        """Write the current in-memory document. Returns False on failure."""
        backup = BackupData(
            project_id=project_id,
            document=document,
            version=version,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            self._get_backup_path(project_id).write_text(
                json.dumps(backup.to_dict(), indent=2, default=str),
                encoding="utf-8"
            )
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to save backup for project {project_id}: {e}")
            return False

        logger.debug(f"Backup saved for project {project_id}")
        return True

    def check_for_restoration(self, project_id: str) -> Optional[BackupData]:
        """Return a recent backup for the project, if one exists."""
        path = self._get_backup_path(project_id)
        if not path.exists():
            return None

        try:
            backup = BackupData.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning(f"Failed to read backup for project {project_id}: {e}")
            return None

        if backup.project_id != project_id or not backup.document or self._is_expired(backup):
            return None

        logger.info(
            f"Found backup for project {project_id} "
            f"(version {backup.version}, {backup.timestamp})"
        )
        return backup

    def clear_backup(self, project_id: str) -> None:
        """Remove the backup after a successful save."""
        try:
            self._get_backup_path(project_id).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to clear backup for project {project_id}: {e}")

    def cleanup_old_backups(self) -> int:
        """Delete expired backups across all projects. Returns the number removed."""
        if not self.backup_dir.exists():
            return 0

        removed = 0
        for path in self.backup_dir.glob(f"{BACKUP_PREFIX}*.json"):
            try:
                backup = BackupData.from_dict(json.loads(path.read_text(encoding="utf-8")))
                if self._is_expired(backup):
                    path.unlink()
                    removed += 1
            except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
                logger.warning(f"Skipping unreadable backup {path.name}: {e}")

        if removed:
            logger.info(f"Cleaned up {removed} old backups")
        return removed
