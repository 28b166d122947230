"""
Durable asset storage.

Object storage for image bytes plus an append-only table of asset records
in which at most one record per ``(project_id, scene_id)`` is current.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from flowstudio.core.config import get_settings
from flowstudio.core.constants import ASSET_TYPE_SCENE_IMAGE, STORAGE_CACHE_CONTROL
from flowstudio.core.exceptions import StorageError
from flowstudio.core.logging_config import get_logger

logger = get_logger("assets.storage")


@dataclass
class AssetRecord:
    """Provenance record of one archived scene image."""
    project_id: str
    scene_id: str
    storage_path: str
    storage_url: str
    provider: str = "unknown"
    generation_prompt: Optional[str] = None
    source_url: Optional[str] = None
    source_metadata: Dict[str, Any] = field(default_factory=dict)
    file_size: int = 0
    content_type: str = "image/jpeg"
    width: Optional[int] = None
    height: Optional[int] = None
    image_format: Optional[str] = None
    version: int = 1
    is_current: bool = True
    asset_type: str = ASSET_TYPE_SCENE_IMAGE
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    id: Optional[str] = None

    @property
    def filename(self) -> str:
        return self.storage_path.rsplit('/', 1)[-1]

    def to_row(self) -> Dict[str, Any]:
        """Row for the ``project_assets`` table."""
        parameters = dict(self.source_metadata)
        parameters.update({
            "original_url": self.source_url,
            "file_size": self.file_size,
            "content_type": self.content_type,
            "storage_path": self.storage_path,
            "width": self.width,
            "height": self.height,
            "format": self.image_format,
        })
        return {
            "project_id": self.project_id,
            "scene_id": self.scene_id,
            "asset_type": self.asset_type,
            "asset_url": self.storage_url,
            "asset_filename": self.filename,
            "generation_prompt": self.generation_prompt,
            "generation_model": self.provider,
            "generation_parameters": parameters,
            "version_number": self.version,
            "is_current": self.is_current,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "AssetRecord":
        parameters = dict(row.get("generation_parameters") or {})
        known = {
            "original_url": parameters.pop("original_url", None),
            "file_size": parameters.pop("file_size", 0),
            "content_type": parameters.pop("content_type", "image/jpeg"),
            "storage_path": parameters.pop("storage_path", ""),
            "width": parameters.pop("width", None),
            "height": parameters.pop("height", None),
            "format": parameters.pop("format", None),
        }
        return cls(
            id=str(row["id"]) if row.get("id") is not None else None,
            project_id=str(row["project_id"]),
            scene_id=row["scene_id"],
            storage_path=known["storage_path"],
            storage_url=row.get("asset_url", ""),
            provider=row.get("generation_model") or "unknown",
            generation_prompt=row.get("generation_prompt"),
            source_url=known["original_url"],
            source_metadata=parameters,
            file_size=known["file_size"] or 0,
            content_type=known["content_type"],
            width=known["width"],
            height=known["height"],
            image_format=known["format"],
            version=row.get("version_number") or 1,
            is_current=bool(row.get("is_current")),
            asset_type=row.get("asset_type") or ASSET_TYPE_SCENE_IMAGE,
            created_at=row.get("created_at") or "",
        )


class AssetStorage(ABC):
    """Abstract object store plus asset record table."""

    @abstractmethod
    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        """Store bytes at ``path`` without overwriting. Returns a permanent public URL."""
        pass

    @abstractmethod
    async def replace_current(self, record: AssetRecord) -> AssetRecord:
        """
        Mark previous current records for the scene non-current and insert
        ``record`` as current. Assigns the next per-scene version number.
        """
        pass

    @abstractmethod
    async def list_records(self, project_id: str, scene_id: str) -> List[AssetRecord]:
        """All records for a scene, newest version first."""
        pass

    async def current_record(self, project_id: str, scene_id: str) -> Optional[AssetRecord]:
        for record in await self.list_records(project_id, scene_id):
            if record.is_current:
                return record
        return None


# =============================================================================
# IN-MEMORY STORAGE
# =============================================================================

class MemoryAssetStorage(AssetStorage):
    """Process-local storage. The current-flag flip and insert share one lock."""

    def __init__(self, base_url: str = "memory://scene-images"):
        self.base_url = base_url.rstrip('/')
        self.objects: Dict[str, bytes] = {}
        self.records: List[AssetRecord] = []
        self._lock = asyncio.Lock()

    async def upload(self, path, data, content_type):
        if path in self.objects:
            raise StorageError(f"Object already exists: {path}", {"path": path})
        self.objects[path] = bytes(data)
        return f"{self.base_url}/{path}"

    async def replace_current(self, record):
        async with self._lock:
            existing = [
                r for r in self.records
                if r.project_id == record.project_id
                and r.scene_id == record.scene_id
                and r.asset_type == record.asset_type
            ]
            for r in existing:
                r.is_current = False
            record.version = max((r.version for r in existing), default=0) + 1
            record.is_current = True
            record.id = record.id or f"asset-{len(self.records) + 1}"
            self.records.append(record)
            return record

    async def list_records(self, project_id, scene_id):
        matches = [
            r for r in self.records
            if r.project_id == project_id and r.scene_id == scene_id
        ]
        return sorted(matches, key=lambda r: r.version, reverse=True)


# =============================================================================
# SUPABASE STORAGE
# =============================================================================

class SupabaseAssetStorage(AssetStorage):
    """
    Supabase Storage bucket plus the ``project_assets`` table.

    When ``rpc_name`` is set the flip and insert run inside the
    ``replace_current_scene_asset`` database function, in one transaction.
    Without it they run as two statements.
    """

    RECORD_COLUMNS = "*"

    def __init__(
        self,
        client: Client,
        bucket: Optional[str] = None,
        table: Optional[str] = None,
        rpc_name: Optional[str] = "",
    ):
        settings = get_settings()
        self.client = client
        self.bucket = bucket or settings.storage_bucket
        self.table = table or settings.assets_table
        self.rpc_name = settings.replace_asset_rpc if rpc_name == "" else rpc_name

    async def _execute(self, query):
        return await asyncio.to_thread(query.execute)

    async def upload(self, path, data, content_type):
        bucket = self.client.storage.from_(self.bucket)
        try:
            await asyncio.to_thread(
                bucket.upload,
                path,
                data,
                {
                    "content-type": content_type,
                    "cache-control": STORAGE_CACHE_CONTROL,
                    "upsert": "false",
                },
            )
            return bucket.get_public_url(path)
        except Exception as e:
            raise StorageError(f"Storage upload failed: {e}", {"bucket": self.bucket, "path": path}) from e

    async def replace_current(self, record):
        try:
            if self.rpc_name:
                response = await self._execute(
                    self.client.rpc(self.rpc_name, {"p_asset": record.to_row()})
                )
                rows = response.data if isinstance(response.data, list) else [response.data]
            else:
                rows = await self._replace_two_step(record)
        except APIError as e:
            raise StorageError(
                f"Asset record write failed: {e.message}",
                {"scene_id": record.scene_id, "code": e.code}
            ) from e
        except httpx.HTTPError as e:
            raise StorageError(
                f"Asset record write failed: {e}",
                {"scene_id": record.scene_id}
            ) from e

        if not rows or not isinstance(rows[0], dict):
            raise StorageError("Asset record write returned no row", {"scene_id": record.scene_id})
        return AssetRecord.from_row(rows[0])

    async def _replace_two_step(self, record: AssetRecord) -> List[Dict[str, Any]]:
        previous = await self.list_records(record.project_id, record.scene_id)
        record.version = max((r.version for r in previous), default=0) + 1
        record.is_current = True

        await self._execute(
            self.client.table(self.table)
            .update({"is_current": False})
            .eq("project_id", record.project_id)
            .eq("scene_id", record.scene_id)
            .eq("asset_type", record.asset_type)
            .eq("is_current", True)
        )
        response = await self._execute(self.client.table(self.table).insert(record.to_row()))
        return response.data

    async def list_records(self, project_id, scene_id):
        response = await self._execute(
            self.client.table(self.table)
            .select(self.RECORD_COLUMNS)
            .eq("project_id", project_id)
            .eq("scene_id", scene_id)
            .eq("asset_type", ASSET_TYPE_SCENE_IMAGE)
            .order("version_number", desc=True)
        )
        return [AssetRecord.from_row(row) for row in response.data or []]
