"""
FlowStudio Asset Archiver

Turns a transient provider image URL into a durably stored image with a
provenance record:

1. download the image (must be ``image/*`` and within the size limit)
2. derive ``projects/{project_id}/scenes/{scene_id}_{timestamp}.{ext}``
3. upload it and obtain a permanent URL
4. flip earlier records for the scene to non-current and insert the new one

Failures in steps 1-3 degrade to the transient URL. A failure in step 4
keeps the durable URL and reports a warning instead.
"""

import io
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import httpx
from PIL import Image, UnidentifiedImageError

from flowstudio.core.config import get_settings
from flowstudio.core.constants import CONTENT_TYPE_EXTENSIONS
from flowstudio.core.exceptions import DownloadError, StorageError
from flowstudio.core.logging_config import get_logger
from flowstudio.assets.storage import AssetRecord, AssetStorage

logger = get_logger("assets.archiver")


@dataclass
class DownloadedImage:
    """Raw bytes fetched from a transient URL."""
    data: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class ArchiveResult:
    """Outcome of archiving one image. ``url`` is always usable."""
    scene_id: str
    url: str
    durable: bool
    storage_path: Optional[str] = None
    record: Optional[AssetRecord] = None
    error: Optional[str] = None
    warning: Optional[str] = None

    @property
    def fell_back(self) -> bool:
        return not self.durable

    def to_metadata(self) -> Dict[str, Any]:
        """Fields merged into a scene's frame metadata."""
        metadata: Dict[str, Any] = {
            "durable": self.durable,
            "storage_path": self.storage_path,
        }
        if self.record is not None:
            metadata["asset_version"] = self.record.version
            metadata["file_size"] = self.record.file_size
            metadata["content_type"] = self.record.content_type
        if self.error:
            metadata["storage_error"] = self.error
        if self.warning:
            metadata["storage_warning"] = self.warning
        return metadata


def build_storage_path(
    project_id: str,
    scene_id: str,
    content_type: str,
    now: Optional[datetime] = None
) -> str:
    """``projects/{project}/scenes/{scene}_{timestamp}.{ext}`` with ``:`` and ``.`` made safe."""
    now = now or datetime.now(timezone.utc)
    timestamp = now.strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    extension = CONTENT_TYPE_EXTENSIONS.get(content_type.split(';')[0].strip().lower(), "jpeg")
    return f"projects/{project_id}/scenes/{scene_id}_{timestamp}.{extension}"


def read_image_info(data: bytes) -> Tuple[Optional[int], Optional[int], Optional[str]]:
    """Width, height and format of an image, or Nones when it can't be decoded."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.width, image.height, image.format
    except (UnidentifiedImageError, OSError) as e:
        logger.debug(f"Could not read image dimensions: {e}")
        return None, None, None


class AssetArchiver:
    """
    Downloads transient images and archives them in durable storage.

    Args:
        storage: Object store and asset record table
        http_client: Optional shared httpx.AsyncClient
        max_bytes: Maximum accepted payload size
        timeout: Download timeout in seconds
    """

    def __init__(
        self,
        storage: AssetStorage,
        http_client: Optional[httpx.AsyncClient] = None,
        max_bytes: Optional[int] = None,
        timeout: Optional[float] = None
    ):
        settings = get_settings()
        self.storage = storage
        self._http_client = http_client
        self.max_bytes = max_bytes if max_bytes is not None else settings.max_asset_bytes
        self.timeout = timeout if timeout is not None else settings.download_timeout

    async def download(self, url: str) -> DownloadedImage:
        """
        Fetch an image.

        Raises:
            DownloadError: Non-2xx status, non-image content type, payload
                over ``max_bytes``, or a transport failure.
        """
        if self._http_client is not None:
            return await self._download_with(self._http_client, url)

        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            return await self._download_with(client, url)

    async def _download_with(self, client: httpx.AsyncClient, url: str) -> DownloadedImage:
        try:
            async with client.stream("GET", url, timeout=self.timeout) as response:
                if not response.is_success:
                    raise DownloadError(url, f"HTTP {response.status_code} {response.reason_phrase}")

                content_type = response.headers.get("content-type", "")
                if not content_type.lower().startswith("image/"):
                    raise DownloadError(url, f"Invalid content type: {content_type or 'missing'}. Expected image.")

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self.max_bytes:
                    raise DownloadError(url, f"Image too large: {declared} bytes. Max: {self.max_bytes}")

                buffer = bytearray()
                async for chunk in response.aiter_bytes():
                    buffer.extend(chunk)
                    if len(buffer) > self.max_bytes:
                        raise DownloadError(url, f"Image too large: over {self.max_bytes} bytes")

        except httpx.HTTPError as e:
            raise DownloadError(url, str(e) or type(e).__name__) from e

        return DownloadedImage(data=bytes(buffer), content_type=content_type.split(';')[0].strip())

    async def archive(
        self,
        project_id: str,
        scene_id: str,
        source_url: str,
        prompt_text: Optional[str] = None,
        source_metadata: Optional[Dict[str, Any]] = None,
        provider: str = "unknown"
    ) -> ArchiveResult:
        """
        Archive one image. Never raises for download or storage failures.

        Returns:
            ArchiveResult whose ``url`` is the permanent URL, or the source
            URL when archiving failed before upload completed
        """
        log_prefix = f"[{project_id}/{scene_id}]"

        try:
            image = await self.download(source_url)
            storage_path = build_storage_path(project_id, scene_id, image.content_type)
            storage_url = await self.storage.upload(storage_path, image.data, image.content_type)
        except (DownloadError, StorageError) as e:
            logger.warning(f"{log_prefix} Archiving failed, using transient URL: {e}")
            return ArchiveResult(scene_id=scene_id, url=source_url, durable=False, error=str(e))

        width, height, image_format = read_image_info(image.data)
        record = AssetRecord(
            project_id=project_id,
            scene_id=scene_id,
            storage_path=storage_path,
            storage_url=storage_url,
            provider=provider,
            generation_prompt=prompt_text,
            source_url=source_url,
            source_metadata=dict(source_metadata or {}),
            file_size=image.size,
            content_type=image.content_type,
            width=width,
            height=height,
            image_format=image_format,
        )

        try:
            record = await self.storage.replace_current(record)
        except StorageError as e:
            warning = f"Image stored but provenance record not written: {e}"
            logger.warning(f"{log_prefix} {warning}")
            return ArchiveResult(
                scene_id=scene_id,
                url=storage_url,
                durable=True,
                storage_path=storage_path,
                warning=warning,
            )

        logger.info(f"{log_prefix} Archived {image.size} bytes to {storage_path} (v{record.version})")
        return ArchiveResult(
            scene_id=scene_id,
            url=storage_url,
            durable=True,
            storage_path=storage_path,
            record=record,
        )
