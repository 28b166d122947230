"""
FlowStudio Bulk Image Generator

Generates and archives start frames for many scenes, strictly one at a
time. For each request:

1. progress event (before)
2. provider call; a failure is recorded for this scene only
3. archive the transient URL (falls back to it if archiving fails)
4. merge ``scene_start_frame`` and ``frame_metadata`` into the document copy
5. progress event (after), carrying every image completed so far
6. fixed delay before the next request

A final ``complete`` event follows the loop.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from flowstudio.assets.archiver import AssetArchiver
from flowstudio.core.config import ImageParams, get_settings
from flowstudio.core.constants import (
    SCENE_IMAGE_FIELD,
    SCENE_IMAGE_METADATA_FIELD,
    SCENE_PROMPT_FIELD,
)
from flowstudio.core.exceptions import ProviderError
from flowstudio.core.logging_config import get_logger
from flowstudio.document.model import get_scenes, merge_scene_fields, snapshot
from flowstudio.images.providers import ImageProvider
from flowstudio.pipelines.base import (
    BulkResult,
    CancellationToken,
    CompletedImage,
    ProgressCallback,
    ProgressEvent,
    SceneResult,
    elapsed_since,
    emit_progress,
)

logger = get_logger("pipelines.image")


@dataclass
class ImageRequest:
    """One scene to render."""
    project_id: str
    scene_id: str
    prompt: str


def build_image_requests(
    document: Dict[str, Any],
    project_id: str,
    scene_ids: Optional[List[str]] = None
) -> List[ImageRequest]:
    """Requests for every scene (or the given scenes) that already has a frame prompt."""
    scenes = get_scenes(document)
    keys = scene_ids if scene_ids is not None else list(scenes.keys())
    requests = []
    for scene_id in keys:
        scene = scenes.get(scene_id)
        if not isinstance(scene, dict) or not scene.get(SCENE_PROMPT_FIELD):
            logger.debug(f"Skipping {scene_id}: no frame prompt")
            continue
        requests.append(ImageRequest(project_id=project_id, scene_id=scene_id, prompt=scene[SCENE_PROMPT_FIELD]))
    return requests


class BulkImageGenerator:
    """
    Sequential image generation with archiving.

    Args:
        archiver: Asset archiver used for every successful image
        inter_item_delay: Seconds to wait between requests
        sleep: Injectable sleep coroutine
    """

    def __init__(
        self,
        archiver: AssetArchiver,
        inter_item_delay: Optional[float] = None,
        sleep: Callable = asyncio.sleep
    ):
        self.archiver = archiver
        self.inter_item_delay = (
            inter_item_delay if inter_item_delay is not None
            else get_settings().image_inter_item_delay
        )
        self._sleep = sleep

    async def generate_all(
        self,
        requests: List[ImageRequest],
        provider: ImageProvider,
        document: Optional[Dict[str, Any]] = None,
        params: Optional[ImageParams] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> BulkResult:
        """
        Generate, archive and merge images for each request in order.

        When ``document`` is given, results are merged into a copy returned
        as ``BulkResult.document``; scenes not in the document fail.
        """
        start = datetime.now()
        params = params or ImageParams()
        working = snapshot(document) if document is not None else None
        total = len(requests)
        result = BulkResult(total_scenes=total, provider=provider.name, document=working)
        completed_images: List[CompletedImage] = []
        latest_url: Optional[str] = None

        logger.info(f"Generating {total} images with {provider.name}")

        for i, request in enumerate(requests):
            if cancel_token is not None and cancel_token.cancelled:
                result.cancelled = True
                logger.info(f"Image generation cancelled after {i}/{total} scenes")
                break

            emit_progress(on_progress, ProgressEvent(
                completed=i, total=total, current_scene=request.scene_id, current_index=i + 1,
                provider=provider.name, completed_images=list(completed_images),
                latest_image_url=latest_url, stage="generating"
            ))

            url = await self._process(request, i + 1, provider, params, working, result)
            if url:
                completed_images.append(CompletedImage(
                    scene_id=request.scene_id, image_url=url, scene_index=i + 1
                ))
                latest_url = url

            emit_progress(on_progress, ProgressEvent(
                completed=i + 1, total=total, current_scene=request.scene_id, current_index=i + 1,
                provider=provider.name, completed_images=list(completed_images),
                latest_image_url=latest_url, stage="generated"
            ))

            if i < total - 1:
                if cancel_token is not None:
                    await cancel_token.sleep(self.inter_item_delay, self._sleep)
                else:
                    await self._sleep(self.inter_item_delay)

        emit_progress(on_progress, ProgressEvent(
            completed=len(result.results), total=total, current_scene="complete",
            current_index=len(result.results), provider=provider.name,
            completed_images=list(completed_images), latest_image_url=latest_url,
            stage="complete"
        ))

        result.duration_seconds = elapsed_since(start)
        logger.info(
            f"Image generation finished: {result.successful_scenes}/{total} succeeded, "
            f"{len(result.errors)} errors"
        )
        return result

    async def _process(
        self,
        request: ImageRequest,
        index: int,
        provider: ImageProvider,
        params: ImageParams,
        working: Optional[Dict[str, Any]],
        result: BulkResult
    ) -> Optional[str]:
        """Handle one request. Returns the usable image URL, or None on failure."""
        log_prefix = f"[{request.scene_id}]"

        if working is not None and not isinstance(get_scenes(working).get(request.scene_id), dict):
            result.add_failure(request.scene_id, f"Scene {request.scene_id} not found in document", provider.name)
            return None

        try:
            return await self._generate_and_archive(request, index, provider, params, working, result)
        except ProviderError as e:
            logger.warning(f"{log_prefix} Image generation failed: {e}")
            result.add_failure(request.scene_id, str(e), provider.name)
        except Exception as e:
            logger.error(f"{log_prefix} Unexpected error: {type(e).__name__}: {e}")
            result.add_failure(request.scene_id, str(e) or type(e).__name__, provider.name)
        return None

    async def _generate_and_archive(
        self,
        request: ImageRequest,
        index: int,
        provider: ImageProvider,
        params: ImageParams,
        working: Optional[Dict[str, Any]],
        result: BulkResult
    ) -> str:
        image = await provider.generate(request.prompt, params)

        archived = await self.archiver.archive(
            project_id=request.project_id,
            scene_id=request.scene_id,
            source_url=image.url,
            prompt_text=request.prompt,
            source_metadata=image.to_metadata(),
            provider=provider.name,
        )

        metadata: Dict[str, Any] = {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "provider": provider.name,
            "scene_index": index,
            "source_url": image.url,
            **image.to_metadata(),
            **archived.to_metadata(),
        }

        if working is not None:
            merge_scene_fields(working, request.scene_id, {
                SCENE_IMAGE_FIELD: archived.url,
                SCENE_IMAGE_METADATA_FIELD: metadata,
            })

        result.add_success(SceneResult(
            scene_id=request.scene_id,
            success=True,
            value=archived.url,
            provider=provider.name,
            error=archived.error,
            metadata=metadata,
        ))
        logger.info(f"[{request.scene_id}] Image ready ({'archived' if archived.durable else 'transient'})")
        return archived.url
