"""
FlowStudio Bulk Prompt Generator

Generates ``scene_frame_prompt`` for many scenes.

Strategies:
- BATCHED: one provider call for all requested scenes. A provider or parse
  failure fails every scene in the batch.
- PER_SCENE: one call per scene, sequential, with per-scene error isolation.

Results are merged into a copy of the document and returned on the
BulkResult; the caller persists that copy through the silent write path.
"""

import asyncio
import json
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from flowstudio.core.config import LLMConfig, get_settings
from flowstudio.core.constants import SCENE_PROMPT_FIELD, SCENE_PROMPT_METADATA_FIELD
from flowstudio.core.exceptions import ProviderError, ResponseParseError, ValidationError
from flowstudio.core.logging_config import get_logger
from flowstudio.document.model import get_scenes, merge_scene_fields, snapshot
from flowstudio.llm.providers import TextProvider, TextResponse, TokenUsage
from flowstudio.llm.templating import (
    PromptTemplates,
    render_scene_prompt,
    render_system_prompt,
)
from flowstudio.pipelines.base import (
    BulkResult,
    CancellationToken,
    ProgressCallback,
    ProgressEvent,
    SceneResult,
    elapsed_since,
    emit_progress,
)

logger = get_logger("pipelines.prompt")

MISSING_FROM_RESPONSE = "No prompt returned for this scene"

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class PromptStrategy(Enum):
    """How prompts are requested from the provider."""
    BATCHED = "batched"
    PER_SCENE = "per_scene"


def build_batch_prompt(
    scene_ids: List[str],
    document: Dict[str, Any],
    templates: PromptTemplates
) -> str:
    """User prompt asking for every scene in one structured response."""
    sections = [
        f"--- SCENE {scene_id} ---\n{render_scene_prompt(scene_id, document, templates)}"
        for scene_id in scene_ids
    ]
    return (
        f"BATCH PROCESSING REQUEST: Generate prompts for {len(scene_ids)} scenes in a single response.\n\n"
        + "\n\n".join(sections)
        + "\n\nREQUIRED OUTPUT FORMAT (JSON only):\n"
        '{"scenes": [{"scene_id": "<scene id>", "prompt": "...", "character_count": <number>}]}'
    )


def parse_batch_response(text: str) -> List[Dict[str, Any]]:
    """
    Extract the list of scene entries from a batch response.

    Accepts ``{"scenes": [...]}`` or a bare array, optionally wrapped in a
    markdown code fence.

    Raises:
        ResponseParseError: The text is not JSON or has no scenes array.
    """
    cleaned = _CODE_FENCE.sub("", (text or "").strip()).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ResponseParseError("batch", f"Failed to parse batch response: {e}")

    entries = data.get("scenes") if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise ResponseParseError("batch", "Invalid batch response format - missing scenes array")
    return [entry for entry in entries if isinstance(entry, dict)]


def match_scene_id(raw_id: Any, requested: List[str]) -> Optional[str]:
    """Map a response ``scene_id`` to a requested key, directly or as ``scene_<n>``."""
    if raw_id is None:
        return None
    raw = str(raw_id).strip()
    if raw in requested:
        return raw
    prefixed = f"scene_{raw}"
    if prefixed in requested:
        return prefixed
    return None


def build_prompt_metadata(
    response: TextResponse,
    character_count: int,
    usage: TokenUsage,
    strategy: PromptStrategy
) -> Dict[str, Any]:
    return {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "provider": response.provider,
        "model": response.model,
        "character_count": character_count,
        "usage": usage.to_dict(),
        "strategy": strategy.value,
    }


class BulkPromptGenerator:
    """
    Generates frame prompts for many scenes.

    Args:
        templates: Prompt templates (neutral defaults if omitted)
        strategy: BATCHED or PER_SCENE
        inter_item_delay: Seconds between PER_SCENE calls
        sleep: Injectable sleep coroutine
    """

    def __init__(
        self,
        templates: Optional[PromptTemplates] = None,
        strategy: PromptStrategy = PromptStrategy.BATCHED,
        inter_item_delay: Optional[float] = None,
        sleep: Callable = asyncio.sleep
    ):
        self.templates = templates or PromptTemplates()
        self.strategy = strategy
        self.inter_item_delay = (
            inter_item_delay if inter_item_delay is not None
            else get_settings().prompt_inter_item_delay
        )
        self._sleep = sleep

    async def generate_all(
        self,
        document: Dict[str, Any],
        provider: TextProvider,
        llm_config: Optional[LLMConfig] = None,
        scene_ids: Optional[List[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> BulkResult:
        """
        Generate prompts for the requested scenes (all scenes by default).

        Never raises for provider failures; they are reported on the result.
        """
        start = datetime.now()
        llm_config = llm_config or LLMConfig.from_dict({"provider": provider.name})
        working = snapshot(document)
        scenes = get_scenes(working)
        requested = list(scene_ids) if scene_ids is not None else list(scenes.keys())

        result = BulkResult(total_scenes=len(requested), provider=provider.name, document=working)

        # Unknown or malformed scenes fail individually before any provider call.
        valid: List[str] = []
        for scene_id in requested:
            if isinstance(scenes.get(scene_id), dict):
                valid.append(scene_id)
            else:
                result.add_failure(scene_id, f"Scene {scene_id} not found in document", provider.name)

        logger.info(
            f"Generating prompts for {len(valid)}/{len(requested)} scenes "
            f"({self.strategy.value}, {provider.name}/{llm_config.model})"
        )

        if valid:
            if self.strategy == PromptStrategy.BATCHED:
                if cancel_token is not None and cancel_token.cancelled:
                    result.cancelled = True
                else:
                    await self._run_batched(working, valid, provider, llm_config, result, on_progress)
            else:
                await self._run_per_scene(
                    working, valid, provider, llm_config, result, on_progress, cancel_token
                )

        result.duration_seconds = elapsed_since(start)
        logger.info(
            f"Prompt generation finished: {result.successful_scenes}/{result.total_scenes} "
            f"succeeded, {len(result.errors)} errors"
        )
        return result

    async def _run_batched(
        self,
        working: Dict[str, Any],
        scene_ids: List[str],
        provider: TextProvider,
        llm_config: LLMConfig,
        result: BulkResult,
        on_progress: Optional[ProgressCallback]
    ) -> None:
        total = len(scene_ids)
        emit_progress(on_progress, ProgressEvent(
            completed=0, total=total, current_scene="batch", current_index=1,
            provider=provider.name, stage="calling provider"
        ))

        try:
            system_prompt = render_system_prompt(working, self.templates)
            user_prompt = build_batch_prompt(scene_ids, working, self.templates)
            response = await provider.generate(system_prompt, user_prompt, llm_config)
            entries = parse_batch_response(response.text)
        except (ProviderError, ValidationError) as e:
            logger.error(f"Batch prompt generation failed: {e}")
            for scene_id in scene_ids:
                result.add_failure(scene_id, str(e), provider.name)
            return
        except Exception as e:
            logger.error(f"Unexpected error in batch prompt generation: {type(e).__name__}: {e}")
            for scene_id in scene_ids:
                result.add_failure(scene_id, str(e) or type(e).__name__, provider.name)
            return

        prompts: Dict[str, Tuple[str, int]] = {}
        for entry in entries:
            scene_id = match_scene_id(entry.get("scene_id"), scene_ids)
            prompt = entry.get("prompt")
            if scene_id is None or not isinstance(prompt, str) or not prompt.strip():
                logger.debug(f"Ignoring unmatched batch entry: {entry.get('scene_id')}")
                continue
            count = entry.get("character_count")
            prompts[scene_id] = (prompt.strip(), count if isinstance(count, int) else len(prompt.strip()))

        per_scene_usage = response.usage.split(len(prompts))
        for scene_id in scene_ids:
            if scene_id not in prompts:
                result.add_failure(scene_id, MISSING_FROM_RESPONSE, provider.name)
                continue
            prompt, count = prompts[scene_id]
            metadata = build_prompt_metadata(response, count, per_scene_usage, PromptStrategy.BATCHED)
            merge_scene_fields(working, scene_id, {
                SCENE_PROMPT_FIELD: prompt,
                SCENE_PROMPT_METADATA_FIELD: metadata,
            })
            result.add_success(SceneResult(
                scene_id=scene_id, success=True, value=prompt,
                provider=response.provider, metadata=metadata
            ))

        emit_progress(on_progress, ProgressEvent(
            completed=total, total=total, current_scene="complete", current_index=total,
            provider=provider.name, stage="complete"
        ))

    async def _run_per_scene(
        self,
        working: Dict[str, Any],
        scene_ids: List[str],
        provider: TextProvider,
        llm_config: LLMConfig,
        result: BulkResult,
        on_progress: Optional[ProgressCallback],
        cancel_token: Optional[CancellationToken]
    ) -> None:
        total = len(scene_ids)
        processed = 0
        system_prompt = render_system_prompt(working, self.templates)

        for i, scene_id in enumerate(scene_ids):
            if cancel_token is not None and cancel_token.cancelled:
                result.cancelled = True
                logger.info(f"Prompt generation cancelled after {i}/{total} scenes")
                break

            emit_progress(on_progress, ProgressEvent(
                completed=i, total=total, current_scene=scene_id, current_index=i + 1,
                provider=provider.name, stage="generating"
            ))

            try:
                user_prompt = render_scene_prompt(scene_id, working, self.templates)
                response = await provider.generate(system_prompt, user_prompt, llm_config)
                prompt = response.text.strip()
                if not prompt:
                    raise ResponseParseError(provider.name, "Empty prompt returned")
            except (ProviderError, ValidationError) as e:
                logger.warning(f"[{scene_id}] Prompt generation failed: {e}")
                result.add_failure(scene_id, str(e), provider.name)
            except Exception as e:
                logger.error(f"[{scene_id}] Unexpected error: {type(e).__name__}: {e}")
                result.add_failure(scene_id, str(e) or type(e).__name__, provider.name)
            else:
                metadata = build_prompt_metadata(response, len(prompt), response.usage, PromptStrategy.PER_SCENE)
                merge_scene_fields(working, scene_id, {
                    SCENE_PROMPT_FIELD: prompt,
                    SCENE_PROMPT_METADATA_FIELD: metadata,
                })
                result.add_success(SceneResult(
                    scene_id=scene_id, success=True, value=prompt,
                    provider=response.provider, metadata=metadata
                ))

            processed = i + 1
            emit_progress(on_progress, ProgressEvent(
                completed=processed, total=total, current_scene=scene_id, current_index=processed,
                provider=provider.name, stage="generated"
            ))

            if i < total - 1:
                if cancel_token is not None:
                    await cancel_token.sleep(self.inter_item_delay, self._sleep)
                else:
                    await self._sleep(self.inter_item_delay)

        emit_progress(on_progress, ProgressEvent(
            completed=processed, total=total,
            current_scene="complete", current_index=total, provider=provider.name, stage="complete"
        ))
