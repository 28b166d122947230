"""
Pytest Configuration and Fixtures

Shared fixtures for all tests.
"""

import io
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import pytest
from PIL import Image

from flowstudio.core.config import ImageParams, LLMConfig
from flowstudio.core.exceptions import ConflictError, ProviderError
from flowstudio.core.retry import RetryConfig
from flowstudio.assets.archiver import AssetArchiver
from flowstudio.assets.storage import MemoryAssetStorage
from flowstudio.document.backends import MemoryDocumentBackend
from flowstudio.document.store import DocumentStore
from flowstudio.images.providers import GeneratedImage, ImageProvider
from flowstudio.llm.providers import TextProvider, TextResponse, TokenUsage


# =============================================================================
# TEST DOUBLES
# =============================================================================

class FakeTextProvider(TextProvider):
    """Text provider returning canned responses in order."""

    name = "fake-llm"

    def __init__(self, responses: Optional[List[Any]] = None):
        super().__init__(api_key="test-key")
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, system_prompt, user_prompt, config):
        self.calls.append({
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
            "config": config,
        })
        item = self.responses.pop(0) if self.responses else ""
        if isinstance(item, Exception):
            raise item
        return TextResponse(
            text=item,
            provider=self.name,
            model=config.model,
            usage=TokenUsage(prompt_tokens=100, completion_tokens=50),
        )


class FakeImageProvider(ImageProvider):
    """Image provider returning one transient URL per scene, or failing for chosen prompts."""

    name = "fake-images"

    def __init__(self, fail_prompts: Optional[List[str]] = None):
        self.fail_prompts = set(fail_prompts or [])
        self.prompts: List[str] = []

    async def generate(self, prompt: str, params: ImageParams) -> GeneratedImage:
        self.prompts.append(prompt)
        if prompt in self.fail_prompts:
            raise ProviderError(self.name, "content policy violation")
        return GeneratedImage(
            url=f"https://transient.example/{len(self.prompts)}.png",
            provider=self.name,
            width=params.width,
            height=params.height,
            seed=42,
            content_type="image/png",
            request_id=f"req-{len(self.prompts)}",
        )


class RacingBackend(MemoryDocumentBackend):
    """Memory backend whose first ``losses`` commits lose the race."""

    def __init__(self, losses: int):
        super().__init__()
        self.losses = losses
        self.commit_attempts = 0

    async def commit_version(self, project_id, expected_version, document, description=None):
        self.commit_attempts += 1
        if self.losses > 0:
            self.losses -= 1
            raise ConflictError(project_id, expected_version + 1)
        return await super().commit_version(project_id, expected_version, document, description)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Conflict retry policy without waiting."""
    return RetryConfig(
        max_retries=3,
        base_delay=0.0,
        max_delay=0.0,
        jitter=False,
        retryable_exceptions=(ConflictError,)
    )


@pytest.fixture
def memory_backend() -> MemoryDocumentBackend:
    return MemoryDocumentBackend()


@pytest.fixture
def store(memory_backend, fast_retry) -> DocumentStore:
    return DocumentStore(memory_backend, retry_config=fast_retry)


@pytest.fixture
def sample_document() -> Dict[str, Any]:
    """Two-scene document with elements and global style."""
    return {
        "project_metadata": {"title": "Night Market"},
        "global_style": {
            "color_palette": {"primary": ["amber", "teal"], "secondary": ["black"]},
            "rendering_style": {"line_work": "clean ink", "shading": "cel"},
            "composition": {"framing": "wide", "depth": "layered"},
            "mood_style": {"overall_mood": "warm"},
        },
        "elements": {
            "char_mira": {
                "element_type": "character",
                "base_description": "Mira, a street cook in a red apron",
                "consistency_rules": ["red apron", "short black hair"],
                "variants_by_scene": {
                    "scene_1": {"action": "flipping noodles", "position": "behind the stall"},
                },
            },
            "loc_market": {
                "element_type": "location",
                "base_description": "A crowded night market lit by lanterns",
                "variants_by_scene": {
                    "scene_1": {"view_angle": "eye level", "camera_position": "across the aisle"},
                },
            },
            "prop_wok": {
                "element_type": "prop",
                "base_description": "A blackened steel wok",
            },
        },
        "scenes": {
            "scene_1": {
                "natural_description": "Mira cooks at her stall as the market fills up.",
                "action_summary": "Mira flips noodles",
                "camera_type": "medium shot",
                "mood": "busy",
                "elements_present": ["char_mira", "loc_market", "prop_wok"],
                "element_interactions": [
                    {"primary_element": "char_mira", "interaction_type": "uses", "secondary_element": "prop_wok"},
                ],
            },
            "scene_2": {
                "natural_description": "The lanterns go out one by one.",
                "action_summary": "The market closes",
                "camera_type": "wide shot",
                "mood": "quiet",
                "elements_present": ["loc_market"],
                "style_overrides": {"mood_style": {"overall_mood": "melancholic"}},
            },
        },
    }


@pytest.fixture
def png_bytes() -> bytes:
    """A small valid PNG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (4, 3), color=(200, 120, 40)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def image_transport(png_bytes):
    """httpx transport serving ``png_bytes`` for any URL, except ``/broken`` paths."""
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.startswith("/broken"):
            return httpx.Response(404, text="not found")
        return httpx.Response(200, content=png_bytes, headers={"content-type": "image/png"})
    return httpx.MockTransport(handler)


@pytest.fixture
def asset_storage() -> MemoryAssetStorage:
    return MemoryAssetStorage()


@pytest.fixture
def archiver(asset_storage, image_transport) -> AssetArchiver:
    client = httpx.AsyncClient(transport=image_transport)
    return AssetArchiver(asset_storage, http_client=client, max_bytes=1024 * 1024, timeout=5.0)


@pytest.fixture
def llm_config() -> LLMConfig:
    return LLMConfig(provider="fake-llm", model="test-model", max_tokens=500)


@pytest.fixture
def make_text_provider():
    """Factory for FakeTextProvider."""
    return FakeTextProvider


@pytest.fixture
def make_image_provider():
    """Factory for FakeImageProvider."""
    return FakeImageProvider


@pytest.fixture
def make_racing_backend():
    """Factory for RacingBackend."""
    return RacingBackend
