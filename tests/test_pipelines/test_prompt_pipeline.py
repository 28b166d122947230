"""
Tests for Bulk Prompt Generator

Tests for flowstudio/pipelines/prompt_pipeline.py
"""

import copy
import json

import pytest
from unittest.mock import AsyncMock

from flowstudio.core.exceptions import ProviderError, ResponseParseError
from flowstudio.pipelines.base import CancellationToken, PipelineStatus
from flowstudio.pipelines.prompt_pipeline import (
    MISSING_FROM_RESPONSE,
    BulkPromptGenerator,
    PromptStrategy,
    match_scene_id,
    parse_batch_response,
)


def batch_response(*entries):
    return json.dumps({"scenes": [
        {"scene_id": scene_id, "prompt": prompt, "character_count": len(prompt)}
        for scene_id, prompt in entries
    ]})


class TestBatchParsing:
    """Tests for batch response helpers."""

    def test_object_form(self):
        entries = parse_batch_response(batch_response(("scene_1", "A")))

        assert entries == [{"scene_id": "scene_1", "prompt": "A", "character_count": 1}]

    def test_code_fenced_array(self):
        text = '```json\n[{"scene_id": "1", "prompt": "A"}]\n```'

        assert parse_batch_response(text) == [{"scene_id": "1", "prompt": "A"}]

    def test_not_json(self):
        with pytest.raises(ResponseParseError):
            parse_batch_response("Sure! Here are your prompts.")

    def test_missing_scenes_array(self):
        with pytest.raises(ResponseParseError):
            parse_batch_response('{"prompts": {}}')

    def test_match_scene_id(self):
        requested = ["scene_1", "scene_2"]

        assert match_scene_id("scene_2", requested) == "scene_2"
        assert match_scene_id(1, requested) == "scene_1"
        assert match_scene_id("7", requested) is None
        assert match_scene_id(None, requested) is None


class TestBatchedGeneration:
    """Tests for the BATCHED strategy."""

    @pytest.mark.asyncio
    async def test_all_scenes_in_one_call(self, sample_document, make_text_provider, llm_config):
        provider = make_text_provider([batch_response(("scene_1", "Mira at her wok"), ("2", "Lanterns dim"))])
        generator = BulkPromptGenerator(strategy=PromptStrategy.BATCHED)

        result = await generator.generate_all(sample_document, provider, llm_config)

        assert len(provider.calls) == 1
        assert "--- SCENE scene_1 ---" in provider.calls[0]["user_prompt"]
        assert "--- SCENE scene_2 ---" in provider.calls[0]["user_prompt"]
        assert result.success is True
        assert result.successful_scenes == 2
        scenes = result.document["scenes"]
        assert scenes["scene_1"]["scene_frame_prompt"] == "Mira at her wok"
        assert scenes["scene_2"]["scene_frame_prompt"] == "Lanterns dim"
        metadata = scenes["scene_1"]["prompt_metadata"]
        assert metadata["model"] == "test-model"
        assert metadata["strategy"] == "batched"
        assert metadata["usage"] == {"prompt_tokens": 50, "completion_tokens": 25}

    @pytest.mark.asyncio
    async def test_input_document_untouched(self, sample_document, make_text_provider, llm_config):
        provider = make_text_provider([batch_response(("scene_1", "A"), ("scene_2", "B"))])

        await BulkPromptGenerator().generate_all(sample_document, provider, llm_config)

        assert "scene_frame_prompt" not in sample_document["scenes"]["scene_1"]

    @pytest.mark.asyncio
    async def test_scene_missing_from_response(self, sample_document, make_text_provider, llm_config):
        provider = make_text_provider([batch_response(("scene_1", "A"))])

        result = await BulkPromptGenerator().generate_all(sample_document, provider, llm_config)

        assert result.successful_scenes == 1
        assert result.status == PipelineStatus.PARTIAL
        assert [(e.scene_id, e.message) for e in result.errors] == [("scene_2", MISSING_FROM_RESPONSE)]
        assert "scene_frame_prompt" not in result.document["scenes"]["scene_2"]

    @pytest.mark.asyncio
    async def test_parse_failure_fails_whole_batch(self, sample_document, make_text_provider, llm_config):
        provider = make_text_provider(["I cannot help with that."])

        result = await BulkPromptGenerator().generate_all(sample_document, provider, llm_config)

        assert result.successful_scenes == 0
        assert result.status == PipelineStatus.FAILED
        assert {e.scene_id for e in result.errors} == {"scene_1", "scene_2"}

    @pytest.mark.asyncio
    async def test_provider_failure_fails_whole_batch(self, sample_document, make_text_provider, llm_config):
        provider = make_text_provider([ProviderError("fake-llm", "quota exceeded")])

        result = await BulkPromptGenerator().generate_all(sample_document, provider, llm_config)

        assert result.failed_scenes == 2
        assert all("quota exceeded" in e.message for e in result.errors)
        summary = result.to_dict()
        assert summary["status"] == "failed"
        assert summary["failed_scenes"] == 2
        assert str(result.errors[0]).startswith("scene_1: ")

    @pytest.mark.asyncio
    async def test_unknown_scene_fails_individually(self, sample_document, make_text_provider, llm_config):
        provider = make_text_provider([batch_response(("scene_1", "A"))])

        result = await BulkPromptGenerator().generate_all(
            sample_document, provider, llm_config, scene_ids=["scene_1", "scene_9"]
        )

        assert result.total_scenes == 2
        assert result.successful_scenes == 1
        assert result.errors[0].scene_id == "scene_9"
        assert "scene_9" not in provider.calls[0]["user_prompt"]

    @pytest.mark.asyncio
    async def test_progress_events(self, sample_document, make_text_provider, llm_config):
        provider = make_text_provider([batch_response(("scene_1", "A"), ("scene_2", "B"))])
        events = []

        await BulkPromptGenerator().generate_all(sample_document, provider, llm_config, on_progress=events.append)

        assert [e.stage for e in events] == ["calling provider", "complete"]
        assert events[-1].percentage == 100


class TestPerSceneGeneration:
    """Tests for the PER_SCENE strategy."""

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, sample_document, make_text_provider, llm_config):
        provider = make_text_provider([ProviderError("fake-llm", "timeout"), "  Lanterns dim  "])
        sleep = AsyncMock()
        generator = BulkPromptGenerator(strategy=PromptStrategy.PER_SCENE, inter_item_delay=0.5, sleep=sleep)

        result = await generator.generate_all(sample_document, provider, llm_config)

        assert len(provider.calls) == 2
        assert result.successful_scenes == 1
        assert result.errors[0].scene_id == "scene_1"
        assert result.document["scenes"]["scene_2"]["scene_frame_prompt"] == "Lanterns dim"
        assert result.document["scenes"]["scene_2"]["prompt_metadata"]["strategy"] == "per_scene"
        sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_empty_response_is_failure(self, sample_document, make_text_provider, llm_config):
        provider = make_text_provider(["", "B"])
        generator = BulkPromptGenerator(strategy=PromptStrategy.PER_SCENE, sleep=AsyncMock())

        result = await generator.generate_all(sample_document, provider, llm_config)

        assert "Empty prompt" in result.errors[0].message
        assert result.successful_scenes == 1

    @pytest.mark.asyncio
    async def test_cancellation_between_scenes(self, sample_document, make_text_provider, llm_config):
        provider = make_text_provider(["A", "B"])
        token = CancellationToken()

        def on_progress(event):
            if event.stage == "generated":
                token.cancel("user stopped")

        generator = BulkPromptGenerator(strategy=PromptStrategy.PER_SCENE, sleep=AsyncMock())
        result = await generator.generate_all(
            sample_document, provider, llm_config, on_progress=on_progress, cancel_token=token
        )

        assert len(provider.calls) == 1
        assert result.cancelled is True
        assert result.status == PipelineStatus.CANCELLED
        assert result.successful_scenes == 1
        assert result.document["scenes"]["scene_1"]["scene_frame_prompt"] == "A"

    @pytest.mark.asyncio
    async def test_failing_progress_sink_is_ignored(self, sample_document, make_text_provider, llm_config):
        provider = make_text_provider(["A", "B"])

        def broken_sink(event):
            raise RuntimeError("ui closed")

        generator = BulkPromptGenerator(strategy=PromptStrategy.PER_SCENE, sleep=AsyncMock())
        result = await generator.generate_all(sample_document, provider, llm_config, on_progress=broken_sink)

        assert result.success is True


class TestMalformedDocuments:
    """Generation over documents whose element data has unexpected shapes."""

    @pytest.fixture
    def malformed_document(self, sample_document):
        document = copy.deepcopy(sample_document)
        document["elements"]["char_mira"]["variants_by_scene"] = ["not", "a", "mapping"]
        document["scenes"]["scene_2"]["elements_present"] = 7
        return document

    @pytest.mark.asyncio
    async def test_batched(self, malformed_document, make_text_provider, llm_config):
        provider = make_text_provider([batch_response(("scene_1", "A"), ("scene_2", "B"))])

        result = await BulkPromptGenerator().generate_all(malformed_document, provider, llm_config)

        assert result.success is True
        assert result.successful_scenes == 2

    @pytest.mark.asyncio
    async def test_per_scene(self, malformed_document, make_text_provider, llm_config):
        provider = make_text_provider(["A", "B"])
        generator = BulkPromptGenerator(strategy=PromptStrategy.PER_SCENE, sleep=AsyncMock())

        result = await generator.generate_all(malformed_document, provider, llm_config)

        assert result.successful_scenes == 2
        assert result.document["scenes"]["scene_2"]["scene_frame_prompt"] == "B"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_isolated(self, sample_document, make_text_provider, llm_config):
        provider = make_text_provider([RuntimeError("socket closed"), "B"])
        generator = BulkPromptGenerator(strategy=PromptStrategy.PER_SCENE, sleep=AsyncMock())

        result = await generator.generate_all(sample_document, provider, llm_config)

        assert [(e.scene_id, e.message) for e in result.errors] == [("scene_1", "socket closed")]
        assert result.document["scenes"]["scene_2"]["scene_frame_prompt"] == "B"

    @pytest.mark.asyncio
    async def test_unexpected_batch_error_fails_every_scene(self, sample_document, make_text_provider, llm_config):
        provider = make_text_provider([RuntimeError("socket closed")])

        result = await BulkPromptGenerator().generate_all(sample_document, provider, llm_config)

        assert result.status == PipelineStatus.FAILED
        assert {e.scene_id for e in result.errors} == {"scene_1", "scene_2"}
