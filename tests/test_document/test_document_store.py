"""
Tests for Document Store

Tests for flowstudio/document/store.py and the in-memory backend
"""

import asyncio
import json

import pytest

from flowstudio.core.exceptions import (
    ConflictError,
    DocumentNotFoundError,
    ValidationError,
    VersionNotFoundError,
)
from flowstudio.document.store import DocumentStore


class TestCreateAndRead:
    """Tests for project creation and reads."""

    @pytest.mark.asyncio
    async def test_new_project_starts_at_version_zero(self, store):
        project = await store.create_project("Pilot")

        assert project.current_version == 0
        assert project.document["scenes"] == {}
        assert await store.list_versions(project.project_id) == []

    @pytest.mark.asyncio
    async def test_create_with_document(self, store, sample_document):
        project = await store.create_project("Night Market", sample_document, project_id="p-1")

        assert project.project_id == "p-1"
        assert await store.read("p-1") == sample_document

    @pytest.mark.asyncio
    async def test_duplicate_project_id(self, store):
        await store.create_project("A", project_id="p-1")

        with pytest.raises(ConflictError):
            await store.create_project("B", project_id="p-1")

    @pytest.mark.asyncio
    async def test_read_unknown_project(self, store):
        with pytest.raises(DocumentNotFoundError):
            await store.read("missing")

    @pytest.mark.asyncio
    async def test_returned_document_is_a_copy(self, store, sample_document):
        project = await store.create_project("A", sample_document)
        document = await store.read(project.project_id)
        document["scenes"].clear()

        assert (await store.read(project.project_id))["scenes"] != {}


class TestVersionedWrites:
    """Tests for versioned and silent writes."""

    @pytest.mark.asyncio
    async def test_versions_are_monotonic(self, store, sample_document):
        project = await store.create_project("A")

        for i in range(3):
            result = await store.write_versioned(project.project_id, sample_document, f"save {i}")
            assert result.versioned is True
            assert result.current_version == i + 1

        versions = await store.list_versions(project.project_id)
        assert [v.version_number for v in versions] == [3, 2, 1]
        assert versions[0].description == "save 2"

    @pytest.mark.asyncio
    async def test_silent_write_adds_no_version(self, store, sample_document):
        project = await store.create_project("A")
        await store.write_versioned(project.project_id, sample_document)

        result = await store.write_silent(project.project_id, {"scenes": {}})

        assert result.versioned is False
        assert result.current_version == 1
        assert len(await store.list_versions(project.project_id)) == 1
        assert (await store.read(project.project_id))["scenes"] == {}

    @pytest.mark.asyncio
    async def test_read_version_returns_snapshot(self, store, sample_document):
        project = await store.create_project("A")
        await store.write_versioned(project.project_id, sample_document)
        await store.write_silent(project.project_id, {"scenes": {"scene_9": {}}})

        assert await store.read_version(project.project_id, 1) == sample_document

    @pytest.mark.asyncio
    async def test_snapshot_unaffected_by_caller_mutation(self, store, sample_document):
        project = await store.create_project("A")
        await store.write(project.project_id, sample_document, advance_version=True)

        sample_document["scenes"]["scene_1"]["mood"] = "mutated"

        snapshot = await store.read_version(project.project_id, 1)
        assert snapshot["scenes"]["scene_1"]["mood"] == "busy"

    @pytest.mark.asyncio
    async def test_unknown_version(self, store):
        project = await store.create_project("A")

        with pytest.raises(VersionNotFoundError):
            await store.read_version(project.project_id, 7)

    @pytest.mark.asyncio
    async def test_malformed_payload_writes_nothing(self, store, sample_document):
        project = await store.create_project("A", sample_document)

        with pytest.raises(ValidationError):
            await store.write(project.project_id, '{"scenes": ', advance_version=True)

        record = await store.get_project(project.project_id)
        assert record.current_version == 0
        assert record.document == sample_document
        assert await store.list_versions(project.project_id) == []

    @pytest.mark.asyncio
    async def test_json_string_payload(self, store, sample_document):
        project = await store.create_project("A")

        await store.write_versioned(project.project_id, json.dumps(sample_document))

        assert await store.read(project.project_id) == sample_document

    @pytest.mark.asyncio
    async def test_write_to_unknown_project(self, store):
        with pytest.raises(DocumentNotFoundError):
            await store.write_silent("missing", {"scenes": {}})

        with pytest.raises(DocumentNotFoundError):
            await store.write_versioned("missing", {"scenes": {}})


class TestConflictHandling:
    """Tests for commit races."""

    @pytest.mark.asyncio
    async def test_stale_commit_is_rejected(self, memory_backend, sample_document):
        store = DocumentStore(memory_backend)
        project = await store.create_project("A")
        await store.write_versioned(project.project_id, sample_document)

        with pytest.raises(ConflictError):
            await memory_backend.commit_version(project.project_id, 0, sample_document)

    @pytest.mark.asyncio
    async def test_lost_races_are_retried(self, make_racing_backend, fast_retry, sample_document):
        backend = make_racing_backend(losses=2)
        store = DocumentStore(backend, retry_config=fast_retry)
        project = await store.create_project("A")

        result = await store.write_versioned(project.project_id, sample_document)

        assert result.current_version == 1
        assert result.attempts == 3
        assert backend.commit_attempts == 3

    @pytest.mark.asyncio
    async def test_conflict_surfaces_after_retries(self, make_racing_backend, fast_retry, sample_document):
        backend = make_racing_backend(losses=10)
        store = DocumentStore(backend, retry_config=fast_retry)
        project = await store.create_project("A")

        with pytest.raises(ConflictError):
            await store.write_versioned(project.project_id, sample_document)

        assert backend.commit_attempts == fast_retry.max_retries + 1
        assert (await store.get_project(project.project_id)).current_version == 0

    @pytest.mark.asyncio
    async def test_concurrent_saves_get_distinct_versions(self, store, sample_document):
        project = await store.create_project("A")

        results = await asyncio.gather(*[
            store.write_versioned(project.project_id, sample_document, f"writer {i}")
            for i in range(3)
        ])

        assert sorted(r.current_version for r in results) == [1, 2, 3]
        versions = await store.list_versions(project.project_id)
        assert [v.version_number for v in versions] == [3, 2, 1]
