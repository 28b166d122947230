"""
Tests for Document Model

Tests for flowstudio/document/model.py
"""

import json

import pytest

from flowstudio.core.exceptions import ValidationError
from flowstudio.document.model import (
    deep_merge,
    get_field,
    get_scenes,
    merge_scene_fields,
    new_document,
    normalize_document,
    parse_document,
    set_field,
    snapshot,
)


class TestParseDocument:
    """Tests for parse_document."""

    def test_parses_json_string(self, sample_document):
        parsed = parse_document(json.dumps(sample_document))

        assert parsed == sample_document

    def test_returns_copy_of_dict(self, sample_document):
        parsed = parse_document(sample_document)
        parsed["scenes"]["scene_1"]["mood"] = "changed"

        assert sample_document["scenes"]["scene_1"]["mood"] == "busy"

    def test_malformed_json_message_is_verbatim(self):
        payload = '{"scenes": {'
        with pytest.raises(json.JSONDecodeError) as parser_error:
            json.loads(payload)

        with pytest.raises(ValidationError) as exc_info:
            parse_document(payload)

        assert exc_info.value.message == str(parser_error.value)

    def test_non_object_root_rejected(self):
        with pytest.raises(ValidationError):
            parse_document("[1, 2, 3]")

    def test_scenes_must_be_object(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_document({"scenes": ["scene_1"]})

        assert exc_info.value.details == {"field": "scenes"}

    def test_missing_mappings_are_normalized(self):
        parsed = parse_document({"project_metadata": {"title": "x"}})

        assert parsed["scenes"] == {}
        assert parsed["elements"] == {}

    def test_null_scenes_normalized(self):
        assert parse_document({"scenes": None})["scenes"] == {}


class TestDocumentHelpers:
    """Tests for document construction and copying."""

    def test_new_document_shape(self):
        document = new_document("Pilot")

        assert document["scenes"] == {}
        assert document["elements"] == {}
        assert document["project_metadata"] == {"title": "Pilot"}
        assert "color_palette" in document["global_style"]

    def test_new_documents_do_not_share_style(self):
        first = new_document()
        first["global_style"]["color_palette"]["primary"].append("red")

        assert "red" not in new_document()["global_style"]["color_palette"]["primary"]

    def test_snapshot_is_deep(self, sample_document):
        copy = snapshot(sample_document)
        copy["scenes"]["scene_1"]["elements_present"].append("char_new")

        assert "char_new" not in sample_document["scenes"]["scene_1"]["elements_present"]

    def test_normalize_none(self):
        assert normalize_document(None) == {"scenes": {}, "elements": {}}

    def test_get_scenes_tolerates_garbage(self):
        assert get_scenes(None) == {}
        assert get_scenes({"scenes": "nope"}) == {}


class TestFieldAccess:
    """Tests for dot-path get_field/set_field."""

    def test_get_nested(self, sample_document):
        assert get_field(sample_document, "scenes.scene_2.mood") == "quiet"

    def test_get_list_index(self, sample_document):
        assert get_field(sample_document, "scenes.scene_1.elements_present.1") == "loc_market"

    def test_get_missing_returns_default(self, sample_document):
        assert get_field(sample_document, "scenes.scene_9.mood", "none") == "none"

    def test_set_creates_intermediates(self):
        document = new_document()

        set_field(document, "scenes.scene_1.mood", "tense")

        assert document["scenes"]["scene_1"] == {"mood": "tense"}

    def test_set_list_item(self, sample_document):
        set_field(sample_document, "scenes.scene_1.elements_present.0", "char_other")

        assert sample_document["scenes"]["scene_1"]["elements_present"][0] == "char_other"

    def test_empty_path_rejected(self):
        with pytest.raises(ValidationError):
            set_field({}, "", "value")


class TestMerging:
    """Tests for deep_merge and merge_scene_fields."""

    def test_deep_merge_nested(self):
        base = {"mood_style": {"overall_mood": "warm", "energy": "low"}, "framing": "wide"}
        merged = deep_merge(base, {"mood_style": {"overall_mood": "cold"}})

        assert merged == {"mood_style": {"overall_mood": "cold", "energy": "low"}, "framing": "wide"}
        assert base["mood_style"]["overall_mood"] == "warm"

    def test_merge_scene_fields_keeps_other_fields(self, sample_document):
        merge_scene_fields(sample_document, "scene_1", {"scene_start_frame": "https://x/1.png"})

        scene = sample_document["scenes"]["scene_1"]
        assert scene["scene_start_frame"] == "https://x/1.png"
        assert scene["mood"] == "busy"
