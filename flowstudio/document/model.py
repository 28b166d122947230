"""
Project document helpers.

A project document is a plain JSON-compatible dict holding ``scenes``,
``elements``, ``global_style`` and ``project_metadata``. Helpers here
parse, normalize, copy and edit documents without ever coercing a
malformed payload into a valid one.
"""

import copy
import json
from typing import Any, Dict, List, Optional, Union

from flowstudio.core.constants import (
    SCENES_KEY,
    ELEMENTS_KEY,
    GLOBAL_STYLE_KEY,
    PROJECT_METADATA_KEY,
    DEFAULT_GLOBAL_STYLE,
)
from flowstudio.core.exceptions import ValidationError

DocumentInput = Union[Dict[str, Any], str, bytes]

_MAPPING_FIELDS = (SCENES_KEY, ELEMENTS_KEY)


def parse_document(payload: DocumentInput) -> Dict[str, Any]:
    """
    Parse and validate a document payload.

    Accepts a dict or a JSON string. Raises ValidationError carrying the
    parser message verbatim when the JSON is malformed, and when the root,
    ``scenes`` or ``elements`` are not mappings.

    Returns:
        A normalized deep copy of the document
    """
    if isinstance(payload, (str, bytes)):
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ValidationError(str(e), {"line": e.lineno, "column": e.colno})
    else:
        data = payload

    if not isinstance(data, dict):
        raise ValidationError(
            f"Document root must be an object, got {type(data).__name__}"
        )

    for key in _MAPPING_FIELDS:
        value = data.get(key)
        if value is not None and not isinstance(value, dict):
            raise ValidationError(
                f"'{key}' must be an object, got {type(value).__name__}",
                {"field": key}
            )

    try:
        return normalize_document(json.loads(json.dumps(data)))
    except (TypeError, ValueError) as e:
        raise ValidationError(str(e))


def normalize_document(document: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Ensure ``scenes`` and ``elements`` are mappings. Mutates and returns ``document``."""
    if document is None:
        document = {}
    for key in _MAPPING_FIELDS:
        if not isinstance(document.get(key), dict):
            document[key] = {}
    return document


def new_document(name: str = "") -> Dict[str, Any]:
    """Create an empty project document."""
    return {
        SCENES_KEY: {},
        ELEMENTS_KEY: {},
        GLOBAL_STYLE_KEY: copy.deepcopy(DEFAULT_GLOBAL_STYLE),
        PROJECT_METADATA_KEY: {"title": name} if name else {},
    }


def snapshot(document: Dict[str, Any]) -> Dict[str, Any]:
    """Deep copy a document so later edits never reach stored history."""
    return copy.deepcopy(document)


def get_scenes(document: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Return the scenes mapping, treating missing or malformed values as empty."""
    if not isinstance(document, dict):
        return {}
    scenes = document.get(SCENES_KEY)
    return scenes if isinstance(scenes, dict) else {}


def get_elements(document: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not isinstance(document, dict):
        return {}
    elements = document.get(ELEMENTS_KEY)
    return elements if isinstance(elements, dict) else {}


# =============================================================================
# DOT-PATH FIELD ACCESS
# =============================================================================

def _split_path(path: str) -> List[str]:
    parts = [p for p in path.split('.') if p]
    if not parts:
        raise ValidationError(f"Invalid field path: '{path}'")
    return parts


def get_field(document: Dict[str, Any], path: str, default: Any = None) -> Any:
    """
    Read a value by dot path, e.g. ``scenes.scene_1.mood``.

    List segments may be addressed by integer index.
    """
    current: Any = document
    for part in _split_path(path):
        if isinstance(current, dict):
            if part not in current:
                return default
            current = current[part]
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return default
            current = current[index]
        else:
            return default
    return current


def set_field(document: Dict[str, Any], path: str, value: Any) -> Dict[str, Any]:
    """
    Write a value by dot path, creating intermediate objects as needed.

    Raises ValidationError when an intermediate segment is a scalar.
    """
    parts = _split_path(path)
    current: Any = document
    for i, part in enumerate(parts[:-1]):
        if isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
            continue
        if not isinstance(current, dict):
            raise ValidationError(
                f"Cannot set '{path}': '{'.'.join(parts[:i])}' is not an object",
                {"path": path}
            )
        if not isinstance(current.get(part), (dict, list)):
            current[part] = {}
        current = current[part]

    last = parts[-1]
    if isinstance(current, list) and last.isdigit() and int(last) < len(current):
        current[int(last)] = value
    elif isinstance(current, dict):
        current[last] = value
    else:
        raise ValidationError(f"Cannot set '{path}': parent is not an object", {"path": path})
    return document


def deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Return a new dict with ``overrides`` merged recursively over ``base``."""
    result = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def merge_scene_fields(
    document: Dict[str, Any],
    scene_id: str,
    fields: Dict[str, Any]
) -> None:
    """Overwrite fields of one scene in place. Other scene fields are kept."""
    scenes = normalize_document(document)[SCENES_KEY]
    scene = scenes.get(scene_id)
    if not isinstance(scene, dict):
        scene = {}
        scenes[scene_id] = scene
    scene.update(fields)
