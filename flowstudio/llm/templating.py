"""
Prompt templating for scene frame prompts.

Templates are stored in editor form (escaped ``\\n``) and use
``{{$json.path}}`` placeholders. Placeholders resolve against the flattened
scene data first, then against the document by dot path. Unknown
placeholders are left as written.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from flowstudio.core.constants import (
    GLOBAL_STYLE_KEY,
    PROJECT_METADATA_KEY,
    SCENE_STYLE_OVERRIDES_FIELD,
)
from flowstudio.core.exceptions import ValidationError
from flowstudio.document.model import deep_merge, get_elements, get_field, get_scenes

VARIABLE_PATTERN = re.compile(r"\{\{\s*\$json\.([^}\s]+)\s*\}\}")
_MISSING = object()

DEFAULT_SYSTEM_PROMPT = (
    "You write concise, visual image-generation prompts for the opening frame "
    "of film scenes. Describe subjects, setting, composition, lighting and "
    "style in a single paragraph. Keep each prompt under "
    "{{$json.max_prompt_length}} characters."
)

DEFAULT_USER_PROMPT = (
    "Scene: {{$json.natural_description}}\\n"
    "Action: {{$json.action_summary}}\\n"
    "Characters:\\n{{$json.characters_text}}\\n"
    "Locations:\\n{{$json.locations_text}}\\n"
    "Props:\\n{{$json.props_text}}\\n"
    "Staging:\\n{{$json.actions_text}}\\n"
    "Interactions:\\n{{$json.interactions_text}}\\n"
    "Camera: {{$json.camera_type}}\\n"
    "Palette: {{$json.color_primary}} / {{$json.color_secondary}}\\n"
    "Rendering: {{$json.line_work}}, {{$json.shading}}\\n"
    "Composition: {{$json.framing}}, {{$json.depth}}\\n"
    "Mood: {{$json.overall_mood}}"
)


@dataclass
class PromptTemplates:
    """System and per-scene user templates for frame prompt generation."""
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    user_prompt: str = DEFAULT_USER_PROMPT
    max_prompt_length: int = 800
    aspect_ratio: str = "16:9"

    @classmethod
    def from_dict(cls, data: dict) -> 'PromptTemplates':
        """Create from a stored configuration block."""
        return cls(
            system_prompt=data.get('system_prompt') or DEFAULT_SYSTEM_PROMPT,
            user_prompt=data.get('user_prompt') or DEFAULT_USER_PROMPT,
            max_prompt_length=data.get('max_prompt_length', 800),
            aspect_ratio=data.get('aspect_ratio', "16:9"),
        )


def format_for_llm(text: Optional[str]) -> str:
    """Unescape editor-stored ``\\n``, ``\\"`` and ``\\t`` sequences and trim."""
    if not text:
        return ""
    return (
        text.replace("\\n", "\n")
        .replace('\\"', '"')
        .replace("\\t", "\t")
        .strip()
    )


def _stringify(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


def inject_variables(
    template: str,
    document: Optional[Dict[str, Any]] = None,
    scene_id: Optional[str] = None,
    scene_data: Optional[Dict[str, Any]] = None
) -> str:
    """
    Replace ``{{$json.path}}`` placeholders, leaving unresolved ones intact.

    With ``scene_id`` and no ``scene_data``, the scene's own fields are
    looked up first.
    """
    if not template:
        return template
    if scene_data is None and scene_id is not None:
        scene = get_scenes(document).get(scene_id)
        scene_data = scene if isinstance(scene, dict) else None

    def replace(match: "re.Match") -> str:
        path = match.group(1)
        value = _MISSING
        if scene_data:
            value = get_field(scene_data, path, _MISSING)
        if value is _MISSING and document:
            value = get_field(document, path, _MISSING)
        if value is _MISSING or value is None:
            return match.group(0)
        return _stringify(value)

    return VARIABLE_PATTERN.sub(replace, template)


def find_variables(template: str) -> List[str]:
    """Placeholder paths used in a template, in order of appearance."""
    return VARIABLE_PATTERN.findall(template or "")


# =============================================================================
# SCENE DATA
# =============================================================================

def resolve_style(document: Dict[str, Any], scene: Dict[str, Any]) -> Dict[str, Any]:
    """Global style with the scene's ``style_overrides`` merged over it."""
    global_style = document.get(GLOBAL_STYLE_KEY)
    global_style = global_style if isinstance(global_style, dict) else {}
    overrides = scene.get(SCENE_STYLE_OVERRIDES_FIELD)
    if isinstance(overrides, dict) and overrides:
        return deep_merge(global_style, overrides)
    return dict(global_style)


def _scene_variant(element: Dict[str, Any], scene_id: str) -> Optional[Dict[str, Any]]:
    variants = element.get("variants_by_scene")
    if not isinstance(variants, dict):
        return None
    variant = variants.get(scene_id)
    return variant if isinstance(variant, dict) else None


def _variant_details(variant: Dict[str, Any], keys: Iterable[str]) -> str:
    return ", ".join(str(variant[k]) for k in keys if variant.get(k))


_VARIANT_FIELDS = {
    "location": ("Scene Context", ("view_angle", "focus_area", "lighting_state", "architectural_details")),
    "character": ("Scene Behavior", ("action", "position", "expression")),
    "prop": ("Scene State", ("state", "interaction_mode", "visibility")),
}


def _element_block(
    element_type: str,
    present: List[str],
    elements: Dict[str, Any],
    scene_id: str
) -> str:
    label, keys = _VARIANT_FIELDS[element_type]
    blocks = []
    for element_id in present:
        element = elements.get(element_id)
        if not isinstance(element, dict) or element.get("element_type") != element_type:
            continue
        text = str(element.get("base_description") or "")
        rules = element.get("consistency_rules")
        if isinstance(rules, list) and rules:
            text += f"\nConsistency Rules: {'; '.join(str(r) for r in rules)}"
        variant = _scene_variant(element, scene_id)
        if variant is not None:
            details = _variant_details(variant, keys)
            if details:
                text += f"\n{label}: {details}"
        blocks.append(text)
    return "\n\n".join(blocks)


def _actions_block(present: List[str], elements: Dict[str, Any], scene_id: str) -> str:
    lines = []
    for element_id in present:
        element = elements.get(element_id)
        if not isinstance(element, dict):
            continue
        variant = _scene_variant(element, scene_id)
        if variant is None:
            lines.append(f"{element_id}: in scene")
            continue

        element_type = element.get("element_type")
        if element_type == "character":
            line = f"{element_id}: {variant.get('action') or 'present'} at {variant.get('position') or 'in scene'}"
            if variant.get("props_interaction"):
                line += f"\nInteracting with: {variant['props_interaction']}"
        elif element_type == "location":
            line = f"{element_id}: positioned at {variant.get('camera_position') or 'in scene'}"
        elif element_type == "prop":
            line = f"{element_id}: positioned at {variant.get('position_relative') or 'in scene'}"
        else:
            line = f"{element_id}: in scene"
        lines.append(line)
    return "\n\n".join(lines)


def _interactions_block(interactions: Any) -> str:
    if not isinstance(interactions, list):
        return ""
    lines = []
    for interaction in interactions:
        if not isinstance(interaction, dict):
            continue
        lines.append(
            interaction.get("description")
            or " ".join(
                str(interaction.get(k, "")) for k in ("primary_element", "interaction_type", "secondary_element")
            ).strip()
        )
    return "\n".join(line for line in lines if line)


def build_scene_prompt_data(
    scene_id: str,
    document: Dict[str, Any],
    templates: Optional[PromptTemplates] = None
) -> Dict[str, Any]:
    """
    Flatten one scene into the variables used by prompt templates.

    Raises:
        ValidationError: The scene is missing or is not an object.
    """
    scene = get_scenes(document).get(scene_id)
    if not isinstance(scene, dict):
        raise ValidationError(f"Scene {scene_id} not found in document", {"scene_id": scene_id})

    templates = templates or PromptTemplates()
    elements = get_elements(document)
    present = scene.get("elements_present")
    present = [e for e in present if isinstance(e, str)] if isinstance(present, list) else []
    style = resolve_style(document, scene)
    metadata = document.get(PROJECT_METADATA_KEY)
    metadata = metadata if isinstance(metadata, dict) else {}

    def style_value(path: str) -> Any:
        return get_field(style, path, "") or ""

    return {
        "scene_id": scene_id,
        "project_title": metadata.get("title", ""),
        "max_prompt_length": templates.max_prompt_length,
        "aspect_ratio": templates.aspect_ratio,
        "natural_description": scene.get("natural_description") or "",
        "action_summary": scene.get("action_summary") or "",
        "dialogue": scene.get("dialogue") or "",
        "duration": scene.get("duration") or "",
        "mood": scene.get("mood") or "",
        "locations_text": _element_block("location", present, elements, scene_id),
        "characters_text": _element_block("character", present, elements, scene_id),
        "props_text": _element_block("prop", present, elements, scene_id),
        "actions_text": _actions_block(present, elements, scene_id),
        "interactions_text": _interactions_block(scene.get("element_interactions")),
        "camera_type": scene.get("camera_type") or "",
        "composition_approach": scene.get("composition_approach") or scene.get("lighting_approach") or "",
        "color_primary": _stringify(style_value("color_palette.primary")),
        "color_secondary": _stringify(style_value("color_palette.secondary")),
        "line_work": style_value("rendering_style.line_work"),
        "shading": style_value("rendering_style.shading"),
        "framing": style_value("composition.framing"),
        "depth": style_value("composition.depth"),
        "overall_mood": style_value("mood_style.overall_mood") or scene.get("mood") or "",
    }


def render_scene_prompt(
    scene_id: str,
    document: Dict[str, Any],
    templates: Optional[PromptTemplates] = None
) -> str:
    """User prompt for one scene, ready for a provider call."""
    templates = templates or PromptTemplates()
    scene_data = build_scene_prompt_data(scene_id, document, templates)
    return inject_variables(format_for_llm(templates.user_prompt), document, scene_data=scene_data)


def render_system_prompt(
    document: Dict[str, Any],
    templates: Optional[PromptTemplates] = None
) -> str:
    templates = templates or PromptTemplates()
    context = {
        "max_prompt_length": templates.max_prompt_length,
        "aspect_ratio": templates.aspect_ratio,
    }
    return inject_variables(format_for_llm(templates.system_prompt), document, scene_data=context)
