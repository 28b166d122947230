"""
FlowStudio Constants

Global constants used throughout the FlowStudio core.
"""

from enum import Enum
from typing import Any, Dict

# =============================================================================
# VERSION INFO
# =============================================================================
VERSION = "1.0.0"
PROJECT_NAME = "FlowStudio"

# =============================================================================
# PHASES
# =============================================================================

class PhaseName(Enum):
    """Pipeline phases, in order."""
    SCRIPT_INTERPRETATION = "script_interpretation"
    ELEMENT_IMAGES = "element_images"
    SCENE_GENERATION = "scene_generation"
    SCENE_VIDEOS = "scene_videos"
    FINAL_ASSEMBLY = "final_assembly"


PHASE_ORDER = [
    PhaseName.SCRIPT_INTERPRETATION,
    PhaseName.ELEMENT_IMAGES,
    PhaseName.SCENE_GENERATION,
    PhaseName.SCENE_VIDEOS,
    PhaseName.FINAL_ASSEMBLY,
]

PHASE_DISPLAY_NAMES: Dict[PhaseName, str] = {
    PhaseName.SCRIPT_INTERPRETATION: "Script Interpretation",
    PhaseName.ELEMENT_IMAGES: "Element Images",
    PhaseName.SCENE_GENERATION: "Scene Generation",
    PhaseName.SCENE_VIDEOS: "Scene Videos",
    PhaseName.FINAL_ASSEMBLY: "Final Assembly",
}

# =============================================================================
# DOCUMENT FIELDS
# =============================================================================

SCENES_KEY = "scenes"
ELEMENTS_KEY = "elements"
GLOBAL_STYLE_KEY = "global_style"
PROJECT_METADATA_KEY = "project_metadata"
FINAL_OUTPUT_KEY = "final_output"

# Scene fields written by the generators. Each pair is always set together.
SCENE_PROMPT_FIELD = "scene_frame_prompt"
SCENE_PROMPT_METADATA_FIELD = "prompt_metadata"
SCENE_IMAGE_FIELD = "scene_start_frame"
SCENE_IMAGE_METADATA_FIELD = "frame_metadata"
SCENE_VIDEO_FIELD = "scene_video"
SCENE_STYLE_OVERRIDES_FIELD = "style_overrides"

DEFAULT_GLOBAL_STYLE: Dict[str, Any] = {
    "color_palette": {"primary": [], "secondary": []},
    "rendering_style": {"line_work": "", "shading": ""},
    "composition": {"framing": "", "depth": ""},
    "mood_style": {"overall_mood": ""},
}

# =============================================================================
# ASSET STORAGE
# =============================================================================

ASSET_TYPE_SCENE_IMAGE = "scene_image"
DEFAULT_STORAGE_BUCKET = "scene-images"
MAX_ASSET_BYTES = 10 * 1024 * 1024
STORAGE_CACHE_CONTROL = "3600"

CONTENT_TYPE_EXTENSIONS: Dict[str, str] = {
    "image/jpeg": "jpeg",
    "image/jpg": "jpeg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}
