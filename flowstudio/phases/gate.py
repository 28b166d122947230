"""
Phase Gate Evaluator

Computes which pipeline phases a project may enter from document content
alone. Nothing here is stored; call ``evaluate`` again after every
persisted change.

Phase graph:
    1 script_interpretation  always open
    2 element_images         open when ``scenes`` has at least one entry
    3 scene_generation       open when ``scenes`` has at least one entry
    4 scene_videos           open when every scene has a prompt and a start frame
    5 final_assembly         open when every scene has a video

Phases 2 and 3 check cardinality only, so malformed scene entries still
open them.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from flowstudio.core.constants import (
    PhaseName,
    PHASE_ORDER,
    PHASE_DISPLAY_NAMES,
    FINAL_OUTPUT_KEY,
    SCENE_PROMPT_FIELD,
    SCENE_IMAGE_FIELD,
    SCENE_VIDEO_FIELD,
)
from flowstudio.document.model import get_scenes


class PhaseStatus(Enum):
    """Computed state of one phase."""
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    COMPLETED = "completed"


@dataclass(frozen=True)
class PhaseState:
    """Gate result for a single phase."""
    phase: PhaseName
    index: int  # 1-based
    display_name: str
    can_proceed: bool
    completed: bool

    @property
    def status(self) -> PhaseStatus:
        if self.completed:
            return PhaseStatus.COMPLETED
        if self.can_proceed:
            return PhaseStatus.UNLOCKED
        return PhaseStatus.LOCKED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "index": self.index,
            "display_name": self.display_name,
            "can_proceed": self.can_proceed,
            "completed": self.completed,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class PhaseProgress:
    """Summary of how far a project has come."""
    completed_phases: int
    total_phases: int
    current_phase: PhaseName

    @property
    def percentage(self) -> float:
        return self.completed_phases / self.total_phases * 100


# =============================================================================
# PREDICATES
# =============================================================================

def _filled(scene: Any, field_name: str) -> bool:
    return isinstance(scene, dict) and bool(scene.get(field_name))


def _every_scene(document: Any, predicate: Callable[[Any], bool]) -> bool:
    scenes = get_scenes(document)
    return bool(scenes) and all(predicate(scene) for scene in scenes.values())


def has_scenes(document: Any) -> bool:
    """Phase 1 output exists."""
    return len(get_scenes(document)) > 0


def scene_generation_complete(document: Any) -> bool:
    """Every scene has both a frame prompt and a start frame."""
    return _every_scene(
        document,
        lambda scene: _filled(scene, SCENE_PROMPT_FIELD) and _filled(scene, SCENE_IMAGE_FIELD)
    )


def scene_videos_complete(document: Any) -> bool:
    """Every scene has a generated video."""
    return _every_scene(document, lambda scene: _filled(scene, SCENE_VIDEO_FIELD))


def final_assembly_complete(document: Any) -> bool:
    return isinstance(document, dict) and bool(document.get(FINAL_OUTPUT_KEY))


# =============================================================================
# EVALUATION
# =============================================================================

def evaluate(document: Optional[Dict[str, Any]]) -> List[PhaseState]:
    """
    Evaluate every phase gate for a document.

    Pure and deterministic. Missing or malformed ``scenes`` are treated as
    empty; this function never raises.

    Returns:
        One PhaseState per phase, in pipeline order
    """
    scenes_present = has_scenes(document)
    frames_done = scene_generation_complete(document)
    videos_done = scene_videos_complete(document)

    gates = {
        PhaseName.SCRIPT_INTERPRETATION: (True, scenes_present),
        # Element images are produced outside this core, so never reported complete.
        PhaseName.ELEMENT_IMAGES: (scenes_present, False),
        PhaseName.SCENE_GENERATION: (scenes_present, frames_done),
        PhaseName.SCENE_VIDEOS: (frames_done, videos_done),
        PhaseName.FINAL_ASSEMBLY: (videos_done, final_assembly_complete(document)),
    }

    return [
        PhaseState(
            phase=phase,
            index=i + 1,
            display_name=PHASE_DISPLAY_NAMES[phase],
            can_proceed=gates[phase][0],
            completed=gates[phase][1],
        )
        for i, phase in enumerate(PHASE_ORDER)
    ]


def get_phase_state(document: Optional[Dict[str, Any]], phase: PhaseName) -> PhaseState:
    for state in evaluate(document):
        if state.phase == phase:
            return state
    raise ValueError(f"Unknown phase: {phase}")


def can_proceed(document: Optional[Dict[str, Any]], phase: PhaseName) -> bool:
    """Whether the caller may enter ``phase``."""
    return get_phase_state(document, phase).can_proceed


def phase_progress(document: Optional[Dict[str, Any]]) -> PhaseProgress:
    """
    Count completed phases and find the phase to work on next.

    The current phase is the first open phase that is not yet complete,
    falling back to the last open phase when everything open is done.
    """
    states = evaluate(document)
    open_states = [s for s in states if s.can_proceed]
    current = next((s for s in open_states if not s.completed), open_states[-1])
    return PhaseProgress(
        completed_phases=sum(1 for s in states if s.completed),
        total_phases=len(states),
        current_phase=current.phase,
    )
