"""
FlowStudio Phases Module

Computed phase gates for the production pipeline.
"""

from .gate import (
    PhaseStatus,
    PhaseState,
    PhaseProgress,
    evaluate,
    can_proceed,
    get_phase_state,
    phase_progress,
    scene_generation_complete,
)

__all__ = [
    'PhaseStatus',
    'PhaseState',
    'PhaseProgress',
    'evaluate',
    'can_proceed',
    'get_phase_state',
    'phase_progress',
    'scene_generation_complete',
]
