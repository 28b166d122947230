"""
FlowStudio Core Module

Contains configuration, constants, exceptions, logging and retry helpers.
"""

from .config import Settings, get_settings, LLMConfig, ImageParams
from .constants import PhaseName, PHASE_ORDER, PHASE_DISPLAY_NAMES
from .exceptions import *
from .logging_config import setup_logging, get_logger

__all__ = [
    'Settings',
    'get_settings',
    'LLMConfig',
    'ImageParams',
    'PhaseName',
    'PHASE_ORDER',
    'PHASE_DISPLAY_NAMES',
    'setup_logging',
    'get_logger',
]
