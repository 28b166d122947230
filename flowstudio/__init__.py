"""
FlowStudio - Versioned Scene Generation Pipeline Core

Turns interpreted scripts into scene prompts and start-frame images,
keeping every stage in one versioned document per project.

Version: 1.0.0
"""

__version__ = "1.0.0"
__project__ = "FlowStudio"

# Load environment variables before anything reads settings
from flowstudio.core.env_loader import ensure_env_loaded
ensure_env_loaded()

from .core import get_settings, setup_logging, get_logger
from .document import DocumentStore, MemoryDocumentBackend, SupabaseDocumentBackend
from .phases import evaluate, phase_progress
from .assets import AssetArchiver, MemoryAssetStorage, SupabaseAssetStorage
from .pipelines import (
    BulkPromptGenerator,
    BulkImageGenerator,
    ProjectWorkflow,
    PromptStrategy,
    CancellationToken,
)

__all__ = [
    "__version__",
    "get_settings",
    "setup_logging",
    "get_logger",
    "DocumentStore",
    "MemoryDocumentBackend",
    "SupabaseDocumentBackend",
    "evaluate",
    "phase_progress",
    "AssetArchiver",
    "MemoryAssetStorage",
    "SupabaseAssetStorage",
    "BulkPromptGenerator",
    "BulkImageGenerator",
    "ProjectWorkflow",
    "PromptStrategy",
    "CancellationToken",
]
