"""
FlowStudio Pipelines Module

Bulk prompt and image generation, and the per-project workflow.
"""

from .base import (
    PipelineStatus,
    BulkResult,
    SceneResult,
    SceneError,
    ProgressEvent,
    CompletedImage,
    CancellationToken,
)
from .prompt_pipeline import BulkPromptGenerator, PromptStrategy
from .image_pipeline import BulkImageGenerator, ImageRequest, build_image_requests
from .workflow import ProjectWorkflow

__all__ = [
    'PipelineStatus',
    'BulkResult',
    'SceneResult',
    'SceneError',
    'ProgressEvent',
    'CompletedImage',
    'CancellationToken',
    'BulkPromptGenerator',
    'PromptStrategy',
    'BulkImageGenerator',
    'ImageRequest',
    'build_image_requests',
    'ProjectWorkflow',
]
