"""
FlowStudio Images Module

Image generation providers.
"""

from .providers import ImageProvider, GeneratedImage, FalImageProvider

__all__ = [
    'ImageProvider',
    'GeneratedImage',
    'FalImageProvider',
]
