"""
FlowStudio Assets Module

Durable archiving of generated images.
"""

from .storage import AssetRecord, AssetStorage, MemoryAssetStorage, SupabaseAssetStorage
from .archiver import AssetArchiver, ArchiveResult, build_storage_path

__all__ = [
    'AssetRecord',
    'AssetStorage',
    'MemoryAssetStorage',
    'SupabaseAssetStorage',
    'AssetArchiver',
    'ArchiveResult',
    'build_storage_path',
]
