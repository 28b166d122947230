"""
FlowStudio Document Module

Versioned per-project document storage.
"""

from .model import (
    parse_document,
    normalize_document,
    new_document,
    get_field,
    set_field,
    deep_merge,
)
from .backends import (
    DocumentBackend,
    MemoryDocumentBackend,
    SupabaseDocumentBackend,
    ProjectRecord,
    VersionRecord,
)
from .store import DocumentStore, WriteResult
from .backup import BackupManager, BackupData

__all__ = [
    'parse_document',
    'normalize_document',
    'new_document',
    'get_field',
    'set_field',
    'deep_merge',
    'DocumentBackend',
    'MemoryDocumentBackend',
    'SupabaseDocumentBackend',
    'ProjectRecord',
    'VersionRecord',
    'DocumentStore',
    'WriteResult',
    'BackupManager',
    'BackupData',
]
