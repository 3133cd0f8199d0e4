"""
Job Files Services.

Available services:
- LockCoordinator: Advisory lock serializing version-suffix assignment
- ManifestStore / ConfigStore: Whole-document JSON persistence
- VersioningService: Version assignment and rollback
- ResumeManager: Upload, list, rollback and delete resumes
- OperationsLog: Session-scoped audit trail

UndoService lives in jobfiles.services.undo_service; it depends on the
execution package and is not re-exported here.
"""

from jobfiles.services.base_service import BaseService
from jobfiles.services.lock_coordinator import LockCoordinator, LockHandle
from jobfiles.services.manifest_store import ConfigStore, ManifestStore
from jobfiles.services.versioning_service import VersioningService
from jobfiles.services.operations_log import OperationsLog
from jobfiles.services.resume_manager import ResumeManager

__all__ = [
    "BaseService",
    "LockCoordinator",
    "LockHandle",
    "ConfigStore",
    "ManifestStore",
    "VersioningService",
    "OperationsLog",
    "ResumeManager",
]
