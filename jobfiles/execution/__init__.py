"""
Execution package for Job Files.

Handles bulk file operations over the job root:
- Scanning legacy folders for importable jobs
- Conflict detection and import
- Attachment mode conversion (copy <-> reference)
- Migration and bulk operation logs
"""

from jobfiles.execution.migration_log import MigrationLog, MigrationRecorder
from jobfiles.execution.migration_service import MigrationService
from jobfiles.execution.attachment_converter import AttachmentModeConverter

__all__ = [
    "MigrationLog",
    "MigrationRecorder",
    "MigrationService",
    "AttachmentModeConverter",
]
