"""
Persisted records for the file lifecycle engine.

Every record is a pydantic model that round-trips through a stable JSON
document. Timestamps are stored as ISO-8601 strings.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from jobfiles.config import (
    AttachmentMode,
    BulkOperationType,
    BulkStatus,
    ConflictResolution,
    ExtractionStatus,
    FolderNaming,
    ImportStatus,
    MigrationAction,
    NamingFormat,
    OperationType,
)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid4())


# -------------------------------------------------------------------------
# Configuration documents
# -------------------------------------------------------------------------

class ResumeConfig(BaseModel):
    """Resume service configuration (resume-config.json)."""
    managed_folder_path: str
    keep_original_default: bool = True
    supported_file_types: List[str] = Field(
        default_factory=lambda: [".pdf", ".doc", ".docx", ".rtf", ".txt"]
    )
    naming_format: NamingFormat = NamingFormat.COMPANY_ROLE_DATE


class FileManagementPolicy(BaseModel):
    """Attachment and migration policy (file-management-config.json)."""
    root_directory: str
    attachment_mode: AttachmentMode = AttachmentMode.COPY
    folder_naming: FolderNaming = FolderNaming.COMPANY_ROLE_DATE
    conflict_resolution: ConflictResolution = ConflictResolution.PROMPT
    create_backups: bool = True
    migration_log_path: str


# -------------------------------------------------------------------------
# Manifest
# -------------------------------------------------------------------------

class VersionEntry(BaseModel):
    """One physical file in the managed folder."""
    model_config = {"validate_assignment": True}

    version_id: str = Field(default_factory=new_id)
    version_suffix: str = ""
    managed_path: str
    file_checksum: str
    upload_timestamp: str = Field(default_factory=utc_now_iso)
    original_path: str
    original_filename: str
    mime_type: Optional[str] = None
    is_active: bool = True
    extracted_text: Optional[str] = None
    extraction_status: Optional[ExtractionStatus] = None
    extraction_error: Optional[str] = None
    extraction_method: Optional[str] = None


class FilenameComponents(BaseModel):
    company: str
    role: str
    date: str


class ManifestEntry(BaseModel):
    """One logical resume slot for a job."""
    model_config = {"validate_assignment": True}

    id: str = Field(default_factory=new_id)
    job_uuid: str
    base_filename: str
    filename_components: FilenameComponents
    file_extension: str
    keep_original: bool = True
    versions: List[VersionEntry] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now_iso)
    last_updated: str = Field(default_factory=utc_now_iso)
    latest_extracted_text: Optional[str] = None
    latest_extraction_status: Optional[ExtractionStatus] = None

    def active_version(self) -> Optional[VersionEntry]:
        return next((v for v in self.versions if v.is_active), None)

    def find_version(self, version_id: str) -> Optional[VersionEntry]:
        return next((v for v in self.versions if v.version_id == version_id), None)


# -------------------------------------------------------------------------
# Migration
# -------------------------------------------------------------------------

class DetectedJob(BaseModel):
    """Partial job fields recovered from a scanned file."""
    model_config = {"extra": "allow"}

    uuid: Optional[str] = None
    company: Optional[str] = None
    role: Optional[str] = None
    jd_text: Optional[str] = None
    applied_date: Optional[str] = None
    source_url: Optional[str] = None
    fetched_at_iso: Optional[str] = None

    def is_recognizable(self) -> bool:
        return bool(self.company or self.role or self.jd_text)


class ConflictInfo(BaseModel):
    type: Literal["folder_exists", "file_exists", "invalid_path"]
    conflict_path: str
    resolution: Optional[Literal["rename", "overwrite", "skip"]] = None
    suggested_name: Optional[str] = None


class ImportableJob(BaseModel):
    """A candidate discovered while scanning a source directory."""
    id: str = Field(default_factory=new_id)
    original_path: str
    file_name: str
    detected_job: DetectedJob = Field(default_factory=DetectedJob)
    proposed_folder: str
    status: ImportStatus = ImportStatus.DETECTED
    conflicts: List[ConflictInfo] = Field(default_factory=list)
    error_message: Optional[str] = None


class MigrationLogEntry(BaseModel):
    """A single migration or bulk-conversion action."""
    id: str = Field(default_factory=new_id)
    timestamp: str = Field(default_factory=utc_now_iso)
    action: MigrationAction
    source_path: str
    target_path: Optional[str] = None
    job_id: Optional[str] = None
    error: Optional[str] = None
    can_undo: bool = False
    undo_data: Optional[Dict[str, Any]] = None


class MigrationResult(BaseModel):
    operation_id: str = Field(default_factory=new_id)
    timestamp: str = Field(default_factory=utc_now_iso)
    total_files: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    log: List[MigrationLogEntry] = Field(default_factory=list)
    backup_folder: Optional[str] = None


class BulkProgress(BaseModel):
    total: int = 0
    completed: int = 0
    failed: int = 0


class BulkOperation(BaseModel):
    id: str = Field(default_factory=new_id)
    type: BulkOperationType
    target_jobs: List[str] = Field(default_factory=list)
    progress: BulkProgress = Field(default_factory=BulkProgress)
    status: BulkStatus = BulkStatus.PENDING
    log: List[MigrationLogEntry] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now_iso)
    backup_folder: Optional[str] = None


# -------------------------------------------------------------------------
# Operations log
# -------------------------------------------------------------------------

class OperationDetails(BaseModel):
    affected_files: Optional[List[str]] = None
    manifest_entries: Optional[List[str]] = None
    source_paths: Optional[List[str]] = None
    target_paths: Optional[List[str]] = None
    job_uuid: Optional[str] = None
    user_action: Optional[str] = None
    migration_entries: Optional[List[str]] = None


class OperationLogEntry(BaseModel):
    """Session-scoped audit record of a mutating operation."""
    id: str = Field(default_factory=new_id)
    operation_type: OperationType
    timestamp: str = Field(default_factory=utc_now_iso)
    details: OperationDetails = Field(default_factory=OperationDetails)
    can_undo: bool = False
    session_id: str
