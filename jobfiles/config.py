"""
Configuration management for the job file lifecycle engine.

Uses pydantic-settings for type-safe configuration with environment variable support.
Service-level configuration that users edit at runtime (managed folder, naming
format, attachment policy) lives in JSON documents handled by the ConfigStore.
"""

from enum import Enum
from pathlib import Path
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AttachmentMode(str, Enum):
    """Where a job's attachment files live."""
    COPY = "copy"            # files are copied into the job folder
    REFERENCE = "reference"  # job.json only stores paths to external files


class FolderNaming(str, Enum):
    """Naming policy for migrated job folders."""
    COMPANY_ROLE_DATE = "Company_Role_Date"
    ROLE_COMPANY_DATE = "Role_Company_Date"
    DATE_COMPANY_ROLE = "Date_Company_Role"


class NamingFormat(str, Enum):
    """Naming format for managed resume files."""
    COMPANY_ROLE_DATE = "Company_Role_Date"
    COMPANY_ROLE_DATE_TIME = "Company_Role_Date_Time"


class ConflictResolution(str, Enum):
    """How import conflicts are resolved."""
    RENAME = "rename"
    OVERWRITE = "overwrite"
    SKIP = "skip"
    PROMPT = "prompt"


class OperationType(str, Enum):
    """Operation kinds recorded in the operations log."""
    UPLOAD = "upload"
    BULK_IMPORT = "bulk_import"
    DELETE = "delete"
    RESTORE = "restore"
    RENAME = "rename"
    ROLLBACK = "rollback"


class MigrationAction(str, Enum):
    """Actions recorded in migration and bulk operation logs."""
    IMPORT = "import"
    COPY = "copy"
    REFERENCE = "reference"
    RENAME = "rename"
    SKIP = "skip"
    ERROR = "error"
    UNDO = "undo"


class ImportStatus(str, Enum):
    """Lifecycle of a job candidate found while scanning."""
    DETECTED = "detected"
    MAPPED = "mapped"
    CONFLICT = "conflict"
    READY = "ready"
    IMPORTED = "imported"
    FAILED = "failed"


class BulkOperationType(str, Enum):
    """Bulk attachment conversions."""
    COPY_TO_REFERENCE = "copy_to_reference"
    REFERENCE_TO_COPY = "reference_to_copy"


class BulkStatus(str, Enum):
    """Status of a bulk operation."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ExtractionStatus(str, Enum):
    """Outcome of a text extraction recorded against a version."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="JOBFILES_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # -------------------------------------------------------------------------
    # Paths
    # -------------------------------------------------------------------------
    data_dir: str = Field(default=".", description="Directory holding all persisted state")
    manifest_file: str = Field(default="resume-manifest.json", description="Resume manifest document")
    resume_config_file: str = Field(default="resume-config.json", description="Resume service configuration")
    file_management_config_file: str = Field(
        default="file-management-config.json",
        description="Attachment / migration policy document"
    )
    operations_log_file: str = Field(default="operations-log.json", description="Operations log document")
    lock_file: str = Field(default=".resume-versioning.lock", description="Advisory lock marker")
    managed_folder_name: str = Field(default="managed-resumes", description="Default managed folder")
    job_root_folder_name: str = Field(default="job-applications", description="Default job root folder")
    migration_log_folder_name: str = Field(default="migration-logs", description="Default migration log folder")

    # -------------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------------
    lock_timeout_seconds: float = Field(default=10.0, description="Max wait for the version lock")
    lock_retry_interval_seconds: float = Field(default=0.05, description="Delay between lock attempts")
    lock_max_age_seconds: float = Field(
        default=300.0,
        description="Markers older than this are considered stale regardless of owner"
    )

    # -------------------------------------------------------------------------
    # Operations Log
    # -------------------------------------------------------------------------
    max_log_entries: int = Field(default=1000, description="Hard cap on operations log entries")
    undoable_window: int = Field(default=10, description="Undoable operations returned per session")

    # -------------------------------------------------------------------------
    # Migration Scanner
    # -------------------------------------------------------------------------
    scan_text_limit: int = Field(default=5000, description="Characters of body text kept per candidate")
    scan_min_text_length: int = Field(default=50, description="Shorter bodies are not kept as text")

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[str] = Field(default=None, description="Log file path (optional)")
    log_json: bool = Field(default=True, description="Render logs as JSON instead of console text")

    # -------------------------------------------------------------------------
    # Computed Properties
    # -------------------------------------------------------------------------
    def _resolve(self, name: str) -> Path:
        path = Path(name)
        if path.is_absolute():
            return path
        return Path(self.data_dir) / path

    @property
    def manifest_path(self) -> Path:
        return self._resolve(self.manifest_file)

    @property
    def resume_config_path(self) -> Path:
        return self._resolve(self.resume_config_file)

    @property
    def file_management_config_path(self) -> Path:
        return self._resolve(self.file_management_config_file)

    @property
    def operations_log_path(self) -> Path:
        return self._resolve(self.operations_log_file)

    @property
    def lock_path(self) -> Path:
        return self._resolve(self.lock_file)

    @property
    def default_managed_folder(self) -> Path:
        """Managed folder used until the resume config overrides it."""
        return self._resolve(self.managed_folder_name)

    @property
    def default_job_root(self) -> Path:
        return self._resolve(self.job_root_folder_name)

    @property
    def default_migration_log_path(self) -> Path:
        return self._resolve(self.migration_log_folder_name)


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get the current settings instance."""
    return settings


def reload_settings() -> Settings:
    """Reload settings from environment."""
    global settings
    settings = Settings()
    return settings
