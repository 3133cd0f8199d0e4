"""
Manifest Store - durable persistence of manifest entries and configuration.

The manifest and configuration files are whole JSON documents. Every save
rewrites the full document through a temp file + fsync + rename, so a crash
leaves either the previous or the new document on disk. A missing document
loads as empty / defaults.

Manifest items that fail validation are skipped on load but written back
unchanged on every save, and a manifest that cannot be parsed at all is
copied aside before it is first overwritten. Neither is ever silently lost.
"""

import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Tuple

import structlog
from pydantic import ValidationError

from jobfiles.config import Settings, get_settings
from jobfiles.models import FileManagementPolicy, ManifestEntry, ResumeConfig
from jobfiles.utils.file_utils import atomic_write_json, read_json


class ManifestStore:
    """Owns the list of ManifestEntry records."""

    def __init__(self, path: Optional[Path] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.path = Path(path or self.settings.manifest_path)
        self.logger = structlog.get_logger("manifest_store")

    def _read(self) -> Tuple[List[ManifestEntry], List[Any], bool]:
        """
        Parse the stored document.

        Returns:
            Tuple of (valid entries, raw items that failed validation,
            whether the document exists but is not a readable list)
        """
        raw = read_json(self.path, default=None)
        if raw is None:
            return [], [], self.path.exists()
        if not isinstance(raw, list):
            self.logger.warning("manifest_not_a_list", path=str(self.path))
            return [], [], True

        entries = []
        invalid = []
        for item in raw:
            try:
                entries.append(ManifestEntry.model_validate(item))
            except ValidationError as e:
                self.logger.warning("manifest_entry_invalid", path=str(self.path), error=str(e))
                invalid.append(item)
        return entries, invalid, False

    def load(self) -> List[ManifestEntry]:
        entries, _, _ = self._read()
        return entries

    def load_invalid(self) -> List[Any]:
        """Raw manifest items that are kept on disk but could not be loaded."""
        _, invalid, _ = self._read()
        return invalid

    def save(self, entries: List[ManifestEntry]) -> None:
        _, invalid, unreadable = self._read()
        if unreadable:
            aside = self.path.with_name(f"{self.path.name}.corrupt-{datetime.now().strftime('%Y%m%d%H%M%S%f')}")
            shutil.copy2(self.path, aside)
            self.logger.error("manifest_unreadable_copied_aside", path=str(self.path), copy=str(aside))
        if invalid:
            self.logger.warning("manifest_invalid_entries_kept", path=str(self.path), count=len(invalid))

        atomic_write_json(self.path, [e.model_dump(mode="json") for e in entries] + invalid)
        self.logger.debug("manifest_saved", path=str(self.path), entries=len(entries))

    def get(self, entry_id: str) -> Optional[ManifestEntry]:
        return next((e for e in self.load() if e.id == entry_id), None)

    def remove(self, entry_id: str) -> Optional[ManifestEntry]:
        """Drop an entry from the manifest (files are left untouched)."""
        entries = self.load()
        for index, entry in enumerate(entries):
            if entry.id == entry_id:
                del entries[index]
                self.save(entries)
                return entry
        return None


class ConfigStore:
    """Loads and saves the resume and file-management configuration documents."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.logger = structlog.get_logger("config_store")

    # -------------------------------------------------------------------------
    # Resume configuration
    # -------------------------------------------------------------------------

    def default_resume_config(self) -> ResumeConfig:
        return ResumeConfig(managed_folder_path=str(self.settings.default_managed_folder))

    def load_resume_config(self) -> ResumeConfig:
        defaults = self.default_resume_config().model_dump(mode="json")
        stored = read_json(self.settings.resume_config_path, default={})
        if not isinstance(stored, dict):
            stored = {}
        try:
            return ResumeConfig.model_validate({**defaults, **stored})
        except ValidationError as e:
            self.logger.warning("resume_config_invalid", error=str(e))
            return self.default_resume_config()

    def save_resume_config(self, config: ResumeConfig) -> None:
        atomic_write_json(self.settings.resume_config_path, config.model_dump(mode="json"))
        self.logger.info("resume_config_saved", managed_folder=config.managed_folder_path)

    # -------------------------------------------------------------------------
    # File management policy
    # -------------------------------------------------------------------------

    def default_policy(self) -> FileManagementPolicy:
        return FileManagementPolicy(
            root_directory=str(self.settings.default_job_root),
            migration_log_path=str(self.settings.default_migration_log_path),
        )

    def load_policy(self) -> FileManagementPolicy:
        defaults = self.default_policy().model_dump(mode="json")
        stored = read_json(self.settings.file_management_config_path, default={})
        if not isinstance(stored, dict):
            stored = {}
        try:
            return FileManagementPolicy.model_validate({**defaults, **stored})
        except ValidationError as e:
            self.logger.warning("file_management_config_invalid", error=str(e))
            return self.default_policy()

    def save_policy(self, policy: FileManagementPolicy) -> None:
        atomic_write_json(self.settings.file_management_config_path, policy.model_dump(mode="json"))
        self.logger.info("file_management_config_saved", root=policy.root_directory)
