"""
Resume Manager - boundary operations over the versioned resume store.

Wires the ConfigStore, ManifestStore, VersioningService and OperationsLog
together. Each call reloads configuration and manifest from disk, mutates
them, rewrites the manifest as a whole and appends an operations-log entry.
"""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from jobfiles.config import ExtractionStatus, NamingFormat, OperationType, Settings
from jobfiles.exceptions import FileLifecycleError, ResumeNotFound, UnsupportedFileType, VersionNotFound
from jobfiles.models import ManifestEntry, OperationDetails, VersionEntry
from jobfiles.services.base_service import BaseService
from jobfiles.services.manifest_store import ConfigStore, ManifestStore
from jobfiles.services.operations_log import OperationsLog
from jobfiles.services.versioning_service import VersioningService, today_iso
from jobfiles.utils.file_utils import ensure_directory, get_file_extension
from jobfiles.utils.string_utils import sanitize_component


class ResumeManager(BaseService):
    """
    Upload, list, roll back and delete resume versions.

    Example:
        manager = ResumeManager()
        entry = await manager.upload_resume(
            "/downloads/cv.pdf", job_uuid, "Acme", "Engineer",
        )
        print(entry.active_version().managed_path)
    """

    SERVICE_NAME = "resume_manager"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        config_store: Optional[ConfigStore] = None,
        manifest_store: Optional[ManifestStore] = None,
        versioning: Optional[VersioningService] = None,
        operations_log: Optional[OperationsLog] = None,
    ):
        super().__init__(settings)
        self.config_store = config_store or ConfigStore(self.settings)
        self.manifest_store = manifest_store or ManifestStore(settings=self.settings)
        self.versioning = versioning or VersioningService(self.settings)
        self.operations_log = operations_log or OperationsLog(self.settings)
        # Serializes manifest read-modify-rewrite between coroutines of this process
        self._manifest_lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def validate_file_type(self, filename: str, supported: List[str]) -> str:
        """
        Return the lowercase extension, or raise before any I/O happens.

        Raises:
            UnsupportedFileType: The extension is not configured as supported
        """
        extension = get_file_extension(filename)
        if extension not in supported:
            raise UnsupportedFileType(extension, supported)
        return extension

    def generate_managed_filename(
        self,
        company: str,
        role: str,
        extension: str,
        person_name: str = "",
        naming_format: NamingFormat = NamingFormat.COMPANY_ROLE_DATE,
        now: Optional[datetime] = None,
    ) -> str:
        """
        Display name for a managed file under the configured naming format.

        Example:
            >>> manager.generate_managed_filename("Acme", "Dev Ops", ".pdf")
            'Acme_Dev_Ops_2024-01-01.pdf'
        """
        now = now or datetime.now()
        name = person_name.strip()
        name_section = f"_{sanitize_component(name)}" if name else ""
        stem = f"{sanitize_component(company)}_{sanitize_component(role)}{name_section}_{now.date().isoformat()}"
        if naming_format == NamingFormat.COMPANY_ROLE_DATE_TIME:
            stem = f"{stem}_{now.strftime('%H-%M-%S')}"
        return f"{stem}{extension}"

    def _require_entry(self, entries: List[ManifestEntry], resume_id: str) -> ManifestEntry:
        entry = next((e for e in entries if e.id == resume_id), None)
        if entry is None:
            raise ResumeNotFound(f"Resume {resume_id} not found in manifest")
        return entry

    # -------------------------------------------------------------------------
    # Upload
    # -------------------------------------------------------------------------

    async def _store_upload(
        self,
        file_path: Path,
        job_uuid: str,
        company: str,
        role: str,
        keep_original: bool,
        person_name: str,
    ) -> Tuple[ManifestEntry, VersionEntry, bool]:
        """
        Find-or-create the entry and add the file as its new active version.

        Returns:
            Tuple of (entry, new version, created flag)
        """
        config = await self.run_blocking(self.config_store.load_resume_config)
        extension = self.validate_file_type(file_path.name, config.supported_file_types)
        managed_folder = ensure_directory(config.managed_folder_path)

        safe_company = sanitize_component(company.strip())
        safe_role = sanitize_component(role.strip())
        date = today_iso()

        async with self._manifest_lock:
            entries = await self.run_blocking(self.manifest_store.load)
            entry = self.versioning.find_existing_entry(
                entries, job_uuid, safe_company, safe_role, date, extension
            )

            if entry is not None:
                version = await self.versioning.add_version_to_entry(
                    entry, file_path, managed_folder, file_path.name
                )
                created = False
            else:
                entry = await self.versioning.create_new_entry(
                    job_uuid,
                    safe_company,
                    safe_role,
                    extension,
                    file_path,
                    managed_folder,
                    file_path.name,
                    keep_original,
                    person_name=person_name,
                    date=date,
                )
                entries.append(entry)
                version = entry.versions[0]
                created = True

            await self.run_blocking(self.manifest_store.save, entries)

        if not keep_original:
            try:
                await self.run_blocking(file_path.unlink)
            except OSError as e:
                self.logger.warning("original_not_removed", path=str(file_path), error=str(e))

        return entry, version, created

    async def upload_resume(
        self,
        file_path: Path,
        job_uuid: str,
        company: str,
        role: str,
        keep_original: Optional[bool] = None,
        person_name: str = "",
    ) -> ManifestEntry:
        """
        Store a file as the newest active version of the job's resume slot.

        Args:
            file_path: Source file to copy into the managed folder
            job_uuid: Owning job
            company: Company name (sanitized for the filename)
            role: Role title (sanitized for the filename)
            keep_original: Leave the source in place (defaults to config)
            person_name: Optional name placed in the filename

        Returns:
            The created or updated ManifestEntry

        Raises:
            UnsupportedFileType: Extension not supported, nothing was written
            PermissionDenied: The managed folder is not writable
            InsufficientSpace: The disk filled up during the copy
            LockTimeout: The version lock could not be acquired
        """
        file_path = Path(file_path)
        if keep_original is None:
            config = await self.run_blocking(self.config_store.load_resume_config)
            keep_original = config.keep_original_default

        entry, version, created = await self._store_upload(
            file_path, job_uuid, company, role, keep_original, person_name
        )

        await self.operations_log.log_operation(
            OperationType.UPLOAD,
            OperationDetails(
                manifest_entries=[entry.id] if created else [],
                source_paths=[str(file_path)],
                target_paths=[version.managed_path],
                affected_files=[version.managed_path],
                job_uuid=job_uuid,
                user_action=f"Uploaded {file_path.name}",
            ),
            can_undo=True,
        )

        self.logger.info(
            "resume_uploaded",
            entry_id=entry.id,
            version_id=version.version_id,
            job_uuid=job_uuid,
            new_entry=created,
        )
        return entry

    async def bulk_upload(self, items: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Upload several files and log them as one bulk_import operation.

        Each item holds the upload_resume keyword arguments. Per-item
        failures are reported in the result rather than raised.

        Returns:
            Dict with uploaded entry ids, managed paths and per-item errors
        """
        created_entries: List[str] = []
        target_paths: List[str] = []
        source_paths: List[str] = []
        errors: List[Dict[str, str]] = []

        for item in items:
            file_path = Path(item["file_path"])
            keep_original = item.get("keep_original")
            try:
                if keep_original is None:
                    config = await self.run_blocking(self.config_store.load_resume_config)
                    keep_original = config.keep_original_default
                entry, version, created = await self._store_upload(
                    file_path,
                    item["job_uuid"],
                    item["company"],
                    item["role"],
                    keep_original,
                    item.get("person_name", ""),
                )
            except (FileLifecycleError, OSError) as e:
                self.logger.warning("bulk_upload_item_failed", path=str(file_path), error=str(e))
                errors.append({"file_path": str(file_path), "error": str(e)})
                continue

            if created:
                created_entries.append(entry.id)
            target_paths.append(version.managed_path)
            source_paths.append(str(file_path))

        operation_id = None
        if target_paths:
            operation_id = await self.operations_log.log_operation(
                OperationType.BULK_IMPORT,
                OperationDetails(
                    manifest_entries=created_entries,
                    source_paths=source_paths,
                    target_paths=target_paths,
                    affected_files=list(target_paths),
                    user_action=f"Bulk uploaded {len(target_paths)} resumes",
                ),
                can_undo=True,
            )

        self.logger.info(
            "bulk_upload_complete",
            uploaded=len(target_paths),
            failed=len(errors),
        )
        return {
            "operation_id": operation_id,
            "manifest_entries": created_entries,
            "target_paths": target_paths,
            "errors": errors,
        }

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_all_resumes(self) -> List[ManifestEntry]:
        return await self.run_blocking(self.manifest_store.load)

    async def get_resumes_by_job(self, job_uuid: str) -> List[ManifestEntry]:
        entries = await self.get_all_resumes()
        return [e for e in entries if e.job_uuid == job_uuid]

    async def get_resume_by_id(self, resume_id: str) -> Optional[ManifestEntry]:
        entries = await self.get_all_resumes()
        return next((e for e in entries if e.id == resume_id), None)

    async def get_version_history(self, resume_id: str) -> List[VersionEntry]:
        entries = await self.get_all_resumes()
        return self.versioning.get_version_history(self._require_entry(entries, resume_id))

    async def get_active_version(self, resume_id: str) -> Optional[VersionEntry]:
        entries = await self.get_all_resumes()
        return self.versioning.get_active_version(self._require_entry(entries, resume_id))

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def rollback_to_version(self, resume_id: str, target_version_id: str) -> VersionEntry:
        """
        Make a copy of an earlier version the new active version.

        Raises:
            ResumeNotFound: Unknown resume id
            VersionNotFound: Unknown version id
            VersionMissing: The target file is gone from disk
        """
        config = await self.run_blocking(self.config_store.load_resume_config)
        managed_folder = ensure_directory(config.managed_folder_path)

        async with self._manifest_lock:
            entries = await self.run_blocking(self.manifest_store.load)
            entry = self._require_entry(entries, resume_id)
            version = await self.versioning.rollback_to_version(entry, target_version_id, managed_folder)
            await self.run_blocking(self.manifest_store.save, entries)

        await self.operations_log.log_operation(
            OperationType.RESTORE,
            OperationDetails(
                manifest_entries=[entry.id],
                target_paths=[version.managed_path],
                job_uuid=entry.job_uuid,
                user_action=f"Rolled back to version {target_version_id}",
            ),
            can_undo=False,
        )
        return version

    async def delete_resume(self, resume_id: str) -> ManifestEntry:
        """
        Remove an entry and all its version files.

        File removal failures are logged as warnings. The deletion is logged
        but cannot be undone, as no backup is taken.
        """
        async with self._manifest_lock:
            entries = await self.run_blocking(self.manifest_store.load)
            entry = self._require_entry(entries, resume_id)

            removed = []
            for version in entry.versions:
                try:
                    await self.run_blocking(Path(version.managed_path).unlink)
                    removed.append(version.managed_path)
                except OSError as e:
                    self.logger.warning(
                        "managed_file_not_removed",
                        path=version.managed_path,
                        error=str(e),
                    )

            entries = [e for e in entries if e.id != resume_id]
            await self.run_blocking(self.manifest_store.save, entries)

        await self.operations_log.log_operation(
            OperationType.DELETE,
            OperationDetails(
                manifest_entries=[entry.id],
                affected_files=removed,
                job_uuid=entry.job_uuid,
                user_action=f"Deleted resume {entry.base_filename}",
            ),
            can_undo=False,
        )

        self.logger.info("resume_deleted", entry_id=entry.id, files_removed=len(removed))
        return entry

    async def update_extraction(
        self,
        resume_id: str,
        version_id: str,
        status: Union[ExtractionStatus, str],
        text: Optional[str] = None,
        error: Optional[str] = None,
        method: Optional[str] = None,
    ) -> VersionEntry:
        """
        Record a text-extraction result produced outside the engine.

        The entry-level latest_* fields follow the active version.

        Raises:
            ValueError: status is not pending, success or failed; nothing is saved
            ResumeNotFound: Unknown resume id
            VersionNotFound: Unknown version id
        """
        status = ExtractionStatus(status)

        async with self._manifest_lock:
            entries = await self.run_blocking(self.manifest_store.load)
            entry = self._require_entry(entries, resume_id)
            version = entry.find_version(version_id)
            if version is None:
                raise VersionNotFound(f"Version {version_id} not found in entry {resume_id}")

            version.extraction_status = status
            version.extracted_text = text
            version.extraction_error = error
            version.extraction_method = method

            if version.is_active:
                entry.latest_extracted_text = text
                entry.latest_extraction_status = status

            await self.run_blocking(self.manifest_store.save, entries)

        self.logger.info(
            "extraction_updated",
            entry_id=resume_id,
            version_id=version_id,
            status=status.value,
        )
        return version
