"""
Attachment Mode Converter.

Converts jobs between the two attachment modes:
- copy:      attachment files live inside the job folder
- reference: job.json only stores paths to files kept elsewhere

In both modes job.json's attachment_paths maps an attachment filename to
its best-known location outside the job folder. Every converted job yields a
MigrationLogEntry whose undo_data is enough to reverse it.

Bulk runs tolerate per-job failures: the run is completed when at least
one job converted (or nothing failed) and failed otherwise.
"""

import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from jobfiles.config import (
    AttachmentMode,
    BulkOperationType,
    BulkStatus,
    MigrationAction,
    OperationType,
    Settings,
)
from jobfiles.exceptions import JobNotFound
from jobfiles.execution.migration_log import MigrationLog, MigrationRecorder
from jobfiles.models import (
    BulkOperation,
    BulkProgress,
    FileManagementPolicy,
    MigrationLogEntry,
    OperationDetails,
    utc_now_iso,
)
from jobfiles.services.base_service import BaseService
from jobfiles.services.manifest_store import ConfigStore
from jobfiles.services.operations_log import OperationsLog
from jobfiles.utils.file_utils import atomic_write_json, copy_file, ensure_directory, remove_path


METADATA_FILES = {"job.json", "job.txt"}
BACKUPS_FOLDER = "_backups"


def load_job(job_path: Path) -> Dict[str, Any]:
    with open(job_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Job file is not a JSON object: {job_path}")
    return data


def _same_file(a: Path, b: Path) -> bool:
    return a.resolve() == b.resolve()


class AttachmentModeConverter(BaseService):
    """
    Bulk copy <-> reference conversion of job attachments.

    Example:
        converter = AttachmentModeConverter(operations_log=log)
        operation = await converter.copy_to_reference([job_uuid])
        print(operation.status, operation.progress.completed)
    """

    SERVICE_NAME = "attachment_converter"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        policy: Optional[FileManagementPolicy] = None,
        operations_log: Optional[OperationsLog] = None,
    ):
        super().__init__(settings)
        self.policy = policy or ConfigStore(self.settings).load_policy()
        self.operations_log = operations_log or OperationsLog(self.settings)
        self.migration_log = MigrationLog(self.policy.migration_log_path)
        self.root = Path(self.policy.root_directory)

    # -------------------------------------------------------------------------
    # Locating jobs
    # -------------------------------------------------------------------------

    @staticmethod
    def _uuid_matches(job_path: Path, job_id: str) -> bool:
        try:
            return load_job(job_path).get("uuid") == job_id
        except (OSError, ValueError):
            return False

    def find_job_file(self, job_id: str) -> Path:
        """
        Locate a job's job.json by uuid.

        Search order: <root>/<uuid>.json, <root>/*/job.json, <root>/*/*/job.json.

        Raises:
            JobNotFound: No job file carries the uuid
        """
        direct = self.root / f"{job_id}.json"
        if direct.is_file():
            return direct

        if self.root.is_dir():
            folders = sorted(p for p in self.root.iterdir() if p.is_dir() and p.name != BACKUPS_FOLDER)
            for folder in folders:
                candidate = folder / "job.json"
                if candidate.is_file() and self._uuid_matches(candidate, job_id):
                    return candidate
            for folder in folders:
                for sub in sorted(p for p in folder.iterdir() if p.is_dir()):
                    candidate = sub / "job.json"
                    if candidate.is_file() and self._uuid_matches(candidate, job_id):
                        return candidate

        raise JobNotFound(f"Job file not found for ID: {job_id}")

    @staticmethod
    def _is_flat(job_path: Path) -> bool:
        return job_path.name != "job.json"

    def _attachment_files(self, job_path: Path, job_data: Dict[str, Any]) -> List[Path]:
        """
        Attachment files currently stored next to the job file.

        A flat <uuid>.json job shares its folder with other jobs, so only the
        files named in its attachment_paths belong to it.
        """
        job_dir = job_path.parent
        if self._is_flat(job_path):
            names = sorted((job_data.get("attachment_paths") or {}).keys())
            return [job_dir / n for n in names if (job_dir / n).is_file()]

        return sorted(
            p for p in job_dir.iterdir()
            if p.is_file() and p.name not in METADATA_FILES and not p.name.startswith(".")
        )

    # -------------------------------------------------------------------------
    # Per-job conversions
    # -------------------------------------------------------------------------

    def _backup_job_file(self, job_path: Path, job_id: str, backup_folder: Optional[Path]) -> Optional[Path]:
        if backup_folder is None:
            return None
        job_backup = ensure_directory(backup_folder / job_id)
        copy_file(job_path, job_backup / "job.json")
        return job_backup

    def convert_copy_to_reference(
        self,
        job_id: str,
        backup_folder: Optional[Path] = None,
    ) -> Tuple[Path, Dict[str, Any]]:
        """
        Move one job to reference mode.

        Each attachment is referenced at its recorded external location when
        that file still exists. Otherwise the backup copy becomes the
        reference. Without a backup such a file is kept in place so no bytes
        are lost.

        Returns:
            Tuple of (job file path, undo_data)
        """
        job_path = self.find_job_file(job_id)
        job_data = load_job(job_path)
        job_uuid = job_data.get("uuid", job_id)
        original_references = dict(job_data.get("attachment_paths") or {})

        job_backup = self._backup_job_file(job_path, job_uuid, backup_folder)

        attachment_paths: Dict[str, str] = {}
        removed_files: List[str] = []
        kept_files: List[str] = []

        for file_path in self._attachment_files(job_path, job_data):
            name = file_path.name
            if job_backup is not None:
                copy_file(file_path, job_backup / name)

            recorded = original_references.get(name)
            external = Path(recorded) if recorded else None
            if external is not None and external.is_file() and not _same_file(external, file_path):
                attachment_paths[name] = str(external)
            elif job_backup is not None:
                attachment_paths[name] = str(job_backup / name)
            else:
                attachment_paths[name] = str(file_path)
                kept_files.append(str(file_path))
                continue

            file_path.unlink()
            removed_files.append(str(file_path))

        for name, recorded in original_references.items():
            attachment_paths.setdefault(name, recorded)

        job_data.update({
            "attachment_mode": AttachmentMode.REFERENCE.value,
            "attachment_paths": attachment_paths,
            "converted_to_reference": True,
            "converted_at": utc_now_iso(),
        })
        job_data.pop("converted_to_copy", None)
        atomic_write_json(job_path, job_data)

        undo_data = {
            "original_attachment_mode": AttachmentMode.COPY.value,
            "removed_files": removed_files,
            "kept_files": kept_files,
            "backup_location": str(job_backup) if job_backup else None,
            "original_references": original_references,
        }
        return job_path, undo_data

    def convert_reference_to_copy(
        self,
        job_id: str,
        backup_folder: Optional[Path] = None,
    ) -> Tuple[Path, Dict[str, Any]]:
        """
        Move one job to copy mode.

        A reference that cannot be copied stays in attachment_paths, and an
        existing different file with the same name is never overwritten.

        Returns:
            Tuple of (job file path, undo_data)
        """
        job_path = self.find_job_file(job_id)
        job_data = load_job(job_path)
        job_uuid = job_data.get("uuid", job_id)
        original_references = dict(job_data.get("attachment_paths") or {})

        self._backup_job_file(job_path, job_uuid, backup_folder)

        job_dir = job_path.parent
        copied_files: List[str] = []
        failed_files: List[str] = []

        for name, reference in original_references.items():
            source = Path(reference)
            target = job_dir / name
            if target.exists():
                if not _same_file(source, target):
                    self.logger.warning("attachment_target_exists", job_id=job_uuid, target=str(target))
                continue
            try:
                copy_file(source, target)
            except OSError as e:
                self.logger.warning(
                    "referenced_file_not_copied",
                    job_id=job_uuid,
                    reference=reference,
                    error=str(e),
                )
                failed_files.append(reference)
                continue
            copied_files.append(str(target))

        job_data.update({
            "attachment_mode": AttachmentMode.COPY.value,
            "attachment_paths": original_references,
            "converted_to_copy": True,
            "converted_at": utc_now_iso(),
        })
        job_data.pop("converted_to_reference", None)
        atomic_write_json(job_path, job_data)

        undo_data = {
            "original_attachment_mode": AttachmentMode.REFERENCE.value,
            "copied_files": copied_files,
            "failed_files": failed_files,
            "original_references": original_references,
        }
        return job_path, undo_data

    # -------------------------------------------------------------------------
    # Bulk runs
    # -------------------------------------------------------------------------

    async def _run_bulk(
        self,
        operation_type: BulkOperationType,
        action: MigrationAction,
        convert: Callable[[str, Optional[Path]], Tuple[Path, Dict[str, Any]]],
        job_ids: List[str],
        create_backup: bool,
    ) -> BulkOperation:
        operation = BulkOperation(
            type=operation_type,
            target_jobs=list(job_ids),
            progress=BulkProgress(total=len(job_ids)),
            status=BulkStatus.RUNNING,
        )

        backup_folder = None
        if create_backup:
            backup_folder = await self.run_blocking(
                ensure_directory,
                self.root / BACKUPS_FOLDER / f"bulk_{operation_type.value}_{operation.id}",
            )
            operation.backup_folder = str(backup_folder)

        self.logger.info(
            "bulk_conversion_started",
            operation_id=operation.id,
            type=operation_type.value,
            jobs=len(job_ids),
        )

        recorder = MigrationRecorder()
        for job_id in job_ids:
            try:
                job_path, undo_data = await self.run_blocking(convert, job_id, backup_folder)
            except Exception as e:
                recorder.add_entry(MigrationAction.ERROR, job_id, job_id=job_id, error=str(e))
                self.logger.warning("job_conversion_failed", job_id=job_id, error=str(e))
                continue

            recorder.add_entry(
                action,
                str(job_path),
                target_path=str(job_path),
                job_id=job_id,
                can_undo=True,
                undo_data=undo_data,
            )

        successful = recorder.statistics["successful"]
        failed = recorder.statistics["failed"]
        operation.log = recorder.entries
        operation.progress = BulkProgress(total=len(job_ids), completed=successful, failed=failed)
        operation.status = BulkStatus.COMPLETED if successful > 0 or failed == 0 else BulkStatus.FAILED

        await self.run_blocking(self.migration_log.save_bulk_operation, operation)

        undoable = recorder.undoable_entry_ids()
        await self.operations_log.log_operation(
            OperationType.RENAME,
            OperationDetails(
                target_paths=[e.target_path for e in recorder.entries if e.can_undo],
                migration_entries=undoable,
                user_action=f"Bulk {operation_type.value}: {successful} converted, {failed} failed",
            ),
            can_undo=bool(undoable),
        )

        self.logger.info(
            "bulk_conversion_complete",
            operation_id=operation.id,
            status=operation.status.value,
            completed=successful,
            failed=failed,
        )
        return operation

    async def copy_to_reference(self, job_ids: List[str], create_backup: bool = True) -> BulkOperation:
        """Convert jobs from copy mode to reference mode."""
        return await self._run_bulk(
            BulkOperationType.COPY_TO_REFERENCE,
            MigrationAction.REFERENCE,
            self.convert_copy_to_reference,
            job_ids,
            create_backup,
        )

    async def reference_to_copy(self, job_ids: List[str], create_backup: bool = True) -> BulkOperation:
        """Convert jobs from reference mode to copy mode."""
        return await self._run_bulk(
            BulkOperationType.REFERENCE_TO_COPY,
            MigrationAction.COPY,
            self.convert_reference_to_copy,
            job_ids,
            create_backup,
        )

    # -------------------------------------------------------------------------
    # Reversal
    # -------------------------------------------------------------------------

    @staticmethod
    def reverse_conversion(entry: MigrationLogEntry) -> str:
        """
        Reverse one conversion entry using its undo_data.

        Returns:
            Human-readable description of what was reverted
        """
        undo_data = entry.undo_data or {}
        job_path = Path(entry.target_path)
        job_dir = job_path.parent
        original_mode = undo_data.get("original_attachment_mode")

        if original_mode == AttachmentMode.COPY.value:
            backup_location = undo_data.get("backup_location")
            if backup_location and Path(backup_location).is_dir():
                for backup in sorted(Path(backup_location).iterdir()):
                    if backup.is_file():
                        target = job_path if backup.name == "job.json" else job_dir / backup.name
                        copy_file(backup, target)
            else:
                current = load_job(job_path).get("attachment_paths") or {}
                for removed in undo_data.get("removed_files", []):
                    name = Path(removed).name
                    if name in current:
                        copy_file(current[name], removed)

            job_data = load_job(job_path)
            job_data["attachment_mode"] = AttachmentMode.COPY.value
            job_data["attachment_paths"] = undo_data.get("original_references", {})
            job_data.pop("converted_to_reference", None)
            job_data.pop("converted_at", None)
            atomic_write_json(job_path, job_data)
            return f"Restored attachments of {job_path} and copy mode"

        if original_mode == AttachmentMode.REFERENCE.value:
            for copied in undo_data.get("copied_files", []):
                remove_path(copied)

            job_data = load_job(job_path)
            job_data["attachment_mode"] = AttachmentMode.REFERENCE.value
            job_data["attachment_paths"] = undo_data.get("original_references", {})
            job_data.pop("converted_to_copy", None)
            job_data.pop("converted_at", None)
            atomic_write_json(job_path, job_data)
            return f"Removed copied attachments of {job_path} and restored references"

        raise ValueError(f"No undo data available for entry {entry.id}")
