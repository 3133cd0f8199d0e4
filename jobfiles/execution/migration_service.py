"""
Import/Migration Scanner & Conflict Resolver.

Moves externally organized job files into the structured job root:
1. Scan a source tree for job-like files and recover company/role/text
2. Deduplicate candidates by (company, role, short text hash)
3. Check each proposed folder for collisions
4. Import: write job.json/job.txt, attach related files per policy
5. Persist the run's MigrationResult and log one bulk_import operation

Nothing under the source directory is ever modified.
"""

import json
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from jobfiles.config import (
    AttachmentMode,
    ConflictResolution,
    FolderNaming,
    ImportStatus,
    MigrationAction,
    OperationType,
    Settings,
)
from jobfiles.exceptions import ScanError
from jobfiles.execution.migration_log import MigrationLog, MigrationRecorder
from jobfiles.models import (
    BulkOperation,
    ConflictInfo,
    DetectedJob,
    FileManagementPolicy,
    ImportableJob,
    MigrationResult,
    OperationDetails,
    new_id,
    utc_now_iso,
)
from jobfiles.services.base_service import BaseService
from jobfiles.services.manifest_store import ConfigStore
from jobfiles.services.operations_log import OperationsLog
from jobfiles.utils.file_utils import atomic_write_json, copy_file, ensure_directory, remove_path, walk_directory
from jobfiles.utils.hashing import hash_content, hash_string_md5
from jobfiles.utils.string_utils import parse_job_filename, sanitize_folder_name


# Files every imported job folder receives
ARTIFACT_FILES = ("job.json", "job.txt")

SCAN_EXTENSIONS = {".txt", ".html"}
ATTACHMENT_EXTENSIONS = (".pdf", ".doc", ".docx")

COMPANY_PATTERNS = [
    re.compile(r'company:\s*(.+)', re.IGNORECASE),
    re.compile(r'employer:\s*(.+)', re.IGNORECASE),
    re.compile(r'@(\w+\.\w+)'),
]

ROLE_PATTERNS = [
    re.compile(r'position:\s*(.+)', re.IGNORECASE),
    re.compile(r'role:\s*(.+)', re.IGNORECASE),
    re.compile(r'job title:\s*(.+)', re.IGNORECASE),
    re.compile(r'title:\s*(.+)', re.IGNORECASE),
]

# Longest company/role value mined from a file body
MAX_FIELD_LENGTH = 100


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


class MigrationService(BaseService):
    """
    Scans legacy job folders and imports them under the job root.

    Example:
        service = MigrationService(operations_log=log)
        jobs = await service.scan_for_importable_jobs("/old/applications")
        jobs = await service.check_for_conflicts(jobs)
        result = await service.execute_import(jobs, handle_conflicts=False)
    """

    SERVICE_NAME = "migration_service"

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
    # Folder naming
    # -------------------------------------------------------------------------

    @staticmethod
    def _job_date(job: DetectedJob) -> str:
        if job.applied_date:
            return job.applied_date
        if job.fetched_at_iso:
            return job.fetched_at_iso.split("T")[0]
        return datetime.now(timezone.utc).date().isoformat()

    def generate_folder_name(self, job: DetectedJob) -> str:
        """
        Folder name for a job under the active naming policy.

        Example:
            >>> service.generate_folder_name(DetectedJob(company="Acme", role="Dev", applied_date="2024-03-01"))
            'Acme_Dev_20240301'
        """
        company = sanitize_folder_name(job.company or "Unknown_Company")
        role = sanitize_folder_name(job.role or "Unknown_Role")
        date = self._job_date(job).replace("-", "")

        if self.policy.folder_naming == FolderNaming.ROLE_COMPANY_DATE:
            return f"{role}_{company}_{date}"
        if self.policy.folder_naming == FolderNaming.DATE_COMPANY_ROLE:
            return f"{date}_{company}_{role}"
        return f"{company}_{role}_{date}"

    def compute_job_path(self, job: DetectedJob) -> Path:
        return self.root / self.generate_folder_name(job)

    def create_job_folder_preview(self, job: DetectedJob) -> Dict[str, Any]:
        """Describe where a job would land and which files it would get."""
        expected_files = list(ARTIFACT_FILES)
        if self.policy.attachment_mode == AttachmentMode.COPY:
            expected_files.extend(["resume.pdf", "jd.html", "snapshot-*.png"])

        return {
            "computed_path": str(self.compute_job_path(job)),
            "company": job.company or "Unknown Company",
            "role": job.role or "Unknown Role",
            "date": self._job_date(job),
            "attachment_handling": {
                "mode": self.policy.attachment_mode.value,
                "expected_files": expected_files,
            },
        }

    # -------------------------------------------------------------------------
    # Scanning
    # -------------------------------------------------------------------------

    @staticmethod
    def is_job_file(file_path: Path) -> bool:
        """Cheap name-based filter applied before a file is read."""
        name = file_path.name.lower()
        return (
            name == "job.json"
            or name.endswith(".json")
            or "job" in name
            or "jd" in name
            or file_path.suffix.lower() in SCAN_EXTENSIONS
        )

    def extract_job_info_from_content(self, file_path: Path, content: str) -> DetectedJob:
        """
        Recover job fields from a non-JSON file.

        The filename patterns win; the body is only searched for the fields
        the filename did not provide.
        """
        fields: Dict[str, str] = parse_job_filename(file_path.stem) or {}

        if len(content) > self.settings.scan_min_text_length:
            fields["jd_text"] = content[:self.settings.scan_text_limit]

        if not fields.get("company"):
            for pattern in COMPANY_PATTERNS:
                match = pattern.search(content)
                if match:
                    fields["company"] = match.group(1).strip()[:MAX_FIELD_LENGTH]
                    break

        if not fields.get("role"):
            for pattern in ROLE_PATTERNS:
                match = pattern.search(content)
                if match:
                    fields["role"] = match.group(1).strip()[:MAX_FIELD_LENGTH]
                    break

        return DetectedJob(**fields)

    def analyze_job_file(self, file_path: Path) -> Optional[ImportableJob]:
        """
        Build a candidate from one file, or None if nothing job-like is in it.
        """
        try:
            content = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            self.logger.debug("scan_file_unreadable", path=str(file_path), error=str(e))
            return None

        detected = DetectedJob()
        if file_path.suffix.lower() == ".json":
            try:
                parsed = json.loads(content)
            except json.JSONDecodeError:
                return None
            if isinstance(parsed, dict) and (parsed.get("uuid") or parsed.get("company") or parsed.get("role")):
                try:
                    detected = DetectedJob.model_validate(parsed)
                except ValidationError as e:
                    self.logger.debug("scan_json_invalid", path=str(file_path), error=str(e))
                    return None
        else:
            detected = self.extract_job_info_from_content(file_path, content)

        if not detected.is_recognizable():
            return None

        return ImportableJob(
            original_path=str(file_path),
            file_name=file_path.name,
            detected_job=detected,
            proposed_folder=str(self.compute_job_path(detected)),
        )

    @staticmethod
    def deduplication_key(job: ImportableJob) -> str:
        company = job.detected_job.company or ""
        role = job.detected_job.role or ""
        text = job.detected_job.jd_text or ""
        content_hash = hash_string_md5(text, length=8) if text else ""
        return f"{company}_{role}_{content_hash}".lower()

    def deduplicate(self, jobs: List[ImportableJob]) -> List[ImportableJob]:
        """Keep the first candidate per deduplication key."""
        seen = set()
        unique = []
        for job in jobs:
            key = self.deduplication_key(job)
            if key in seen:
                continue
            seen.add(key)
            unique.append(job)
        return unique

    def _scan(self, source_dir: Path) -> List[ImportableJob]:
        if not source_dir.is_dir():
            raise ScanError(f"Failed to scan directory: {source_dir} is not a readable directory")

        candidates = []
        for file_path in walk_directory(source_dir):
            if not self.is_job_file(file_path):
                continue
            job = self.analyze_job_file(file_path)
            if job is not None:
                candidates.append(job)
        return self.deduplicate(candidates)

    async def scan_for_importable_jobs(self, source_dir: Path) -> List[ImportableJob]:
        """
        Recursively scan a source tree for importable jobs.

        Raises:
            ScanError: The source directory does not exist or is not a directory
        """
        source_dir = Path(source_dir)
        self.logger.info("scan_started", source=str(source_dir))
        jobs = await self.run_blocking(self._scan, source_dir)
        self.logger.info("scan_complete", source=str(source_dir), candidates=len(jobs))
        return jobs

    # -------------------------------------------------------------------------
    # Conflicts
    # -------------------------------------------------------------------------

    @staticmethod
    def _find_conflicts(job: ImportableJob) -> List[ConflictInfo]:
        folder = Path(job.proposed_folder)
        stamp = _timestamp_ms()

        if folder.exists() and not folder.is_dir():
            return [ConflictInfo(type="invalid_path", conflict_path=str(folder))]

        conflicts = []
        if folder.is_dir():
            conflicts.append(ConflictInfo(
                type="folder_exists",
                conflict_path=str(folder),
                suggested_name=f"{folder}_{stamp}",
            ))

        for name in ARTIFACT_FILES:
            path = folder / name
            if path.exists():
                conflicts.append(ConflictInfo(
                    type="file_exists",
                    conflict_path=str(path),
                    suggested_name=f"{path.stem}_{stamp}{path.suffix}",
                ))
        return conflicts

    @staticmethod
    def _unclaimed_name(folder: str, claimed: Set[str]) -> str:
        stamp = _timestamp_ms()
        candidate = f"{folder}_{stamp}"
        while candidate in claimed or Path(candidate).exists():
            stamp += 1
            candidate = f"{folder}_{stamp}"
        return candidate

    def _check_batch(self, jobs: List[ImportableJob]) -> List[ImportableJob]:
        # Folders taken by earlier jobs of this batch, proposed or suggested
        claimed: Set[str] = set()
        checked = []
        for job in jobs:
            folder = job.proposed_folder
            conflicts = self._find_conflicts(job)
            has_folder_conflict = any(c.type in ("folder_exists", "invalid_path") for c in conflicts)
            if folder in claimed and not has_folder_conflict:
                conflicts.insert(0, ConflictInfo(type="folder_exists", conflict_path=folder))

            for conflict in conflicts:
                if conflict.type == "folder_exists":
                    if conflict.suggested_name is None or conflict.suggested_name in claimed:
                        conflict.suggested_name = self._unclaimed_name(folder, claimed)
                    claimed.add(conflict.suggested_name)
            claimed.add(folder)

            checked.append(job.model_copy(update={
                "conflicts": conflicts,
                "status": ImportStatus.CONFLICT if conflicts else ImportStatus.READY,
            }))
        return checked

    async def check_for_conflicts(self, jobs: List[ImportableJob]) -> List[ImportableJob]:
        """
        Return copies of the jobs marked ready or conflict.

        A job is ready exactly when its proposed folder does not exist yet
        and no earlier job in the same batch proposes it too.
        """
        checked = await self.run_blocking(self._check_batch, jobs)

        self.logger.info(
            "conflicts_checked",
            jobs=len(checked),
            conflicts=sum(1 for j in checked if j.status == ImportStatus.CONFLICT),
        )
        return checked

    # -------------------------------------------------------------------------
    # Import
    # -------------------------------------------------------------------------

    def _resolution_for(self, job: ImportableJob) -> ConflictResolution:
        chosen = next((c.resolution for c in job.conflicts if c.resolution), None)
        if chosen:
            return ConflictResolution(chosen)
        return self.policy.conflict_resolution

    def _target_folder_for(self, job: ImportableJob, resolution: ConflictResolution) -> Path:
        if resolution == ConflictResolution.RENAME:
            suggested = next(
                (c.suggested_name for c in job.conflicts if c.type == "folder_exists" and c.suggested_name),
                None,
            )
            return Path(suggested or f"{job.proposed_folder}_{_timestamp_ms()}")
        return Path(job.proposed_folder)

    @staticmethod
    def is_related_file(file_name: str, source_stem: str) -> bool:
        lower = file_name.lower()
        return (
            "resume" in lower
            or "cv" in lower
            or source_stem.lower() in lower
            or lower.endswith(ATTACHMENT_EXTENSIONS)
        )

    @staticmethod
    def normalize_attachment_filename(file_name: str) -> str:
        """Any resume/cv-like file becomes resume<ext>."""
        path = Path(file_name)
        stem = path.stem.lower()
        if "resume" in stem or "cv" in stem:
            return f"resume{path.suffix}"
        return file_name

    def find_related_files(self, source_path: Path) -> Dict[str, Path]:
        """
        Sibling files that look like attachments of the source job file.

        Returns:
            Mapping of normalized target filename to source path
        """
        related: Dict[str, Path] = {}
        try:
            siblings = sorted(source_path.parent.iterdir())
        except OSError as e:
            self.logger.warning("related_files_unreadable", path=str(source_path.parent), error=str(e))
            return related

        for sibling in siblings:
            if sibling == source_path or not sibling.is_file():
                continue
            if not self.is_related_file(sibling.name, source_path.stem):
                continue
            target_name = self.normalize_attachment_filename(sibling.name)
            if target_name in ARTIFACT_FILES or target_name in related:
                continue
            related[target_name] = sibling
        return related

    @staticmethod
    def generate_job_txt_content(job_data: Dict[str, Any]) -> str:
        lines = [
            f"Job Application: {job_data.get('role') or 'Unknown Role'}",
            f"Company: {job_data.get('company') or 'Unknown Company'}",
            f"Date Saved: {job_data['fetched_at_iso'].split('T')[0]}",
            f"Applied Date: {job_data.get('applied_date') or 'N/A'}",
            "",
        ]
        if job_data.get("source_url"):
            lines.extend([f"Source URL: {job_data['source_url']}", ""])
        if job_data.get("imported_from"):
            lines.extend([f"Imported from: {job_data['imported_from']}", ""])
        lines.extend(["Job Description:", "---", job_data.get("jd_text") or ""])
        return "\n".join(lines)

    def _import_single_job(
        self,
        job: ImportableJob,
        target_folder: Path,
        backup_folder: Optional[Path],
    ) -> Tuple[str, Dict[str, Any]]:
        """
        Write one job folder.

        Returns:
            Tuple of (job uuid, undo_data)
        """
        source_path = Path(job.original_path)
        detected = job.detected_job

        related = self.find_related_files(source_path)
        planned = [target_folder / name for name in ARTIFACT_FILES]
        if self.policy.attachment_mode == AttachmentMode.COPY:
            planned.extend(target_folder / name for name in related)

        folder_created = not target_folder.exists()
        ensure_directory(target_folder)

        overwritten = [p for p in planned if p.exists()]
        backup_location = None
        if overwritten and backup_folder is not None:
            backup_location = ensure_directory(backup_folder / job.id)
            for path in overwritten:
                copy_file(path, backup_location / path.name)

        now = utc_now_iso()
        attachment_paths: Dict[str, str] = {}
        copied: List[str] = []
        for name, source in related.items():
            if self.policy.attachment_mode == AttachmentMode.COPY:
                try:
                    copy_file(source, target_folder / name)
                except OSError as e:
                    self.logger.warning("attachment_copy_failed", source=str(source), error=str(e))
                    continue
                copied.append(str(target_folder / name))
            attachment_paths[name] = str(source)

        job_data = {
            "uuid": detected.uuid or new_id(),
            "company": detected.company,
            "role": detected.role,
            "jd_text": detected.jd_text or "",
            "source_url": detected.source_url,
            "fetched_at_iso": detected.fetched_at_iso or now,
            "applied_date": detected.applied_date,
            "content_hash": hash_content(detected.jd_text or ""),
            "capture_method": "manual",
            "imported_from": str(source_path),
            "imported_at": now,
            "attachment_mode": self.policy.attachment_mode.value,
            "attachment_paths": attachment_paths,
        }

        job_json = target_folder / "job.json"
        job_txt = target_folder / "job.txt"
        atomic_write_json(job_json, job_data)
        job_txt.write_text(self.generate_job_txt_content(job_data), encoding="utf-8")

        overwritten_names = {str(p) for p in overwritten}
        created = [str(p) for p in (job_json, job_txt)] + copied
        undo_data = {
            "target_folder": str(target_folder),
            "folder_created": folder_created,
            "created_files": [p for p in created if p not in overwritten_names],
            "overwritten_files": sorted(overwritten_names),
            "backup_location": str(backup_location) if backup_location else None,
        }
        return job_data["uuid"], undo_data

    async def execute_import(
        self,
        jobs: List[ImportableJob],
        handle_conflicts: bool = False,
        create_backup: Optional[bool] = None,
    ) -> MigrationResult:
        """
        Import jobs into the job root.

        Args:
            jobs: Candidates, usually returned by check_for_conflicts
            handle_conflicts: Import conflicting jobs instead of skipping them
            create_backup: Back up overwritten files (defaults to policy)

        Returns:
            MigrationResult with one log entry per job
        """
        if create_backup is None:
            create_backup = self.policy.create_backups

        operation_id = new_id()
        recorder = MigrationRecorder()

        backup_folder = None
        if create_backup:
            backup_folder = await self.run_blocking(
                ensure_directory, self.root / "_backups" / f"import_{operation_id}"
            )

        self.logger.info(
            "import_started",
            operation_id=operation_id,
            jobs=len(jobs),
            handle_conflicts=handle_conflicts,
        )

        created_folders: List[str] = []
        imported_sources: List[str] = []

        for job in jobs:
            resolution = self._resolution_for(job)
            if job.status == ImportStatus.CONFLICT and (
                not handle_conflicts or resolution == ConflictResolution.SKIP
            ):
                recorder.add_entry(MigrationAction.SKIP, job.original_path, job_id=job.id)
                self.logger.info("import_job_skipped", job_id=job.id, path=job.original_path)
                continue

            if job.status == ImportStatus.CONFLICT:
                target_folder = self._target_folder_for(job, resolution)
            else:
                target_folder = Path(job.proposed_folder)

            try:
                job_uuid, undo_data = await self.run_blocking(
                    self._import_single_job, job, target_folder, backup_folder
                )
            except Exception as e:
                job.status = ImportStatus.FAILED
                job.error_message = str(e)
                recorder.add_entry(
                    MigrationAction.ERROR,
                    job.original_path,
                    job_id=job.id,
                    error=str(e),
                )
                self.logger.warning("import_job_failed", job_id=job.id, path=job.original_path, error=str(e))
                continue

            job.status = ImportStatus.IMPORTED
            recorder.add_entry(
                MigrationAction.IMPORT,
                job.original_path,
                target_path=str(target_folder),
                job_id=job_uuid,
                can_undo=True,
                undo_data=undo_data,
            )
            imported_sources.append(job.original_path)
            if undo_data["folder_created"]:
                created_folders.append(str(target_folder))

        stats = recorder.statistics
        result = MigrationResult(
            operation_id=operation_id,
            total_files=len(jobs),
            successful=stats["successful"],
            failed=stats["failed"],
            skipped=stats["skipped"],
            log=recorder.entries,
            backup_folder=str(backup_folder) if backup_folder else None,
        )
        await self.run_blocking(self.migration_log.save_migration_result, result)

        undoable = recorder.undoable_entry_ids()
        await self.operations_log.log_operation(
            OperationType.BULK_IMPORT,
            OperationDetails(
                source_paths=imported_sources,
                target_paths=created_folders,
                migration_entries=undoable,
                user_action=f"Imported {result.successful} of {result.total_files} jobs",
            ),
            can_undo=bool(undoable),
        )

        self.logger.info("import_complete", operation_id=operation_id, **recorder.get_summary())
        return result

    @staticmethod
    def reverse_import(undo_data: Dict[str, Any]) -> str:
        """
        Reverse one import entry.

        A folder created by the import is removed recursively. Otherwise only
        the created files are removed and overwritten files are restored from
        the run's backup.

        Returns:
            Human-readable description of what was reverted
        """
        target_folder = Path(undo_data["target_folder"])
        if undo_data.get("folder_created", True):
            remove_path(target_folder)
            return f"Removed imported job folder: {target_folder}"

        for path in undo_data.get("created_files", []):
            remove_path(path)

        backup_location = undo_data.get("backup_location")
        restored = 0
        if backup_location:
            for path in undo_data.get("overwritten_files", []):
                backup = Path(backup_location) / Path(path).name
                if backup.is_file():
                    copy_file(backup, path)
                    restored += 1
        return f"Removed imported files from {target_folder}, restored {restored} from backup"

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    async def list_migration_runs(self) -> List[MigrationResult]:
        return await self.run_blocking(self.migration_log.list_migration_runs)

    async def list_bulk_operations(self, limit: int = 20) -> List[BulkOperation]:
        return await self.run_blocking(self.migration_log.list_bulk_operations, limit)
