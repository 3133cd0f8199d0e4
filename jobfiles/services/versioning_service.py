"""
Version Assignment & Rollback Engine.

Stores resume uploads as immutable, ordered versions in the managed folder:
1. Find the first free suffix ("", "_v1", "_v2", ...) under the lock
2. Copy the source bytes to the managed name while still holding the lock
3. Checksum the copy and record an active VersionEntry
4. Deactivate every earlier version of the entry

Rollback never reverts in place: it copies the target version to a fresh
suffix and activates the copy, so history is only ever appended to.
"""

import mimetypes
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from jobfiles.config import Settings
from jobfiles.exceptions import VersionMissing, VersionNotFound
from jobfiles.models import FilenameComponents, ManifestEntry, VersionEntry, utc_now_iso
from jobfiles.services.base_service import BaseService
from jobfiles.services.lock_coordinator import LockCoordinator
from jobfiles.utils.file_utils import copy_file, ensure_directory
from jobfiles.utils.hashing import hash_file
from jobfiles.utils.string_utils import build_base_filename


def version_suffix(number: int) -> str:
    """Suffix for the n-th collision: 0 -> "", 1 -> "_v1", ..."""
    return "" if number == 0 else f"_v{number}"


def today_iso() -> str:
    """Today's UTC date as YYYY-MM-DD."""
    return datetime.now(timezone.utc).date().isoformat()


class VersioningService(BaseService):
    """
    Assigns collision-free version names and records versions on manifest entries.

    Entries are mutated in place; persisting them is the caller's job.
    """

    SERVICE_NAME = "versioning_service"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        lock: Optional[LockCoordinator] = None,
    ):
        super().__init__(settings)
        self.lock = lock or LockCoordinator(settings=self.settings)

    # -------------------------------------------------------------------------
    # Suffix assignment
    # -------------------------------------------------------------------------

    @staticmethod
    def _first_free_suffix(base_filename: str, extension: str, folder: Path) -> str:
        number = 0
        while (folder / f"{base_filename}{version_suffix(number)}{extension}").exists():
            number += 1
        return version_suffix(number)

    async def next_version_suffix(self, base_filename: str, extension: str, folder: Path) -> str:
        """
        Return the first suffix whose candidate path does not exist.

        The search runs under the lock, so concurrent callers are serialized.
        """
        async with self.lock.hold():
            return self._first_free_suffix(base_filename, extension, Path(folder))

    async def reserve_version_path(
        self,
        base_filename: str,
        extension: str,
        folder: Path,
        source: Path,
    ) -> Tuple[str, Path, str]:
        """
        Pick the suffix and copy under one lock hold.

        Returns:
            Tuple of (suffix, managed_path, sha256 checksum)
        """
        folder = ensure_directory(folder)
        async with self.lock.hold():
            suffix = self._first_free_suffix(base_filename, extension, folder)
            managed_path = folder / f"{base_filename}{suffix}{extension}"
            await self.run_blocking(copy_file, source, managed_path)

        checksum = await self.calculate_file_checksum(managed_path)
        self.logger.info(
            "version_file_stored",
            managed_path=str(managed_path),
            suffix=suffix,
            checksum=checksum[:12],
        )
        return suffix, managed_path, checksum

    async def calculate_file_checksum(self, file_path: Path) -> str:
        """SHA256 of a file, computed off the event loop."""
        return await self.run_blocking(hash_file, file_path)

    # -------------------------------------------------------------------------
    # Entries and versions
    # -------------------------------------------------------------------------

    @staticmethod
    def find_existing_entry(
        manifest: List[ManifestEntry],
        job_uuid: str,
        company: str,
        role: str,
        date: str,
        extension: str,
    ) -> Optional[ManifestEntry]:
        """First entry matching (job, sanitized company, sanitized role, date, extension)."""
        return next(
            (
                entry for entry in manifest
                if entry.job_uuid == job_uuid
                and entry.filename_components.company == company
                and entry.filename_components.role == role
                and entry.filename_components.date == date
                and entry.file_extension == extension
            ),
            None,
        )

    @staticmethod
    def _activate(entry: ManifestEntry, version: VersionEntry) -> None:
        for existing in entry.versions:
            existing.is_active = False
        version.is_active = True
        entry.versions.append(version)
        entry.last_updated = utc_now_iso()

    async def create_new_entry(
        self,
        job_uuid: str,
        company: str,
        role: str,
        file_extension: str,
        file_path: Path,
        managed_folder: Path,
        original_filename: str,
        keep_original: bool,
        person_name: str = "",
        date: Optional[str] = None,
    ) -> ManifestEntry:
        """
        Create a manifest entry holding the first version of a file.

        company and role are expected to be sanitized already.
        """
        date = date or today_iso()
        base_filename = build_base_filename(company, role, date, person_name)

        suffix, managed_path, checksum = await self.reserve_version_path(
            base_filename, file_extension, Path(managed_folder), Path(file_path)
        )

        version = VersionEntry(
            version_suffix=suffix,
            managed_path=str(managed_path),
            file_checksum=checksum,
            original_path=str(file_path),
            original_filename=original_filename,
            mime_type=mimetypes.guess_type(original_filename)[0],
        )

        entry = ManifestEntry(
            job_uuid=job_uuid,
            base_filename=base_filename,
            filename_components=FilenameComponents(company=company, role=role, date=date),
            file_extension=file_extension,
            keep_original=keep_original,
            versions=[version],
        )

        self.logger.info(
            "manifest_entry_created",
            entry_id=entry.id,
            job_uuid=job_uuid,
            base_filename=base_filename,
        )
        return entry

    async def add_version_to_entry(
        self,
        entry: ManifestEntry,
        file_path: Path,
        managed_folder: Path,
        original_filename: str,
    ) -> VersionEntry:
        """Append a new active version to an existing entry."""
        suffix, managed_path, checksum = await self.reserve_version_path(
            entry.base_filename, entry.file_extension, Path(managed_folder), Path(file_path)
        )

        version = VersionEntry(
            version_suffix=suffix,
            managed_path=str(managed_path),
            file_checksum=checksum,
            original_path=str(file_path),
            original_filename=original_filename,
            mime_type=mimetypes.guess_type(original_filename)[0],
        )
        self._activate(entry, version)

        self.logger.info(
            "version_added",
            entry_id=entry.id,
            version_id=version.version_id,
            suffix=suffix,
            total_versions=len(entry.versions),
        )
        return version

    async def rollback_to_version(
        self,
        entry: ManifestEntry,
        target_version_id: str,
        managed_folder: Path,
    ) -> VersionEntry:
        """
        Mint a new active version whose bytes are a copy of target_version_id.

        Raises:
            VersionNotFound: The id is not part of the entry
            VersionMissing: The target file no longer exists on disk
        """
        target = entry.find_version(target_version_id)
        if target is None:
            raise VersionNotFound(f"Version {target_version_id} not found in entry {entry.id}")

        target_path = Path(target.managed_path)
        if not target_path.is_file():
            raise VersionMissing(f"Target version file no longer exists: {target_path}")

        suffix, managed_path, checksum = await self.reserve_version_path(
            entry.base_filename, entry.file_extension, Path(managed_folder), target_path
        )

        label = target.version_suffix or "original"
        version = VersionEntry(
            version_suffix=suffix,
            managed_path=str(managed_path),
            file_checksum=checksum,
            original_path=target.original_path,
            original_filename=f"ROLLBACK_TO_{label}_{target.original_filename}",
            mime_type=target.mime_type,
        )
        self._activate(entry, version)

        self.logger.info(
            "version_rolled_back",
            entry_id=entry.id,
            target_version_id=target_version_id,
            new_version_id=version.version_id,
            suffix=suffix,
        )
        return version

    @staticmethod
    def get_version_history(entry: ManifestEntry) -> List[VersionEntry]:
        """Versions ordered by upload time, oldest first."""
        return sorted(entry.versions, key=lambda v: v.upload_timestamp)

    @staticmethod
    def get_active_version(entry: ManifestEntry) -> Optional[VersionEntry]:
        return entry.active_version()
