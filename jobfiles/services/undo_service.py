"""
Undo Service - reverses logged operations from their recorded undo data.

Dispatch is a closed set over OperationType:
- upload, bulk_import: remove the manifest entries and files the operation
  created, then replay the reversal of each referenced migration entry
- rename: replay the reversal of each attachment-mode conversion entry
- delete: NotSupported (no backup is taken when a resume is deleted)
- restore, rollback: never undoable

Migration entries are reversed by MigrationAction:
- import:            MigrationService.reverse_import
- reference / copy:  AttachmentModeConverter.reverse_conversion

A successful undo marks the operation and its replayed entries as no longer
undoable, writes an `undo` MigrationLogEntry and appends a `rollback`
operation that is itself never undoable.
"""

from typing import Any, Dict, List, Optional

from jobfiles.config import MigrationAction, OperationType, Settings
from jobfiles.exceptions import (
    NotSupported,
    OperationNotFound,
    OperationNotUndoable,
)
from jobfiles.execution.attachment_converter import AttachmentModeConverter
from jobfiles.execution.migration_log import MigrationLog
from jobfiles.execution.migration_service import MigrationService
from jobfiles.models import (
    ManifestEntry,
    MigrationLogEntry,
    OperationDetails,
    OperationLogEntry,
)
from jobfiles.services.base_service import BaseService
from jobfiles.services.manifest_store import ConfigStore, ManifestStore
from jobfiles.services.operations_log import OperationsLog
from jobfiles.utils.file_utils import remove_path


class UndoService(BaseService):
    """
    Reverses operations of the current session.

    Must share its OperationsLog instance with the services whose operations
    it reverses, since undo is scoped to that log's session.

    Example:
        log = OperationsLog()
        manager = ResumeManager(operations_log=log)
        undo = UndoService(operations_log=log)
        for op in await undo.get_undoable_operations():
            await undo.undo(op.id)
    """

    SERVICE_NAME = "undo_service"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        operations_log: Optional[OperationsLog] = None,
        manifest_store: Optional[ManifestStore] = None,
        migration_log: Optional[MigrationLog] = None,
    ):
        super().__init__(settings)
        self.operations_log = operations_log or OperationsLog(self.settings)
        self.manifest_store = manifest_store or ManifestStore(settings=self.settings)
        if migration_log is None:
            policy = ConfigStore(self.settings).load_policy()
            migration_log = MigrationLog(policy.migration_log_path)
        self.migration_log = migration_log

    async def get_undoable_operations(self) -> List[OperationLogEntry]:
        return await self.operations_log.get_undoable_operations()

    async def can_undo(self, operation_id: str) -> bool:
        undoable = await self.get_undoable_operations()
        return any(op.id == operation_id for op in undoable)

    # -------------------------------------------------------------------------
    # Operation undo
    # -------------------------------------------------------------------------

    async def undo(self, operation_id: str) -> Dict[str, Any]:
        """
        Reverse one operation of the current session.

        Returns:
            Summary with the rollback operation id and per-step messages

        Raises:
            OperationNotFound: Unknown id, or the operation belongs to another session
            NotSupported: The operation is a delete
            OperationNotUndoable: Already undone, or of a type that cannot be undone
        """
        operation = await self.operations_log.find(operation_id)
        if operation is None or operation.session_id != self.operations_log.session_id:
            raise OperationNotFound(f"Operation {operation_id} not found in this session")

        if operation.operation_type == OperationType.DELETE:
            raise NotSupported(
                "Undoing a delete is not supported: no backup is taken when a resume is deleted"
            )
        if not operation.can_undo:
            raise OperationNotUndoable(f"Operation {operation_id} cannot be undone")

        if operation.operation_type in (OperationType.UPLOAD, OperationType.BULK_IMPORT):
            messages = await self._undo_created_files(operation)
        elif operation.operation_type == OperationType.RENAME:
            messages = await self._replay_migration_entries(operation)
        else:
            raise OperationNotUndoable(
                f"Undo not supported for operation type: {operation.operation_type.value}"
            )

        await self.operations_log.mark_operation_as_undone(operation_id)
        rollback_id = await self.operations_log.log_operation(
            OperationType.ROLLBACK,
            OperationDetails(
                manifest_entries=operation.details.manifest_entries,
                target_paths=operation.details.target_paths,
                migration_entries=operation.details.migration_entries,
                job_uuid=operation.details.job_uuid,
                user_action=f"Undone operation: {operation.operation_type.value}",
            ),
            can_undo=False,
        )

        self.logger.info(
            "operation_undone",
            operation_id=operation_id,
            operation_type=operation.operation_type.value,
            rollback_id=rollback_id,
        )
        return {
            "operation_id": operation_id,
            "rollback_operation_id": rollback_id,
            "messages": messages,
        }

    def _remove_manifest_entries(self, entry_ids: List[str], target_paths: List[str]) -> List[str]:
        """
        Drop created entries, and version records pointing at removed files.

        When the newest version of an entry is dropped, the latest remaining
        version becomes active again.
        """
        messages = []
        entries = self.manifest_store.load()
        removed_paths = set(target_paths)

        kept: List[ManifestEntry] = []
        for entry in entries:
            if entry.id in entry_ids:
                messages.append(f"Removed manifest entry {entry.id}")
                continue

            remaining = [v for v in entry.versions if v.managed_path not in removed_paths]
            dropped = len(entry.versions) - len(remaining)
            if dropped:
                if not remaining:
                    messages.append(f"Removed manifest entry {entry.id}")
                    continue
                if not any(v.is_active for v in remaining):
                    max(remaining, key=lambda v: v.upload_timestamp).is_active = True
                entry.versions = remaining
                messages.append(f"Removed {dropped} versions from {entry.id}")
            kept.append(entry)

        self.manifest_store.save(kept)
        return messages

    def _remove_paths(self, paths: List[str]) -> List[str]:
        messages = []
        for path in paths:
            try:
                if remove_path(path):
                    messages.append(f"Removed {path}")
            except OSError as e:
                self.logger.warning("undo_path_not_removed", path=path, error=str(e))
        return messages

    async def _undo_created_files(self, operation: OperationLogEntry) -> List[str]:
        details = operation.details
        entry_ids = details.manifest_entries or []
        target_paths = details.target_paths or []

        messages = []
        if entry_ids or target_paths:
            messages.extend(await self.run_blocking(self._remove_manifest_entries, entry_ids, target_paths))
        messages.extend(await self._replay_migration_entries(operation))
        messages.extend(await self.run_blocking(self._remove_paths, target_paths))
        return messages

    async def _replay_migration_entries(self, operation: OperationLogEntry) -> List[str]:
        messages = []
        for entry_id in operation.details.migration_entries or []:
            entry = await self.run_blocking(self.migration_log.find_entry, entry_id)
            if entry is None or not entry.can_undo:
                self.logger.warning("migration_entry_not_undoable", entry_id=entry_id)
                continue
            try:
                messages.append(await self._reverse_entry(entry))
            except Exception as e:
                self.logger.warning("migration_entry_undo_failed", entry_id=entry_id, error=str(e))
        return messages

    # -------------------------------------------------------------------------
    # Migration entry undo
    # -------------------------------------------------------------------------

    async def _reverse_entry(self, entry: MigrationLogEntry) -> str:
        """Reverse one migration entry and record the undo."""
        if entry.action == MigrationAction.IMPORT:
            message = await self.run_blocking(MigrationService.reverse_import, entry.undo_data or {})
            undo_type = "migration"
        elif entry.action in (MigrationAction.REFERENCE, MigrationAction.COPY):
            message = await self.run_blocking(AttachmentModeConverter.reverse_conversion, entry)
            undo_type = "bulk_operation"
        else:
            raise OperationNotUndoable(f"Cannot undo action: {entry.action.value}")

        await self.run_blocking(self.migration_log.mark_entry_undone, entry.id)
        undo_entry = MigrationLogEntry(
            action=MigrationAction.UNDO,
            source_path=entry.source_path,
            target_path=entry.target_path,
            job_id=entry.job_id,
            can_undo=False,
            undo_data={"original_operation_id": entry.id, "undo_type": undo_type},
        )
        await self.run_blocking(self.migration_log.save_undo_entry, undo_entry)

        self.logger.info("migration_entry_undone", entry_id=entry.id, action=entry.action.value)
        return message

    async def get_undoable_migration_entries(self, limit: int = 50) -> List[MigrationLogEntry]:
        """Undoable import and conversion entries across all runs, newest first."""
        return await self.run_blocking(self.migration_log.list_undoable_entries, limit)

    async def undo_migration_entry(self, entry_id: str) -> str:
        """
        Reverse a single import or conversion entry.

        Raises:
            OperationNotFound: No run contains the entry
            OperationNotUndoable: The entry was already undone or cannot be undone
        """
        entry = await self.run_blocking(self.migration_log.find_entry, entry_id)
        if entry is None:
            raise OperationNotFound(f"Migration entry {entry_id} not found")
        if not entry.can_undo:
            raise OperationNotUndoable(f"Migration entry {entry_id} cannot be undone")
        return await self._reverse_entry(entry)
