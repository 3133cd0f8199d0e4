"""
Operations Log - session-scoped audit trail of mutating operations.

Every mutating operation appends one OperationLogEntry. The document is
trimmed to the most recent max_log_entries on every save. Only entries
created by this instance's session are offered for undo.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from pydantic import ValidationError

from jobfiles.config import OperationType, Settings
from jobfiles.models import OperationDetails, OperationLogEntry, new_id
from jobfiles.services.base_service import BaseService
from jobfiles.utils.file_utils import atomic_write_json, read_json


class OperationsLog(BaseService):
    """
    Append-only (modulo trimming) operations log.

    Example:
        log = OperationsLog()
        op_id = await log.log_operation(
            OperationType.UPLOAD,
            OperationDetails(manifest_entries=[entry.id]),
            can_undo=True,
        )
        undoable = await log.get_undoable_operations()
    """

    SERVICE_NAME = "operations_log"

    def __init__(self, settings: Optional[Settings] = None, session_id: Optional[str] = None):
        super().__init__(settings)
        self.session_id = session_id or new_id()
        self.path = self.settings.operations_log_path
        self._write_lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _load(self) -> List[OperationLogEntry]:
        raw = read_json(self.path, default=[])
        if not isinstance(raw, list):
            return []

        entries = []
        for item in raw:
            try:
                entries.append(OperationLogEntry.model_validate(item))
            except ValidationError as e:
                self.logger.warning("operation_entry_invalid", error=str(e))
        return entries

    def _save(self, entries: List[OperationLogEntry]) -> None:
        if len(entries) > self.settings.max_log_entries:
            entries = entries[-self.settings.max_log_entries:]
        atomic_write_json(self.path, [e.model_dump(mode="json") for e in entries])

    async def load_log(self) -> List[OperationLogEntry]:
        return await self.run_blocking(self._load)

    async def save_log(self, entries: List[OperationLogEntry]) -> None:
        """Rewrite the whole log, keeping only the most recent entries."""
        await self.run_blocking(self._save, entries)

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    async def log_operation(
        self,
        operation_type: OperationType,
        details: Optional[OperationDetails] = None,
        can_undo: bool = False,
    ) -> str:
        """
        Append an entry stamped with this session's id.

        Returns:
            The new entry's id
        """
        entry = OperationLogEntry(
            operation_type=operation_type,
            details=details or OperationDetails(),
            can_undo=can_undo,
            session_id=self.session_id,
        )

        async with self._write_lock:
            entries = await self.load_log()
            entries.append(entry)
            await self.save_log(entries)

        self.logger.info(
            "operation_logged",
            operation_id=entry.id,
            operation_type=entry.operation_type.value,
            can_undo=can_undo,
        )
        return entry.id

    async def mark_operation_as_undone(self, operation_id: str) -> bool:
        """Set can_undo to false. Returns False if the id is unknown."""
        async with self._write_lock:
            entries = await self.load_log()
            for entry in entries:
                if entry.id == operation_id:
                    entry.can_undo = False
                    await self.save_log(entries)
                    return True
        return False

    async def clear_old_entries(self, older_than_days: int = 30) -> int:
        """
        Drop entries older than the cutoff.

        Returns:
            Number of entries removed
        """
        cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)

        async with self._write_lock:
            entries = await self.load_log()
            kept = [e for e in entries if _parse_timestamp(e.timestamp) > cutoff]
            await self.save_log(kept)

        removed = len(entries) - len(kept)
        self.logger.info("operations_log_pruned", removed=removed, older_than_days=older_than_days)
        return removed

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_recent_operations(self, limit: int = 10) -> List[OperationLogEntry]:
        """Most recent entries of any session, newest first."""
        entries = await self.load_log()
        return list(reversed(entries[-limit:])) if limit > 0 else []

    async def get_undoable_operations(self) -> List[OperationLogEntry]:
        """This session's last undoable entries, newest first."""
        entries = await self.load_log()
        undoable = [
            e for e in entries
            if e.can_undo and e.session_id == self.session_id
        ]
        return list(reversed(undoable[-self.settings.undoable_window:]))

    async def get_operations_by_type(self, operation_type: OperationType) -> List[OperationLogEntry]:
        entries = await self.load_log()
        return [e for e in entries if e.operation_type == operation_type]

    async def find(self, operation_id: str) -> Optional[OperationLogEntry]:
        entries = await self.load_log()
        return next((e for e in entries if e.id == operation_id), None)


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
