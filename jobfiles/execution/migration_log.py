"""
Migration Log for the job file lifecycle engine.

Records every migration and bulk-conversion action for:
- Audit trail
- Undo support (each entry carries its own undo_data)
- History listings

Layout under the migration-log directory:
    migration_<operation_id>.json        one MigrationResult per import run
    bulk-operations/<operation_id>.json  one BulkOperation per conversion run
    undo-operations/undo_<entry_id>.json one MigrationLogEntry per undo
"""

from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

import structlog
from pydantic import BaseModel, ValidationError

from jobfiles.config import MigrationAction
from jobfiles.models import BulkOperation, MigrationLogEntry, MigrationResult
from jobfiles.utils.file_utils import atomic_write_json, read_json


BULK_OPERATIONS_DIR = "bulk-operations"
UNDO_OPERATIONS_DIR = "undo-operations"


class MigrationRecorder:
    """Collects log entries and counters for one run."""

    def __init__(self):
        self.entries: List[MigrationLogEntry] = []
        self.statistics: Dict[str, int] = {
            "successful": 0,
            "failed": 0,
            "skipped": 0,
        }

    def add_entry(
        self,
        action: MigrationAction,
        source_path: str,
        target_path: Optional[str] = None,
        job_id: Optional[str] = None,
        error: Optional[str] = None,
        can_undo: bool = False,
        undo_data: Optional[Dict[str, Any]] = None,
    ) -> MigrationLogEntry:
        """
        Append an entry and update the counters.

        Args:
            action: What happened to the job
            source_path: Source file or job.json path
            target_path: Created folder or rewritten job.json
            job_id: Owning job id
            error: Error message if the action failed
            can_undo: Whether undo_data can reverse the action
            undo_data: Action-specific reversal payload
        """
        entry = MigrationLogEntry(
            action=action,
            source_path=source_path,
            target_path=target_path,
            job_id=job_id,
            error=error,
            can_undo=can_undo,
            undo_data=undo_data,
        )
        self.entries.append(entry)

        if action == MigrationAction.ERROR:
            self.statistics["failed"] += 1
        elif action == MigrationAction.SKIP:
            self.statistics["skipped"] += 1
        else:
            self.statistics["successful"] += 1

        return entry

    def undoable_entry_ids(self) -> List[str]:
        return [e.id for e in self.entries if e.can_undo]

    def get_summary(self) -> Dict[str, int]:
        return {**self.statistics, "entries": len(self.entries)}


class MigrationLog:
    """Reads and writes the migration-log directory."""

    def __init__(self, log_dir: Union[str, Path]):
        self.log_dir = Path(log_dir)
        self.bulk_dir = self.log_dir / BULK_OPERATIONS_DIR
        self.undo_dir = self.log_dir / UNDO_OPERATIONS_DIR
        self.logger = structlog.get_logger("migration_log")

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def save_migration_result(self, result: MigrationResult) -> Path:
        path = self.log_dir / f"migration_{result.operation_id}.json"
        atomic_write_json(path, result.model_dump(mode="json"))
        self.logger.info(
            "migration_log_saved",
            path=str(path),
            successful=result.successful,
            failed=result.failed,
            skipped=result.skipped,
        )
        return path

    def save_bulk_operation(self, operation: BulkOperation) -> Path:
        path = self.bulk_dir / f"{operation.id}.json"
        atomic_write_json(path, operation.model_dump(mode="json"))
        self.logger.info(
            "bulk_operation_saved",
            path=str(path),
            type=operation.type.value,
            status=operation.status.value,
        )
        return path

    def save_undo_entry(self, entry: MigrationLogEntry) -> Path:
        path = self.undo_dir / f"undo_{entry.id}.json"
        atomic_write_json(path, entry.model_dump(mode="json"))
        return path

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def _load_documents(self, folder: Path, pattern: str, model) -> Iterator[Tuple[Path, BaseModel]]:
        if not folder.is_dir():
            return
        for path in sorted(folder.glob(pattern)):
            raw = read_json(path)
            if raw is None:
                continue
            try:
                yield path, model.model_validate(raw)
            except ValidationError as e:
                self.logger.warning("migration_log_invalid", path=str(path), error=str(e))

    def list_migration_runs(self) -> List[MigrationResult]:
        """Import runs, newest first."""
        runs = [r for _, r in self._load_documents(self.log_dir, "migration_*.json", MigrationResult)]
        return sorted(runs, key=lambda r: r.timestamp, reverse=True)

    def list_bulk_operations(self, limit: int = 20) -> List[BulkOperation]:
        """Bulk conversion runs, newest first."""
        operations = [o for _, o in self._load_documents(self.bulk_dir, "*.json", BulkOperation)]
        operations.sort(key=lambda o: o.created_at, reverse=True)
        return operations[:limit]

    def list_undo_entries(self) -> List[MigrationLogEntry]:
        entries = [e for _, e in self._load_documents(self.undo_dir, "undo_*.json", MigrationLogEntry)]
        return sorted(entries, key=lambda e: e.timestamp, reverse=True)

    def _documents_with_entries(self) -> Iterator[Tuple[Path, BaseModel]]:
        yield from self._load_documents(self.log_dir, "migration_*.json", MigrationResult)
        yield from self._load_documents(self.bulk_dir, "*.json", BulkOperation)

    def iter_entries(self) -> Iterator[MigrationLogEntry]:
        for _, document in self._documents_with_entries():
            yield from document.log

    def find_entry(self, entry_id: str) -> Optional[MigrationLogEntry]:
        """Look up an entry across import runs and bulk operations."""
        return next((e for e in self.iter_entries() if e.id == entry_id), None)

    def list_undoable_entries(self, limit: int = 50) -> List[MigrationLogEntry]:
        entries = [e for e in self.iter_entries() if e.can_undo]
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries[:limit]

    def mark_entry_undone(self, entry_id: str) -> bool:
        """
        Clear can_undo on an entry and rewrite the document that holds it.

        Returns:
            False if no document contains the entry
        """
        for path, document in self._documents_with_entries():
            for entry in document.log:
                if entry.id == entry_id:
                    entry.can_undo = False
                    atomic_write_json(path, document.model_dump(mode="json"))
                    return True
        return False
