"""
Tests for the session-scoped OperationsLog.
"""

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from jobfiles.config import OperationType, Settings
from jobfiles.models import OperationDetails, OperationLogEntry
from jobfiles.services.operations_log import OperationsLog


def test_log_operation_persists_entry(operations_log):
    async def run_test():
        op_id = await operations_log.log_operation(
            OperationType.UPLOAD,
            OperationDetails(job_uuid="job-1", target_paths=["/managed/a.pdf"]),
            can_undo=True,
        )
        return op_id, await operations_log.find(op_id)

    op_id, entry = asyncio.run(run_test())

    assert entry.id == op_id
    assert entry.session_id == "session-test"
    assert entry.details.job_uuid == "job-1"
    assert operations_log.path.exists()


def test_log_is_trimmed_to_max_entries(temp_dir):
    settings = Settings(data_dir=str(temp_dir), max_log_entries=5, log_json=False)
    log = OperationsLog(settings, session_id="s")

    async def run_test():
        ids = []
        for _ in range(8):
            ids.append(await log.log_operation(OperationType.UPLOAD))
        return ids, await log.load_log()

    ids, entries = asyncio.run(run_test())

    assert len(entries) == 5
    assert [e.id for e in entries] == ids[-5:]


def test_undoable_operations_are_session_scoped(test_settings):
    mine = OperationsLog(test_settings, session_id="mine")
    theirs = OperationsLog(test_settings, session_id="theirs")

    async def run_test():
        my_op = await mine.log_operation(OperationType.UPLOAD, can_undo=True)
        await theirs.log_operation(OperationType.UPLOAD, can_undo=True)
        await mine.log_operation(OperationType.DELETE, can_undo=False)
        return my_op, await mine.get_undoable_operations(), await mine.get_recent_operations()

    my_op, undoable, recent = asyncio.run(run_test())

    assert [op.id for op in undoable] == [my_op]
    # Recent operations span every session
    assert len(recent) == 3


def test_undoable_window_newest_first(operations_log):
    async def run_test():
        ids = []
        for _ in range(12):
            ids.append(await operations_log.log_operation(OperationType.UPLOAD, can_undo=True))
        return ids, await operations_log.get_undoable_operations()

    ids, undoable = asyncio.run(run_test())

    assert len(undoable) == 10
    assert [op.id for op in undoable] == list(reversed(ids[-10:]))


def test_mark_operation_as_undone(operations_log):
    async def run_test():
        op_id = await operations_log.log_operation(OperationType.UPLOAD, can_undo=True)
        marked = await operations_log.mark_operation_as_undone(op_id)
        unknown = await operations_log.mark_operation_as_undone("missing")
        return marked, unknown, await operations_log.get_undoable_operations()

    marked, unknown, undoable = asyncio.run(run_test())

    assert marked is True
    assert unknown is False
    assert undoable == []


def test_clear_old_entries(operations_log):
    old = (datetime.now(timezone.utc) - timedelta(days=45)).isoformat()
    recent = (datetime.now(timezone.utc) - timedelta(days=2)).isoformat()

    async def run_test():
        await operations_log.save_log([
            OperationLogEntry(operation_type=OperationType.UPLOAD, timestamp=old, session_id="x"),
            OperationLogEntry(operation_type=OperationType.DELETE, timestamp=recent, session_id="x"),
        ])
        removed = await operations_log.clear_old_entries(older_than_days=30)
        return removed, await operations_log.load_log()

    removed, entries = asyncio.run(run_test())

    assert removed == 1
    assert [e.operation_type for e in entries] == [OperationType.DELETE]


def test_get_operations_by_type(operations_log):
    async def run_test():
        await operations_log.log_operation(OperationType.UPLOAD)
        await operations_log.log_operation(OperationType.RESTORE)
        await operations_log.log_operation(OperationType.UPLOAD)
        return await operations_log.get_operations_by_type(OperationType.UPLOAD)

    uploads = asyncio.run(run_test())
    assert len(uploads) == 2


def test_corrupt_log_loads_empty(operations_log):
    operations_log.path.parent.mkdir(parents=True, exist_ok=True)
    operations_log.path.write_text("[{broken", encoding="utf-8")

    async def run_test():
        return await operations_log.load_log()

    assert asyncio.run(run_test()) == []


def test_invalid_entries_are_skipped(operations_log):
    operations_log.path.parent.mkdir(parents=True, exist_ok=True)
    operations_log.path.write_text(
        '[{"operation_type": "upload", "session_id": "s"}, {"operation_type": "explode"}]',
        encoding="utf-8",
    )

    async def run_test():
        return await operations_log.load_log()

    entries = asyncio.run(run_test())
    assert len(entries) == 1
    assert entries[0].operation_type == OperationType.UPLOAD
