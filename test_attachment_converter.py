"""
Tests for copy <-> reference attachment mode conversion.
"""

import asyncio
import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from jobfiles.config import BulkStatus, MigrationAction, OperationType
from jobfiles.exceptions import JobNotFound
from jobfiles.execution.attachment_converter import AttachmentModeConverter, load_job
from jobfiles.utils.hashing import hash_file


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def converter(test_settings, file_management_policy, operations_log):
    return AttachmentModeConverter(
        test_settings, policy=file_management_policy, operations_log=operations_log
    )


@pytest.fixture
def external_dir(temp_dir):
    folder = temp_dir / "downloads"
    folder.mkdir()
    return folder


@pytest.fixture
def copy_job(file_management_policy, external_dir):
    """
    A copy-mode job folder whose resume.pdf was copied from external_dir.

    Returns (job uuid, job folder, external resume path).
    """
    external = external_dir / "resume.pdf"
    external.write_bytes(b"%PDF-1.4 the resume bytes")

    folder = Path(file_management_policy.root_directory) / "Acme_Engineer_20240115"
    folder.mkdir(parents=True)
    (folder / "resume.pdf").write_bytes(external.read_bytes())
    (folder / "snapshot-1.png").write_bytes(b"\x89PNG snapshot")
    (folder / "job.txt").write_text("Job Application: Engineer", encoding="utf-8")
    (folder / "job.json").write_text(json.dumps({
        "uuid": "job-acme",
        "company": "Acme",
        "attachment_mode": "copy",
        "attachment_paths": {"resume.pdf": str(external)},
    }), encoding="utf-8")
    return "job-acme", folder, external


def checksums(folder: Path):
    return {
        p.name: hash_file(p)
        for p in folder.iterdir()
        if p.is_file() and p.name not in ("job.json", "job.txt")
    }


# ============================================================================
# Locating jobs
# ============================================================================

class TestFindJobFile:

    def test_direct_and_nested(self, converter, file_management_policy, copy_job):
        root = Path(file_management_policy.root_directory)
        (root / "flat-1.json").write_text('{"uuid": "flat-1"}', encoding="utf-8")
        nested = root / "2024" / "Globex_Analyst"
        nested.mkdir(parents=True)
        (nested / "job.json").write_text('{"uuid": "deep-1"}', encoding="utf-8")

        assert converter.find_job_file("flat-1") == root / "flat-1.json"
        assert converter.find_job_file("job-acme") == copy_job[1] / "job.json"
        assert converter.find_job_file("deep-1") == nested / "job.json"

    def test_missing_job(self, converter, copy_job):
        with pytest.raises(JobNotFound):
            converter.find_job_file("no-such-job")


# ============================================================================
# Conversions
# ============================================================================

class TestConversions:

    def test_copy_reference_copy_round_trip(self, converter, operations_log, copy_job):
        job_id, folder, external = copy_job
        before = checksums(folder)

        async def run_test():
            to_reference = await converter.copy_to_reference([job_id])
            middle = checksums(folder)
            to_copy = await converter.reference_to_copy([job_id])
            ops = await operations_log.get_recent_operations()
            return to_reference, middle, to_copy, ops

        to_reference, middle, to_copy, ops = asyncio.run(run_test())

        assert to_reference.status == BulkStatus.COMPLETED
        assert to_reference.log[0].action == MigrationAction.REFERENCE
        assert to_copy.log[0].action == MigrationAction.COPY
        assert middle == {}
        assert checksums(folder) == before

        job_data = load_job(folder / "job.json")
        assert job_data["attachment_mode"] == "copy"
        assert job_data["converted_to_copy"] is True
        assert "converted_to_reference" not in job_data
        # The external original was the reference for the resume
        assert job_data["attachment_paths"]["resume.pdf"] == str(external)

        assert [op.operation_type for op in ops[:2]] == [OperationType.RENAME, OperationType.RENAME]
        assert ops[1].details.migration_entries == [to_reference.log[0].id]

    def test_backup_becomes_reference_when_original_is_gone(self, converter, copy_job):
        job_id, folder, external = copy_job
        external.unlink()
        before = checksums(folder)

        async def run_test():
            to_reference = await converter.copy_to_reference([job_id])
            await converter.reference_to_copy([job_id], create_backup=False)
            return to_reference

        to_reference = asyncio.run(run_test())

        references = to_reference.log[0].undo_data["original_references"]
        assert references == {"resume.pdf": str(external)}
        assert checksums(folder) == before

        job_data = load_job(folder / "job.json")
        backup = Path(to_reference.backup_folder) / job_id
        assert job_data["attachment_paths"]["resume.pdf"] == str(backup / "resume.pdf")

    def test_no_backup_keeps_unreferenced_files(self, converter, copy_job):
        job_id, folder, external = copy_job
        external.unlink()

        async def run_test():
            return await converter.copy_to_reference([job_id], create_backup=False)

        operation = asyncio.run(run_test())

        undo_data = operation.log[0].undo_data
        assert operation.backup_folder is None
        assert (folder / "resume.pdf").exists()
        assert (folder / "snapshot-1.png").exists()
        assert sorted(Path(p).name for p in undo_data["kept_files"]) == ["resume.pdf", "snapshot-1.png"]
        assert undo_data["removed_files"] == []

    def test_reference_to_copy_never_overwrites(self, converter, copy_job, external_dir):
        job_id, folder, external = copy_job
        job_path = folder / "job.json"
        job_data = load_job(job_path)
        other = external_dir / "other.pdf"
        other.write_bytes(b"different bytes")
        job_data["attachment_mode"] = "reference"
        job_data["attachment_paths"] = {
            "resume.pdf": str(other),
            "missing.pdf": str(external_dir / "missing.pdf"),
        }
        job_path.write_text(json.dumps(job_data), encoding="utf-8")
        before = hash_file(folder / "resume.pdf")

        async def run_test():
            return await converter.reference_to_copy([job_id], create_backup=False)

        operation = asyncio.run(run_test())

        undo_data = operation.log[0].undo_data
        assert hash_file(folder / "resume.pdf") == before
        assert undo_data["copied_files"] == []
        assert undo_data["failed_files"] == [str(external_dir / "missing.pdf")]
        # A reference that could not be copied is kept
        assert "missing.pdf" in load_job(job_path)["attachment_paths"]

    def test_flat_job_only_touches_its_attachments(self, converter, file_management_policy, external_dir):
        root = Path(file_management_policy.root_directory)
        root.mkdir(parents=True)
        external = external_dir / "cv.pdf"
        external.write_bytes(b"cv bytes")
        (root / "cv.pdf").write_bytes(b"cv bytes")
        (root / "someone-elses.pdf").write_bytes(b"not ours")
        (root / "flat-1.json").write_text(json.dumps({
            "uuid": "flat-1",
            "attachment_paths": {"cv.pdf": str(external)},
        }), encoding="utf-8")

        async def run_test():
            return await converter.copy_to_reference(["flat-1"])

        operation = asyncio.run(run_test())

        assert operation.status == BulkStatus.COMPLETED
        assert not (root / "cv.pdf").exists()
        assert (root / "someone-elses.pdf").exists()


# ============================================================================
# Bulk runs
# ============================================================================

class TestBulkRuns:

    def test_partial_failure_completes(self, converter, copy_job):
        job_id = copy_job[0]

        async def run_test():
            return await converter.copy_to_reference([job_id, "no-such-job"])

        operation = asyncio.run(run_test())

        assert operation.status == BulkStatus.COMPLETED
        assert (operation.progress.total, operation.progress.completed, operation.progress.failed) == (2, 1, 1)
        error = operation.log[1]
        assert error.action == MigrationAction.ERROR
        assert "no-such-job" in error.error

    def test_all_failed(self, converter, operations_log):
        async def run_test():
            operation = await converter.reference_to_copy(["a", "b"])
            ops = await operations_log.get_recent_operations()
            return operation, ops

        operation, ops = asyncio.run(run_test())

        assert operation.status == BulkStatus.FAILED
        assert operation.progress.failed == 2
        assert ops[0].can_undo is False

    def test_bulk_operation_is_persisted(self, converter, copy_job):
        async def run_test():
            return await converter.copy_to_reference([copy_job[0]])

        operation = asyncio.run(run_test())
        saved = converter.migration_log.list_bulk_operations()

        assert [o.id for o in saved] == [operation.id]
        assert converter.migration_log.find_entry(operation.log[0].id).can_undo is True


# ============================================================================
# Reversal
# ============================================================================

class TestReverseConversion:

    def test_reverse_copy_to_reference(self, converter, copy_job):
        job_id, folder, external = copy_job
        before = checksums(folder)
        original = load_job(folder / "job.json")

        async def run_test():
            return await converter.copy_to_reference([job_id])

        operation = asyncio.run(run_test())
        message = AttachmentModeConverter.reverse_conversion(operation.log[0])

        assert "copy mode" in message
        assert checksums(folder) == before
        job_data = load_job(folder / "job.json")
        assert job_data["attachment_mode"] == "copy"
        assert job_data["attachment_paths"] == original["attachment_paths"]
        assert "converted_to_reference" not in job_data

    def test_reverse_reference_to_copy(self, converter, copy_job):
        job_id, folder, external = copy_job

        async def run_test():
            await converter.copy_to_reference([job_id], create_backup=False)
            return await converter.reference_to_copy([job_id], create_backup=False)

        operation = asyncio.run(run_test())
        AttachmentModeConverter.reverse_conversion(operation.log[0])

        job_data = load_job(folder / "job.json")
        assert job_data["attachment_mode"] == "reference"
        assert not (folder / "resume.pdf").exists()
