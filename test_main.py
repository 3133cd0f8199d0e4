"""
Unit tests for the Job Files command line.

Tests the argument parser, the JobFilesApp wiring and the main() entry point.
"""

import asyncio
import json
import sys
from pathlib import Path

import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent))

import jobfiles.main as cli
from jobfiles.main import JobFilesApp, build_parser, main, run_command, to_jsonable
from jobfiles.models import DetectedJob


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def patched_settings(monkeypatch, test_settings):
    """Make main() use the temp-dir settings."""
    monkeypatch.setattr(cli, "get_settings", lambda: test_settings)
    return test_settings


def run_main(argv, capsys):
    code = asyncio.run(main(argv))
    out = capsys.readouterr().out
    return code, (json.loads(out) if out.strip().startswith(("{", "[")) else out)


# ============================================================================
# Parser Tests
# ============================================================================

class TestParser:

    def test_upload_arguments(self):
        args = build_parser().parse_args([
            "--session", "s1", "upload", "cv.pdf",
            "--job", "j1", "--company", "Acme", "--role", "Dev",
        ])
        assert args.session == "s1"
        assert args.command == "upload"
        assert args.file == "cv.pdf"
        assert args.keep_original is None
        assert args.name == ""

    def test_remove_original_flag(self):
        args = build_parser().parse_args([
            "upload", "cv.pdf", "--job", "j1", "--company", "Acme", "--role", "Dev", "--remove-original",
        ])
        assert args.keep_original is False

    def test_import_flags(self):
        args = build_parser().parse_args(["import", "/old", "--handle-conflicts", "--no-backup"])
        assert args.handle_conflicts is True
        assert args.create_backup is False

        args = build_parser().parse_args(["import", "/old"])
        assert args.create_backup is None

    def test_conversion_commands(self):
        args = build_parser().parse_args(["to-reference", "a", "b", "--no-backup"])
        assert args.job_ids == ["a", "b"]
        assert args.create_backup is False

        args = build_parser().parse_args(["to-copy", "a"])
        assert args.create_backup is True

    def test_upload_requires_job(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["upload", "cv.pdf", "--company", "Acme", "--role", "Dev"])


# ============================================================================
# App wiring
# ============================================================================

class TestJobFilesApp:

    def test_services_share_one_log(self, test_settings):
        app = JobFilesApp(test_settings, session_id="shared")

        assert app.session_id == "shared"
        assert app.resumes.operations_log is app.operations_log
        assert app.migration.operations_log is app.operations_log
        assert app.converter.operations_log is app.operations_log
        assert app.undo.operations_log is app.operations_log
        assert app.undo.migration_log is app.migration.migration_log

    def test_to_jsonable(self):
        job = DetectedJob(company="Acme")
        value = to_jsonable({"jobs": [job], "count": 1})
        assert value["count"] == 1
        assert value["jobs"][0]["company"] == "Acme"

    def test_preview_command(self, test_settings):
        app = JobFilesApp(test_settings)
        args = build_parser().parse_args(["preview", "--company", "Acme", "--role", "Dev", "--date", "2024-01-02"])

        result = asyncio.run(run_command(app, args))

        assert result["computed_path"].endswith("Acme_Dev_20240102")
        assert result["date"] == "2024-01-02"


# ============================================================================
# main() Tests
# ============================================================================

class TestMain:

    def test_no_command_prints_help(self, patched_settings, capsys):
        code, out = run_main([], capsys)
        assert code == 1
        assert "usage" in out

    def test_upload_list_and_undo(self, patched_settings, sample_resumes, job_id, capsys):
        code, uploaded = run_main([
            "--session", "cli", "upload", str(sample_resumes["pdf"]),
            "--job", job_id, "--company", "Acme", "--role", "Engineer",
        ], capsys)
        assert code == 0
        assert uploaded["session_id"] == "cli"
        entry_id = uploaded["entry"]["id"]

        code, listed = run_main(["list", "--job", job_id], capsys)
        assert code == 0
        assert [e["id"] for e in listed] == [entry_id]

        code, undoable = run_main(["--session", "cli", "undoable"], capsys)
        assert len(undoable) == 1

        code, summary = run_main(["--session", "cli", "undo", undoable[0]["id"]], capsys)
        assert code == 0
        assert summary["operation_id"] == undoable[0]["id"]

        code, listed = run_main(["list"], capsys)
        assert listed == []

    def test_lifecycle_error_is_reported(self, patched_settings, capsys):
        code, out = run_main(["rollback", "missing-resume", "missing-version"], capsys)
        assert code == 2
        assert out["error"] == "ResumeNotFound"

    def test_undo_from_other_session_fails(self, patched_settings, sample_resumes, job_id, capsys):
        run_main([
            "--session", "first", "upload", str(sample_resumes["pdf"]),
            "--job", job_id, "--company", "Acme", "--role", "Engineer",
        ], capsys)
        code, operations = run_main(["operations", "--limit", "1"], capsys)
        assert code == 0

        code, out = run_main(["--session", "second", "undo", operations[0]["id"]], capsys)
        assert code == 2
        assert out["error"] == "OperationNotFound"

    def test_scan_and_import(self, patched_settings, legacy_jobs, capsys):
        code, scanned = run_main(["scan", str(legacy_jobs)], capsys)
        assert code == 0
        assert {j["status"] for j in scanned} == {"ready"}

        code, imported = run_main(["import", str(legacy_jobs), "--no-backup"], capsys)
        assert code == 0
        assert imported["result"]["successful"] == 3
        assert imported["result"]["backup_folder"] is None
