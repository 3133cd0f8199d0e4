"""
Job Files - Command line entry point.

Exposes the lifecycle operations for local use:
1. Resume versions: upload, list, history, rollback, delete
2. Migration: scan, preview, import
3. Attachment modes: to-reference, to-copy
4. Operations log: operations, undoable, undo

Results are printed as JSON. Undo is scoped to a session, so pass the same
--session id to the command that created an operation and to `undo`.
"""

import argparse
import asyncio
import json
import sys
from typing import Any, List, Optional

import structlog
from pydantic import BaseModel

from jobfiles.config import Settings, get_settings
from jobfiles.exceptions import FileLifecycleError
from jobfiles.execution.attachment_converter import AttachmentModeConverter
from jobfiles.execution.migration_service import MigrationService
from jobfiles.logging_setup import configure_logging
from jobfiles.models import DetectedJob
from jobfiles.services.operations_log import OperationsLog
from jobfiles.services.resume_manager import ResumeManager
from jobfiles.services.undo_service import UndoService


logger = structlog.get_logger("cli")


class JobFilesApp:
    """
    Wires every service around one shared operations log.

    Sharing the log gives all services the same session id, which is what
    makes their operations undoable through `undo`.
    """

    def __init__(self, settings: Optional[Settings] = None, session_id: Optional[str] = None):
        self.settings = settings or get_settings()
        self.operations_log = OperationsLog(self.settings, session_id=session_id)
        self.resumes = ResumeManager(self.settings, operations_log=self.operations_log)
        self.migration = MigrationService(self.settings, operations_log=self.operations_log)
        self.converter = AttachmentModeConverter(self.settings, operations_log=self.operations_log)
        self.undo = UndoService(
            self.settings,
            operations_log=self.operations_log,
            migration_log=self.migration.migration_log,
        )

    @property
    def session_id(self) -> str:
        return self.operations_log.session_id


def to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="jobfiles", description="Versioned job file lifecycle engine")
    parser.add_argument("--session", help="Session id shared by commands that should be undoable together")

    commands = parser.add_subparsers(dest="command")

    upload = commands.add_parser("upload", help="Upload a resume as a new version")
    upload.add_argument("file", help="Resume file to upload")
    upload.add_argument("--job", required=True, help="Owning job uuid")
    upload.add_argument("--company", required=True)
    upload.add_argument("--role", required=True)
    upload.add_argument("--name", default="", help="Person name placed in the filename")
    keep = upload.add_mutually_exclusive_group()
    keep.add_argument("--keep-original", dest="keep_original", action="store_true", default=None)
    keep.add_argument("--remove-original", dest="keep_original", action="store_false")

    listing = commands.add_parser("list", help="List resume entries")
    listing.add_argument("--job", help="Only entries of this job")

    history = commands.add_parser("history", help="Version history of a resume entry")
    history.add_argument("resume_id")

    rollback = commands.add_parser("rollback", help="Make an earlier version active again")
    rollback.add_argument("resume_id")
    rollback.add_argument("version_id")

    delete = commands.add_parser("delete", help="Delete a resume entry and its files")
    delete.add_argument("resume_id")

    scan = commands.add_parser("scan", help="Scan a directory for importable jobs")
    scan.add_argument("source", help="Directory to scan")

    preview = commands.add_parser("preview", help="Preview the folder a job would be imported to")
    preview.add_argument("--company")
    preview.add_argument("--role")
    preview.add_argument("--date", help="Applied date (YYYY-MM-DD)")

    import_cmd = commands.add_parser("import", help="Scan a directory and import its jobs")
    import_cmd.add_argument("source", help="Directory to import from")
    import_cmd.add_argument("--handle-conflicts", action="store_true", help="Import conflicting jobs too")
    backup = import_cmd.add_mutually_exclusive_group()
    backup.add_argument("--backup", dest="create_backup", action="store_true", default=None)
    backup.add_argument("--no-backup", dest="create_backup", action="store_false")

    for name, help_text in (
        ("to-reference", "Convert jobs from copy to reference mode"),
        ("to-copy", "Convert jobs from reference to copy mode"),
    ):
        convert = commands.add_parser(name, help=help_text)
        convert.add_argument("job_ids", nargs="+")
        convert.add_argument("--no-backup", dest="create_backup", action="store_false", default=True)

    operations = commands.add_parser("operations", help="Recent operations of any session")
    operations.add_argument("--limit", type=int, default=10)

    commands.add_parser("undoable", help="Undoable operations of the session")

    undo = commands.add_parser("undo", help="Undo an operation of the session")
    undo.add_argument("operation_id")

    return parser


async def run_command(app: JobFilesApp, args: argparse.Namespace) -> Any:
    """Execute one parsed command and return a JSON-serializable result."""
    if args.command == "upload":
        entry = await app.resumes.upload_resume(
            args.file,
            args.job,
            args.company,
            args.role,
            keep_original=args.keep_original,
            person_name=args.name,
        )
        return {"session_id": app.session_id, "entry": to_jsonable(entry)}

    if args.command == "list":
        if args.job:
            return to_jsonable(await app.resumes.get_resumes_by_job(args.job))
        return to_jsonable(await app.resumes.get_all_resumes())

    if args.command == "history":
        return to_jsonable(await app.resumes.get_version_history(args.resume_id))

    if args.command == "rollback":
        return to_jsonable(await app.resumes.rollback_to_version(args.resume_id, args.version_id))

    if args.command == "delete":
        return to_jsonable(await app.resumes.delete_resume(args.resume_id))

    if args.command == "scan":
        jobs = await app.migration.scan_for_importable_jobs(args.source)
        return to_jsonable(await app.migration.check_for_conflicts(jobs))

    if args.command == "preview":
        job = DetectedJob(company=args.company, role=args.role, applied_date=args.date)
        return app.migration.create_job_folder_preview(job)

    if args.command == "import":
        jobs = await app.migration.scan_for_importable_jobs(args.source)
        jobs = await app.migration.check_for_conflicts(jobs)
        result = await app.migration.execute_import(
            jobs,
            handle_conflicts=args.handle_conflicts,
            create_backup=args.create_backup,
        )
        return {"session_id": app.session_id, "result": to_jsonable(result)}

    if args.command == "to-reference":
        operation = await app.converter.copy_to_reference(args.job_ids, create_backup=args.create_backup)
        return {"session_id": app.session_id, "operation": to_jsonable(operation)}

    if args.command == "to-copy":
        operation = await app.converter.reference_to_copy(args.job_ids, create_backup=args.create_backup)
        return {"session_id": app.session_id, "operation": to_jsonable(operation)}

    if args.command == "operations":
        return to_jsonable(await app.operations_log.get_recent_operations(args.limit))

    if args.command == "undoable":
        return to_jsonable(await app.undo.get_undoable_operations())

    if args.command == "undo":
        return await app.undo.undo(args.operation_id)

    raise ValueError(f"Unknown command: {args.command}")


async def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    settings = get_settings()
    configure_logging(settings)
    app = JobFilesApp(settings, session_id=args.session)

    try:
        result = await run_command(app, args)
    except FileLifecycleError as e:
        logger.error("command_failed", command=args.command, error=str(e))
        print(json.dumps({"error": type(e).__name__, "message": str(e)}, indent=2))
        return 2

    print(json.dumps(result, indent=2))
    return 0


def run() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
