"""
Exception taxonomy for the file lifecycle engine.

Single-item operations (upload, rollback) raise these to the caller; batch
operations catch them per item and record them in their logs.
"""


class FileLifecycleError(Exception):
    """Base exception for file lifecycle errors."""
    pass


class LockTimeout(FileLifecycleError):
    """The version lock could not be acquired within the timeout."""
    pass


class UnsupportedFileType(FileLifecycleError):
    """The file extension is not in the configured supported types."""

    def __init__(self, extension: str, supported: list[str]):
        self.extension = extension
        self.supported = supported
        super().__init__(
            f"Unsupported file type '{extension}'. Supported types: {', '.join(supported)}"
        )


class PermissionDenied(FileLifecycleError):
    """Writing into the managed folder was refused by the OS."""
    pass


class InsufficientSpace(FileLifecycleError):
    """The disk ran out of space while copying."""
    pass


class VersionMissing(FileLifecycleError):
    """A rollback target exists in the manifest but its file is gone."""
    pass


class VersionNotFound(FileLifecycleError):
    """A version id is not part of the manifest entry."""
    pass


class ResumeNotFound(FileLifecycleError):
    """A manifest entry id is unknown."""
    pass


class JobNotFound(FileLifecycleError):
    """No job.json could be located for a job id."""
    pass


class NotSupported(FileLifecycleError):
    """The requested operation is not supported (e.g. undoing a delete)."""
    pass


class OperationNotFound(FileLifecycleError):
    """The operation id is unknown or belongs to another session."""
    pass


class OperationNotUndoable(FileLifecycleError):
    """The operation was already undone or is not reversible."""
    pass


class ScanError(FileLifecycleError):
    """The migration source directory could not be scanned."""
    pass
