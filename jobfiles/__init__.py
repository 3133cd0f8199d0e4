"""
Job Files - versioned file lifecycle engine for a job-application tracker.

Packages:
- services: locking, manifest persistence, versioning, operations log, undo
- execution: migration scanning/import and attachment mode conversion
- utils: hashing, file operations, naming rules
"""

__version__ = "1.0.0"
