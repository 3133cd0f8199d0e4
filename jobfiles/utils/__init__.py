"""
Utilities Module.

Provides reusable utility functions for the file lifecycle engine.

Modules:
- hashing: SHA256 checksums for files and content, short MD5 keys
- file_utils: Directory walking, error-translating copies, atomic JSON documents
- string_utils: Filename sanitization and legacy filename heuristics
"""

from jobfiles.utils.hashing import (
    hash_file,
    hash_content,
    hash_string_md5,
)

from jobfiles.utils.file_utils import (
    walk_directory,
    get_file_extension,
    ensure_directory,
    translate_os_error,
    copy_file,
    read_json,
    atomic_write_json,
    remove_path,
)

from jobfiles.utils.string_utils import (
    sanitize_component,
    build_base_filename,
    sanitize_folder_name,
    parse_job_filename,
    JOB_FILENAME_PATTERNS,
)

__all__ = [
    # Hashing utilities
    'hash_file',
    'hash_content',
    'hash_string_md5',

    # File utilities
    'walk_directory',
    'get_file_extension',
    'ensure_directory',
    'translate_os_error',
    'copy_file',
    'read_json',
    'atomic_write_json',
    'remove_path',

    # String utilities
    'sanitize_component',
    'build_base_filename',
    'sanitize_folder_name',
    'parse_job_filename',
    'JOB_FILENAME_PATTERNS',
]
