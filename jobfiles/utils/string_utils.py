"""
String Utilities Module.

Provides the naming rules used across the engine:
- Component sanitization for managed resume filenames
- Folder-name sanitization for migrated job folders
- Filename heuristics for migration scanning
"""

import re
from typing import Dict, Optional


# Characters not allowed in filenames on common operating systems
UNSAFE_FILENAME_CHARS = r'[<>:"/\\|?*]'

# Maximum length of a sanitized folder component
MAX_COMPONENT_LENGTH = 100

# Filename patterns recognized when mining legacy job files.
# Each entry is (pattern, group order).
JOB_FILENAME_PATTERNS = [
    (re.compile(r'^(.+?)_(.+?)_(\d{8})$'), ("company", "role", "applied_date")),
    (re.compile(r'^(.+?) - (.+?) - (\d{4}-\d{2}-\d{2})$'), ("company", "role", "applied_date")),
    (re.compile(r'^(\d{4}-\d{2}-\d{2}) - (.+?) - (.+?)$'), ("applied_date", "company", "role")),
]


def sanitize_component(value: str) -> str:
    """
    Sanitize one component of a managed resume filename.

    Every character outside [a-zA-Z0-9] becomes an underscore.

    Example:
        >>> sanitize_component("Acme, Inc.")
        'Acme__Inc_'
    """
    return re.sub(r'[^a-zA-Z0-9]', '_', value)


def build_base_filename(company: str, role: str, date: str, person_name: str = "") -> str:
    """
    Build the base filename of a manifest entry.

    Example:
        >>> build_base_filename("Acme", "Engineer", "2024-01-01", "Jane Doe")
        'Acme_Engineer_Jane_Doe_2024-01-01'
    """
    name = person_name.strip()
    name_section = f"_{sanitize_component(name)}" if name else ""
    return f"{sanitize_component(company)}_{sanitize_component(role)}{name_section}_{date}"


def sanitize_folder_name(name: str) -> str:
    """
    Sanitize a string for use as a job folder component.

    - Replaces unsafe characters and whitespace with underscores
    - Collapses runs of underscores
    - Replaces a leading dot, drops a trailing dot
    - Caps the length at MAX_COMPONENT_LENGTH

    Example:
        >>> sanitize_folder_name('Acme:  R&D "Labs"')
        'Acme_R&D_Labs_'
    """
    cleaned = re.sub(UNSAFE_FILENAME_CHARS, '_', name)
    cleaned = re.sub(r'\s+', '_', cleaned)
    cleaned = re.sub(r'_+', '_', cleaned)
    cleaned = re.sub(r'^\.', '_', cleaned)
    cleaned = cleaned[:MAX_COMPONENT_LENGTH]
    return re.sub(r'\.$', '', cleaned)


def parse_job_filename(stem: str) -> Optional[Dict[str, str]]:
    """
    Recover company, role and date from a legacy filename stem.

    Recognizes `Company_Role_YYYYMMDD`, `Company - Role - YYYY-MM-DD`
    and `YYYY-MM-DD - Company - Role`.

    Example:
        >>> parse_job_filename("2024-03-01 - Globex - Analyst")
        {'applied_date': '2024-03-01', 'company': 'Globex', 'role': 'Analyst'}
        >>> parse_job_filename("notes") is None
        True
    """
    for pattern, fields in JOB_FILENAME_PATTERNS:
        match = pattern.match(stem)
        if match:
            return dict(zip(fields, match.groups()))
    return None

