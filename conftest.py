"""
Shared pytest fixtures for Job Files tests.

Provides settings rooted in a temporary data directory, sample resume files,
a legacy job tree to migrate from and wired-up services.
"""

import sys
import tempfile
from pathlib import Path
from uuid import uuid4

import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from jobfiles.config import Settings
from jobfiles.models import FileManagementPolicy
from jobfiles.services.operations_log import OperationsLog


# -------------------------------------------------------------------------
# Directory Fixtures
# -------------------------------------------------------------------------

@pytest.fixture
def temp_dir():
    """
    Provide a temporary directory for test files.

    Yields a Path object to a temporary directory that is cleaned up after the test.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# -------------------------------------------------------------------------
# Settings Fixtures
# -------------------------------------------------------------------------

@pytest.fixture
def test_settings(temp_dir):
    """
    Provide real settings whose persisted state lives under temp_dir.

    Lock timings are shortened so timeout tests finish quickly.
    """
    return Settings(
        data_dir=str(temp_dir / "data"),
        lock_timeout_seconds=1.0,
        lock_retry_interval_seconds=0.01,
        log_json=False,
        log_level="WARNING",
    )


@pytest.fixture
def file_management_policy(temp_dir):
    """Copy-mode policy with its job root and migration logs under temp_dir."""
    return FileManagementPolicy(
        root_directory=str(temp_dir / "jobs"),
        migration_log_path=str(temp_dir / "migration-logs"),
    )


@pytest.fixture
def operations_log(test_settings):
    """Operations log with a fixed session id."""
    return OperationsLog(test_settings, session_id="session-test")


# -------------------------------------------------------------------------
# Sample Data Fixtures
# -------------------------------------------------------------------------

@pytest.fixture
def job_id():
    """Generate a unique job UUID for testing."""
    return str(uuid4())


@pytest.fixture
def sample_resumes(temp_dir):
    """
    Create sample resume files for upload tests.

    Returns a dict mapping a short name to the file path.
    """
    uploads = temp_dir / "uploads"
    uploads.mkdir()

    files = {
        "pdf": uploads / "resume.pdf",
        "pdf_v2": uploads / "resume-updated.pdf",
        "docx": uploads / "cover.docx",
        "exe": uploads / "installer.exe",
    }
    files["pdf"].write_bytes(b"%PDF-1.4 first resume draft")
    files["pdf_v2"].write_bytes(b"%PDF-1.4 second resume draft with changes")
    files["docx"].write_bytes(b"PK\x03\x04 docx body")
    files["exe"].write_bytes(b"MZ not a resume")
    return files


@pytest.fixture
def legacy_jobs(temp_dir):
    """
    Create an externally organized job tree to migrate from.

    Layout:
        legacy/acme/Acme_Engineer_20240115.txt   (+ resume.pdf)
        legacy/globex/job.json                   (uuid, company, role)
        legacy/notes/readme.md                   (ignored by the scanner)
        legacy/initech/posting.txt               (body-only fields)
    """
    root = temp_dir / "legacy"

    acme = root / "acme"
    acme.mkdir(parents=True)
    (acme / "Acme_Engineer_20240115.txt").write_text(
        "We are hiring a backend engineer to build distributed services in Python.",
        encoding="utf-8",
    )
    (acme / "resume.pdf").write_bytes(b"%PDF-1.4 acme resume")

    globex = root / "globex"
    globex.mkdir()
    (globex / "job.json").write_text(
        '{"uuid": "globex-0001", "company": "Globex", "role": "Analyst", '
        '"applied_date": "2024-02-01", "jd_text": "Analyze quarterly numbers."}',
        encoding="utf-8",
    )

    notes = root / "notes"
    notes.mkdir()
    (notes / "readme.md").write_text("personal notes", encoding="utf-8")

    initech = root / "initech"
    initech.mkdir()
    (initech / "posting.txt").write_text(
        "Company: Initech\nPosition: TPS Report Specialist\n"
        "Reviews every TPS report before it leaves the building.",
        encoding="utf-8",
    )
    return root


# -------------------------------------------------------------------------
# Pytest Configuration
# -------------------------------------------------------------------------

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
