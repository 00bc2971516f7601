# tests/conftest.py
"""
Common fixtures for all test types
These are shared across unit and integration tests
"""

import sys
import tempfile
from pathlib import Path

import pytest

# Add project root to Python path so 'courier' package can be imported
# This allows tests to run without installing the package
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from courier.file_worker import ProcessingContext  # noqa: E402

# 120 bytes of well-formed XML
REPORT = (
    b'<?xml version="1.0" encoding="UTF-8"?>\n'
    b"<Transactions>\n"
    b'  <Tx id="1">100.00</Tx>\n'
    b'  <Tx id="2">250.00</Tx>\n'
    b"</Transactions>\n"
)


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def report_bytes():
    """Valid report payload"""
    return REPORT


@pytest.fixture
def drop_dir(temp_dir):
    """Watch directory inside the temp dir"""
    path = temp_dir / "drop"
    path.mkdir()
    return path


@pytest.fixture
def context(drop_dir, temp_dir):
    """Processing context with production intervals (sleeps are patched in tests)"""
    return ProcessingContext(
        directory=str(drop_dir),
        output_directory=str(temp_dir / "archive"),
        url="http://collector.test/reports",
        token="secret-token",
    )
