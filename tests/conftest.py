"""
Pytest configuration and fixtures
"""
import os
import sys
import tempfile
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Keep rotating log files out of the source tree while testing.
os.environ.setdefault("DUPES_LOG_DIR", tempfile.mkdtemp(prefix="dupes-test-logs-"))

import dupes  # noqa: E402

dupes.setup_logger()


@pytest.fixture
def write_file():
    """Return a helper that writes `content` to `path`, creating parents."""

    def _write(path: Path, content: bytes) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return path

    return _write


@pytest.fixture
def scanner():
    return dupes.DupeScanner()
