"""Shared fixtures for processing tests."""

import io
import zipfile

import pytest

from docdive.processing.config import ScanConfig
from docdive.processing.workspace import TempWorkspace


@pytest.fixture
def scratch_root(tmp_path):
    return tmp_path / "scratch"


@pytest.fixture
def scan_config(scratch_root):
    """Scan settings with scratch files kept under tmp_path."""
    return ScanConfig(temp_root=str(scratch_root))


@pytest.fixture
def workspace(scratch_root):
    return TempWorkspace(scratch_root)


def make_zip(entries):
    """Build a zip archive in memory from {member name: bytes or str}."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buffer.getvalue()


@pytest.fixture
def nested_zip(tmp_path):
    """outer.zip containing inner.zip containing hello.txt."""
    inner = make_zip({"hello.txt": "Hello from the inner archive"})
    path = tmp_path / "outer.zip"
    path.write_bytes(make_zip({"inner.zip": inner}))
    return path


@pytest.fixture
def zip_builder():
    return make_zip
