"""Fixtures for libCZIApi integration tests.

These tests need the real libCZIApi shared library. They are skipped if it
cannot be loaded.

The library can be provided via:
1. LIBCZI_LIBRARY environment variable (file name or absolute path)
2. A liblibCZIAPI.so / libCZIAPI.dll on the platform's library search path

A CZI document to read can be supplied with CZI_TEST_FILE.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from czibridge.native.exceptions import LibraryLoadError
from czibridge.native.library import LibCZILibrary

pytestmark = pytest.mark.integration


@pytest.fixture(scope="session")
def native_lib() -> LibCZILibrary:
    """Load the real libCZIApi, skipping the test if it is unavailable."""
    try:
        return LibCZILibrary()
    except LibraryLoadError as e:
        pytest.skip(f"libCZIApi not available: {e}")


@pytest.fixture(scope="session")
def czi_test_file() -> Path:
    """Path to a real CZI document, skipping the test if none is configured."""
    env_path = os.environ.get("CZI_TEST_FILE")
    if not env_path or not Path(env_path).is_file():
        pytest.skip("No CZI test file available. Set CZI_TEST_FILE to a .czi document.")
    return Path(env_path)
