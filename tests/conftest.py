"""
Pytest configuration and fixtures for pyblockdev tests.
"""

import sys
import tempfile
import textwrap
from pathlib import Path
from typing import Callable, Generator

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


@pytest.fixture(scope="session", autouse=True)
def quiet_logging() -> None:
    """Route structlog through stdlib logging without console output."""
    from blockdev.core.config import LoggingConfig
    from blockdev.core.logging import setup_logging

    setup_logging(LoggingConfig(console_enabled=False, file_enabled=False))


@pytest.fixture(autouse=True)
def reset_global_state() -> Generator[None, None, None]:
    """Drop process-wide library and executor state after each test."""
    yield

    from blockdev.core.library import set_library
    from blockdev.plugins import lvm as lvm_plugin
    from blockdev.utils import exec as bd_exec

    set_library(None)
    bd_exec.set_log_func(None)
    bd_exec.configure()
    lvm_plugin.set_global_config(None)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config() -> Generator["BlockDevConfig", None, None]:
    """Create a sample configuration for testing."""
    from blockdev.core.config import BlockDevConfig

    with tempfile.TemporaryDirectory() as tmpdir:
        config = BlockDevConfig()
        config.logging.log_directory = Path(tmpdir) / "logs"
        config.ensure_directories()
        yield config


@pytest.fixture
def library(sample_config: "BlockDevConfig") -> "Library":
    """A fresh Library installed as the process-wide one."""
    from blockdev.core.library import Library, set_library

    lib = Library(config=sample_config)
    set_library(lib)
    return lib


@pytest.fixture
def write_plugin(tmp_path: Path) -> Callable[[str, str], str]:
    """Write a plugin module into tmp_path and return its path."""

    def _write(filename: str, source: str) -> str:
        path = tmp_path / filename
        path.write_text(textwrap.dedent(source), encoding="utf-8")
        return str(path)

    return _write


FAKE_LVM_SOURCE = """
_config = ""


def get_supported_functions():
    return ["get_max_lv_size", "set_global_config", "get_global_config"]


def get_max_lv_size():
    return 42


def set_global_config(value):
    global _config
    _config = value or ""
    return True


def get_global_config():
    return _config
"""


@pytest.fixture
def fake_lvm_plugin(write_plugin: Callable[[str, str], str]) -> str:
    """Path of a minimal lvm plugin providing a small subset of functions."""
    return write_plugin("fake_lvm.py", FAKE_LVM_SOURCE)


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow running tests")
