"""Pytest configuration and shared fixtures for setup_texlive tests."""

import tempfile
from collections.abc import Callable, Generator, Sequence
from pathlib import Path
from unittest.mock import patch

import pytest

from setup_texlive.core.process import ExecOutput
from setup_texlive.core.types import Arch, Platform, ReleaseWindow, Version


@pytest.fixture(autouse=True)
def linux_x64() -> Generator[None, None, None]:
    """Run every test as if on x64 Linux."""
    with (
        patch.object(Platform, "current", return_value=Platform.LINUX),
        patch.object(Arch, "current", return_value=Arch.X64),
    ):
        yield


@pytest.fixture(autouse=True)
def no_sleep() -> Generator[None, None, None]:
    """Skip retry back-off delays."""
    with patch("setup_texlive.core.ctan.time.sleep"):
        yield


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def window() -> ReleaseWindow:
    """Release window centred on 2025."""
    return ReleaseWindow.around(Version("2025"))


class FakeRunner:
    """Process runner returning canned output.

    ``handler`` receives ``(command, args)`` and returns ``(exit_code,
    stdout, stderr)``; every call is recorded in ``calls``.
    """

    def __init__(self, handler: Callable[[str, list[str]], tuple[int, str, str]] | None = None):
        self.handler = handler or (lambda command, args: (0, "", ""))
        self.calls: list[tuple[str, list[str]]] = []

    def __call__(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        cwd=None,
        stdin=None,
        env=None,
        ignore_return_code: bool = False,
    ) -> ExecOutput:
        args = list(args)
        self.calls.append((command, args))
        exit_code, stdout, stderr = self.handler(command, args)
        output = ExecOutput(command, tuple(args), exit_code, stdout, stderr)
        if not ignore_return_code:
            output.check()
        return output

    def commands(self, command: str) -> list[list[str]]:
        """Argument lists of every call to ``command``."""
        return [args for name, args in self.calls if name == command]


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Runner where every command succeeds silently."""
    return FakeRunner()


@pytest.fixture
def make_runner() -> type[FakeRunner]:
    """Factory for runners with a custom handler."""
    return FakeRunner


# Pytest configuration
def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest settings."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    """Modify test collection to add markers automatically."""
    for item in items:
        # Add unit marker to all tests by default
        if not any(marker.name in ['integration', 'slow'] for marker in item.iter_markers()):
            item.add_marker(pytest.mark.unit)

