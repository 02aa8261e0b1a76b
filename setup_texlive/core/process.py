"""External process execution."""

from __future__ import annotations

import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class ExecOutput:
    """Exit status and captured output of a finished command."""

    command: str
    args: tuple[str, ...]
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    def check(self) -> ExecOutput:
        """Raise :class:`ExecError` if the command failed.

        Returns:
            self, for chaining
        """
        if self.exit_code != 0:
            raise ExecError(self)
        return self


class ExecError(Exception):
    """Raised when a command exits with a non-zero status.

    Attributes:
        output: The captured output of the failed command
    """

    def __init__(self, output: ExecOutput):
        self.output = output
        super().__init__(
            f"`{output.command}` exited with status {output.exit_code}"
        )

    @property
    def exit_code(self) -> int:
        return self.output.exit_code

    @property
    def stderr(self) -> str:
        return self.output.stderr


class CommandRunner(Protocol):
    """Callable that runs a command and captures its output."""

    def __call__(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        cwd: Path | None = None,
        stdin: str | None = None,
        env: Mapping[str, str] | None = None,
        ignore_return_code: bool = False,
    ) -> ExecOutput: ...


def run_command(
    command: str,
    args: Sequence[str] = (),
    *,
    cwd: Path | None = None,
    stdin: str | None = None,
    env: Mapping[str, str] | None = None,
    ignore_return_code: bool = False,
) -> ExecOutput:
    """Run a command to completion and capture stdout and stderr.

    Args:
        command: Executable to run
        args: Command arguments
        cwd: Working directory
        stdin: Text fed to standard input; stdin is closed when None
        env: Environment for the child process
        ignore_return_code: Return the output instead of raising on failure

    Returns:
        Captured output

    Raises:
        ExecError: If the command fails and ``ignore_return_code`` is False
        OSError: If the command cannot be started
    """
    argv = [command, *args]
    logger.info("exec", command=" ".join(argv))
    completed = subprocess.run(
        argv,
        cwd=cwd,
        input=stdin if stdin is not None else "",
        env=dict(env) if env is not None else None,
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
    )
    output = ExecOutput(
        command=command,
        args=tuple(args),
        exit_code=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
    for line in output.stderr.splitlines():
        logger.debug("exec_stderr", command=command, line=line)
    if not ignore_return_code:
        output.check()
    return output
