"""Thin wrapper around subprocess so components can be tested with a fake runner"""

import subprocess
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any


@dataclass
class ProcessResult:
    """Exit code plus decoded output lines of a finished process"""

    returncode: int
    lines: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ProcessRunner:
    """Run external tools, streaming stdin/stdout from/to files when given

    When `stdout` is a path, the process writes straight into that file and
    only stderr is captured. Otherwise stdout and stderr are merged.
    `subprocess.TimeoutExpired` and `OSError` propagate to the caller.
    """

    def run(
        self,
        command: list[str],
        stdin: Path | None = None,
        stdout: Path | None = None,
        timeout: int | None = None,
    ) -> ProcessResult:
        with ExitStack() as stack:
            stdin_target: IO[bytes] | int = subprocess.DEVNULL
            if stdin is not None:
                stdin_target = stack.enter_context(open(stdin, "rb"))

            stdout_target: IO[bytes] | int = subprocess.PIPE
            stderr_target: int = subprocess.STDOUT
            if stdout is not None:
                stdout_target = stack.enter_context(open(stdout, "wb"))
                stderr_target = subprocess.PIPE

            result = subprocess.run(  # noqa: S603
                command, stdin=stdin_target, stdout=stdout_target, stderr=stderr_target, timeout=timeout
            )

        captured = result.stderr if stdout is not None else result.stdout
        return ProcessResult(returncode=result.returncode, lines=_decode_lines(captured))


def _decode_lines(data: Any) -> list[str]:
    if not data:
        return []
    return data.decode("utf-8", errors="replace").splitlines()


def display_command(command: list[str], secrets: tuple[str, ...] = ()) -> str:
    """Render a command for logs with every secret masked"""
    rendered = []
    for arg in command:
        for secret in secrets:
            if secret:
                arg = arg.replace(secret, "***")
        rendered.append(arg)
    return " ".join(rendered)
