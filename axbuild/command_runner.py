"""Utilities for executing external tools with optional dry-run support."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Sequence
import os
import shlex
import subprocess


LineHandler = Callable[[str], None]


@dataclass
class CommandResult:
    """Represents the outcome of an executed command."""

    command: Sequence[str]
    returncode: int | None
    stdout: str
    stderr: str
    streamed: bool = False

    @property
    def exit_code(self) -> int | None:
        """Exit code of the process, ``None`` when it was killed by a signal."""

        if self.returncode is None or self.returncode < 0:
            return None
        return self.returncode


class CommandError(RuntimeError):
    """Raised when a command fails."""

    def __init__(self, result: CommandResult):
        if result.exit_code is None:
            status = "terminated by signal"
        else:
            status = f"exit status: {result.exit_code}"
        message = f"command failed with {status}: {' '.join(map(shlex.quote, result.command))}"
        if not result.streamed and (result.stdout or result.stderr):
            message = (
                f"{message}\n"
                f"stdout: {result.stdout}\n"
                f"stderr: {result.stderr}"
            )
        super().__init__(message)
        self.result = result


class CommandRunner:
    """Abstract command runner interface."""

    def run(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        stream: bool = False,
        on_stdout_line: LineHandler | None = None,
    ) -> CommandResult:
        raise NotImplementedError

    def format_command(self, command: Sequence[str]) -> str:
        return " ".join(shlex.quote(part) for part in command)


class SubprocessCommandRunner(CommandRunner):
    """Command runner that executes commands via :mod:`subprocess`.

    With ``stream`` set the child inherits the terminal. When
    ``on_stdout_line`` is also given, the child's stdout is piped and every
    line is handed to the callback as it arrives, while stderr stays attached
    to the terminal.
    """

    @staticmethod
    def _merge_environment(env: Mapping[str, str] | None) -> Dict[str, str] | None:
        if env is None:
            return None
        merged = os.environ.copy()
        merged.update(env)
        return merged

    def _finalize(self, result: CommandResult, *, check: bool) -> CommandResult:
        if check and result.returncode != 0:
            raise CommandError(result)
        return result

    def run(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        stream: bool = False,
        on_stdout_line: LineHandler | None = None,
    ) -> CommandResult:
        merged_env = self._merge_environment(env)
        if not stream:
            process = subprocess.run(
                command,
                env=merged_env,
                capture_output=True,
                text=True,
                check=False,
            )
            return self._finalize(
                CommandResult(
                    command=command,
                    returncode=process.returncode,
                    stdout=process.stdout,
                    stderr=process.stderr,
                ),
                check=check,
            )

        if on_stdout_line is None:
            process = subprocess.run(
                command,
                env=merged_env,
                check=False,
            )
            returncode = process.returncode
        else:
            with subprocess.Popen(
                command,
                env=merged_env,
                stdout=subprocess.PIPE,
                text=True,
                bufsize=1,
            ) as child:
                assert child.stdout is not None
                for line in child.stdout:
                    on_stdout_line(line.rstrip("\n"))
                returncode = child.wait()

        return self._finalize(
            CommandResult(
                command=command,
                returncode=returncode,
                stdout="",
                stderr="",
                streamed=True,
            ),
            check=check,
        )


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    env: Dict[str, str]


class RecordingCommandRunner(CommandRunner):
    """Command runner that records commands instead of executing them."""

    def __init__(self, *, stdout_lines: Iterable[str] = (), returncode: int = 0) -> None:
        self.commands: List[RecordedCommand] = []
        self._stdout_lines = list(stdout_lines)
        self._returncode = returncode

    def run(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        stream: bool = False,
        on_stdout_line: LineHandler | None = None,
    ) -> CommandResult:
        self.commands.append(RecordedCommand(command=list(command), env=dict(env) if env else {}))
        if on_stdout_line is not None:
            for line in self._stdout_lines:
                on_stdout_line(line)
        result = CommandResult(
            command=command,
            returncode=self._returncode,
            stdout="",
            stderr="",
            streamed=stream,
        )
        if check and result.returncode != 0:
            raise CommandError(result)
        return result

    def iter_formatted(self) -> Iterable[str]:
        for record in self.commands:
            yield f"[dry-run] {self.format_command(record.command)}"


__all__ = [
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "LineHandler",
    "RecordedCommand",
    "RecordingCommandRunner",
    "SubprocessCommandRunner",
]
