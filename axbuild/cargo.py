"""The subset of cargo's command line and output that axbuild has to understand."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Collection, Dict, List, Mapping
import json

from .command_runner import CommandError, CommandRunner
from .console import Console


DEFAULT_MESSAGE_FORMAT = "json-render-diagnostics"


class CargoError(RuntimeError):
    """Raised when cargo cannot tell us something we need."""


@dataclass(slots=True)
class CargoOptions:
    """Cargo flags axbuild reads, plus everything it forwards untouched."""

    subcommand: str
    release: bool = False
    profile: str | None = None
    target_dir: Path | None = None
    manifest_path: Path | None = None
    message_format: List[str] = field(default_factory=list)
    target: List[str] = field(default_factory=list)
    passthrough: List[str] = field(default_factory=list)
    trailing: List[str] = field(default_factory=list)

    @property
    def profile_name(self) -> str:
        """Name of the output directory cargo uses for the selected profile."""

        if self.release:
            return "release"
        if self.profile and self.profile != "dev":
            return self.profile
        return "debug"

    @property
    def captures_messages(self) -> bool:
        return not self.message_format

    def drop_target(self, console: Console) -> None:
        if self.target:
            self.target.clear()
            console.warn("`--target` option is ignored")

    def command(self) -> List[str]:
        """The cargo invocation without target selection or trailing args."""

        command: List[str] = ["cargo", self.subcommand, *self.passthrough]
        if self.release:
            command.append("--release")
        if self.profile:
            command.extend(["--profile", self.profile])
        if self.target_dir is not None:
            command.extend(["--target-dir", str(self.target_dir)])
        if self.manifest_path is not None:
            command.extend(["--manifest-path", str(self.manifest_path)])
        formats = self.message_format or [DEFAULT_MESSAGE_FORMAT]
        command.extend(f"--message-format={fmt}" for fmt in formats)
        return command

    def metadata_command(self) -> List[str]:
        command = ["cargo", "metadata", "--format-version", "1", "--no-deps"]
        if self.manifest_path is not None:
            command.extend(["--manifest-path", str(self.manifest_path)])
        return command

    def resolve_target_dir(self, runner: CommandRunner) -> Path:
        """``--target-dir`` if given, otherwise ask ``cargo metadata``."""

        if self.target_dir is not None:
            return Path(self.target_dir)

        try:
            result = runner.run(self.metadata_command())
            metadata = json.loads(result.stdout)
            return Path(metadata["target_directory"])
        except CommandError as exc:
            raise CargoError(f"failed to get metadata: {exc.result.stderr.strip() or exc}") from exc
        except (json.JSONDecodeError, KeyError, TypeError) as exc:
            raise CargoError(f"failed to get metadata: unexpected output ({exc})") from exc


ArtifactHandler = Callable[[str, Collection[str]], Any]


def parse_message(line: str) -> Dict[str, Any] | None:
    """Decode one line of cargo's JSON message stream.

    Returns ``None`` for lines that are not JSON objects; cargo forwards
    those verbatim from build scripts and the like.
    """

    text = line.strip()
    if not text.startswith("{"):
        return None
    try:
        message = json.loads(text)
    except json.JSONDecodeError:
        return None
    return message if isinstance(message, dict) else None


class MessageStream:
    """Line handler feeding cargo's stdout to the feature checker."""

    def __init__(self, console: Console, on_artifact: ArtifactHandler) -> None:
        self._console = console
        self._on_artifact = on_artifact

    def __call__(self, line: str) -> None:
        message = parse_message(line)
        if message is None:
            self._console.echo(line)
            return
        if message.get("reason") == "compiler-artifact":
            target: Mapping[str, Any] = message.get("target") or {}
            name = target.get("name")
            if name:
                self._on_artifact(str(name), list(message.get("features") or []))


__all__ = [
    "ArtifactHandler",
    "CargoError",
    "CargoOptions",
    "DEFAULT_MESSAGE_FORMAT",
    "MessageStream",
    "parse_message",
]
