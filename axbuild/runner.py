"""Registration of axbuild as cargo's target runner, and the runner entry point.

``cargo axbuild run`` does not start QEMU itself. It points cargo's
``CARGO_TARGET_<TRIPLE>_RUNNER`` at ``cargo-axbuild runner <vm options>`` and
lets ``cargo run`` call back once the kernel is linked. The platform and CPU
count chosen at build time travel to that second process only through the
``AX_*`` environment variables set for the build.
"""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Mapping, Tuple
import re

from .command_runner import CommandResult, CommandRunner
from .console import Console
from .options import VMOptions
from .platforms import Platform
from .qemu import HostInfo, run_qemu


RUNNER_PROGRAM = "cargo-axbuild"
RUNNER_SUBCOMMAND = "runner"


class RunnerEnvironmentError(RuntimeError):
    """Raised when the runner is started without the build-time environment."""


def runner_env_var(target: str) -> str:
    """Name of cargo's per-target runner override for ``target``."""

    return f"CARGO_TARGET_{re.sub(r'[^A-Za-z0-9]+', '_', target).upper()}_RUNNER"


def runner_command(options: VMOptions, *, program: str = RUNNER_PROGRAM) -> str:
    # cargo splits runner strings on whitespace, so no shell quoting here
    return " ".join([program, RUNNER_SUBCOMMAND, *options.runner_args()])


def register_runner(options: VMOptions, target: str) -> Dict[str, str]:
    """Environment entries making cargo call back into ``runner``."""

    return {runner_env_var(target): runner_command(options)}


def read_build_environment(env: Mapping[str, str]) -> Tuple[Platform, str | None]:
    """Recover the platform and CPU count recorded by the build phase."""

    platform_name = env.get("AX_PLATFORM")
    if not platform_name:
        raise RunnerEnvironmentError(
            "environment variable `AX_PLATFORM` is not set; the runner must be invoked through `cargo axbuild run`"
        )
    try:
        platform = Platform.parse(platform_name)
    except ValueError as exc:
        raise RunnerEnvironmentError(f"invalid `AX_PLATFORM`: {exc}") from exc

    return platform, env.get("AX_SMP") or None


def execute_runner(
    options: VMOptions,
    binary: Path,
    *,
    env: Mapping[str, str],
    runner: CommandRunner,
    console: Console,
    host: HostInfo | None = None,
) -> CommandResult:
    platform, cpus = read_build_environment(env)
    if cpus is None:
        if options.smp is None:
            raise RunnerEnvironmentError("environment variable `AX_SMP` is not set")
        cpus = options.smp
    return run_qemu(options, platform, binary, cpus=cpus, runner=runner, console=console, host=host)


__all__ = [
    "RUNNER_PROGRAM",
    "RUNNER_SUBCOMMAND",
    "RunnerEnvironmentError",
    "execute_runner",
    "read_build_environment",
    "register_runner",
    "runner_command",
    "runner_env_var",
]
