"""Planning and execution of cargo invocations for a kernel target."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

from .cargo import CargoOptions, MessageStream
from .command_runner import CommandRunner, SubprocessCommandRunner
from .console import Console
from .options import BuildOptions, TargetSetup, VMOptions
from .runner import register_runner


EXIT_NO_STATUS = 101
"""Exit code reported when a child process carries none (killed by a signal)."""


@dataclass(slots=True)
class BuildPlan:
    cargo: CargoOptions
    options: BuildOptions
    setup: TargetSetup
    command: List[str]
    env: Dict[str, str] = field(default_factory=dict)


class BuildEngine:
    def __init__(
        self,
        *,
        command_runner: CommandRunner,
        console: Console,
        query_runner: CommandRunner | None = None,
    ) -> None:
        self._command_runner = command_runner
        self._console = console
        # metadata queries must really run, even when builds are only recorded
        self._query_runner = query_runner or SubprocessCommandRunner()

    def plan(
        self,
        cargo: CargoOptions,
        options: BuildOptions,
        vm: VMOptions | None = None,
    ) -> BuildPlan:
        cargo.drop_target(self._console)

        command = cargo.command()
        target_dir = cargo.resolve_target_dir(self._query_runner)
        setup = options.apply(target_dir, cargo.profile_name)
        command.extend(setup.args)
        if cargo.trailing:
            command.extend(["--", *cargo.trailing])

        env = dict(setup.env)
        if vm is not None:
            env.update(register_runner(vm, setup.target))

        return BuildPlan(cargo=cargo, options=options, setup=setup, command=command, env=env)

    def execute(self, plan: BuildPlan) -> int:
        """Run cargo for ``plan`` and return the exit code to propagate."""

        on_line = None
        if plan.cargo.captures_messages:
            on_line = MessageStream(
                self._console,
                lambda package, features: plan.options.check_features(
                    package, features, console=self._console
                ),
            )

        result = self._command_runner.run(
            plan.command,
            env=plan.env,
            check=False,
            stream=True,
            on_stdout_line=on_line,
        )
        if result.exit_code is None:
            return EXIT_NO_STATUS
        return result.exit_code


__all__ = ["BuildEngine", "BuildPlan", "EXIT_NO_STATUS"]
