"""Command line interface for cargo-axbuild."""
from __future__ import annotations

from argparse import SUPPRESS, ArgumentParser, Namespace
from ipaddress import IPv4Address
from pathlib import Path
from typing import Iterable, List, Mapping, Tuple
import os
import sys

from .build import EXIT_NO_STATUS, BuildEngine
from .cargo import CargoError, CargoOptions
from .command_runner import CommandError, CommandRunner, RecordingCommandRunner, SubprocessCommandRunner
from .config_loader import ConfigError
from .console import Console
from .options import (
    DEFAULT_GATEWAY,
    DEFAULT_IP,
    BuildOptions,
    BusType,
    NetDevType,
    VMOptions,
    parse_cpus,
    parse_log_level,
)
from .platforms import Arch, Platform, arch_names, platform_names
from .qemu import UnsupportedPlatform
from .runner import RunnerEnvironmentError, execute_runner


EXIT_FAILURE = 1

# cargo passes the external subcommand name as the first argument
CARGO_SUBCOMMAND_NAME = "axbuild"

_CARGO_COMMANDS: Tuple[Tuple[str, List[str], str], ...] = (
    ("build", ["b"], "Compile the kernel"),
    ("rustc", [], "Compile the kernel, passing extra options to rustc"),
    ("check", [], "Check the kernel for errors"),
    ("clippy", ["lint"], "Lint the kernel with clippy"),
    ("run", ["r"], "Build and run the kernel under QEMU"),
)

_TRUE_VALUES = {"1", "true", "yes", "on"}

# flags whose value may only be attached with `=`
_EQUALS_ONLY_DEFAULTS = {"--net": NetDevType.USER.value}


def _env_flag(env: Mapping[str, str], name: str) -> bool:
    return env.get(name, "").strip().lower() in _TRUE_VALUES


def _split_trailing(argv: List[str]) -> Tuple[List[str], List[str]]:
    if "--" in argv:
        index = argv.index("--")
        return argv[:index], argv[index + 1:]
    return argv, []


def _require_equals(argv: List[str]) -> List[str]:
    """Give bare value-optional flags their default so they never take the next token.

    Cargo appends the kernel path right after the registered runner flags, so a
    trailing bare ``--net`` must not swallow it.
    """

    return [f"{arg}={_EQUALS_ONLY_DEFAULTS[arg]}" if arg in _EQUALS_ONLY_DEFAULTS else arg for arg in argv]


def _add_cargo_arguments(parser: ArgumentParser) -> None:
    group = parser.add_argument_group("Cargo Options")
    group.add_argument("-r", "--release", action="store_true", help="Build artifacts in release mode")
    group.add_argument("--profile", metavar="NAME", help="Build artifacts with the specified profile")
    group.add_argument("--target-dir", type=Path, metavar="DIRECTORY", help="Directory for all generated artifacts")
    group.add_argument("--manifest-path", type=Path, metavar="PATH", help="Path to Cargo.toml")
    group.add_argument("--message-format", action="append", default=[], metavar="FMT", help="Error format")
    group.add_argument("--target", action="append", default=[], metavar="TRIPLE", help=SUPPRESS)


def _add_arceos_arguments(parser: ArgumentParser, env: Mapping[str, str]) -> None:
    group = parser.add_argument_group("ArceOS Options")
    choice = group.add_mutually_exclusive_group()
    choice.add_argument("-A", "--arch", choices=arch_names(), help="Target architecture [env: ARCH]")
    choice.add_argument("-P", "--platform", choices=platform_names(), help="Target platform [env: PLATFORM]")
    group.add_argument(
        "--soft-float",
        action="store_true",
        default=_env_flag(env, "SOFT_FLOAT"),
        help="Enable soft float [env: SOFT_FLOAT]",
    )
    group.add_argument(
        "--cpus",
        type=parse_cpus,
        default=env.get("CPUS", "1"),
        metavar="N",
        help="Number of CPUs [env: CPUS] [default: 1]",
    )
    group.add_argument(
        "-c",
        "--configs",
        type=Path,
        action="append",
        default=None,
        metavar="PATH",
        help="Additional config files, applied in order [env: CONFIGS]",
    )
    group.add_argument(
        "-L",
        "--log",
        type=parse_log_level,
        default=env.get("LOG", "warn"),
        metavar="LEVEL",
        help="Log level [env: LOG] [default: warn]",
    )
    group.add_argument(
        "--ip",
        type=IPv4Address,
        default=env.get("IP", str(DEFAULT_IP)),
        metavar="ADDR",
        help=f"IP address [env: IP] [default: {DEFAULT_IP}]",
    )
    group.add_argument(
        "--gateway",
        type=IPv4Address,
        default=env.get("GW", str(DEFAULT_GATEWAY)),
        metavar="ADDR",
        help=f"Gateway [env: GW] [default: {DEFAULT_GATEWAY}]",
    )


def _add_qemu_arguments(parser: ArgumentParser, env: Mapping[str, str]) -> None:
    group = parser.add_argument_group("QEMU Options")
    group.add_argument("--smp", default=env.get("SMP") or None, metavar="N", help="Simulate a SMP system [env: SMP]")
    group.add_argument("-m", "--mem", metavar="SIZE", help="RAM size")
    group.add_argument("--bus", type=BusType, choices=list(BusType), metavar="{pci,mmio}", help="Device bus type")
    group.add_argument(
        "--net",
        nargs="?",
        const=NetDevType.USER,
        type=NetDevType,
        metavar="TYPE",
        help="Enable network device, a type is only accepted as --net=TYPE (user)",
    )
    group.add_argument("--net-dump", type=Path, metavar="FILE", help="Dump network packets to a file")
    group.add_argument("-d", "--disk", type=Path, help="Disk image")
    group.add_argument("-g", "--graphics", action="store_true", help="Enable graphics")
    exclusive = group.add_mutually_exclusive_group()
    exclusive.add_argument("--accel", action="store_true", help="Enable hardware acceleration (KVM on Linux or HVF on macOS)")
    exclusive.add_argument("-D", "--debug", action="store_true", help="Enable debugging")


def _build_parser(env: Mapping[str, str]) -> ArgumentParser:
    parser = ArgumentParser(
        prog="cargo-axbuild",
        description="Build and run ArceOS kernels through cargo",
        allow_abbrev=False,
    )
    subparsers = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    for name, aliases, help_text in _CARGO_COMMANDS:
        sub = subparsers.add_parser(name, aliases=aliases, help=help_text, allow_abbrev=False)
        sub.set_defaults(subcommand=name)
        _add_cargo_arguments(sub)
        _add_arceos_arguments(sub, env)
        if name == "run":
            _add_qemu_arguments(sub, env)
        sub.add_argument("--dry-run", action="store_true", help="Print the cargo command instead of running it")

    runner = subparsers.add_parser("runner", allow_abbrev=False)
    runner.set_defaults(subcommand="runner")
    _add_qemu_arguments(runner, env)
    runner.add_argument("--dry-run", action="store_true", help="Print the QEMU command instead of running it")
    runner.add_argument("binary", type=Path, help="Kernel binary produced by cargo")

    return parser


def _parse_arguments(argv: Iterable[str], env: Mapping[str, str]) -> Tuple[Namespace, List[str], List[str]]:
    args = list(argv)
    if args and args[0] == CARGO_SUBCOMMAND_NAME:
        args = args[1:]
    head, trailing = _split_trailing(args)
    head = _require_equals(head)

    parser = _build_parser(env)
    namespace, passthrough = parser.parse_known_args(head)
    if namespace.subcommand == "runner":
        if passthrough or trailing:
            parser.error(f"unrecognized arguments: {' '.join([*passthrough, *trailing])}")
    return namespace, passthrough, trailing


def _build_options(args: Namespace, env: Mapping[str, str]) -> BuildOptions:
    arch_name = args.arch
    platform_name = args.platform
    if arch_name is None and platform_name is None:
        arch_name = env.get("ARCH") or None
        platform_name = env.get("PLATFORM") or None

    configs = args.configs
    if configs is None:
        configs = [Path(part) for part in env.get("CONFIGS", "").split(os.pathsep) if part]

    return BuildOptions(
        arch=Arch.parse(arch_name) if arch_name else None,
        platform=Platform.parse(platform_name) if platform_name else None,
        soft_float=args.soft_float,
        cpus=parse_cpus(args.cpus),
        configs=tuple(configs),
        log=parse_log_level(args.log),
        ip=IPv4Address(args.ip),
        gateway=IPv4Address(args.gateway),
    )


def _vm_options(args: Namespace) -> VMOptions:
    return VMOptions(
        smp=args.smp,
        mem=args.mem,
        bus=args.bus,
        net=args.net is not None,
        net_type=args.net,
        net_dump=args.net_dump,
        disk=args.disk,
        graphics=args.graphics,
        accel=args.accel,
        debug=args.debug,
    )


def _cargo_options(args: Namespace, passthrough: List[str], trailing: List[str]) -> CargoOptions:
    return CargoOptions(
        subcommand=args.subcommand,
        release=args.release,
        profile=args.profile,
        target_dir=args.target_dir,
        manifest_path=args.manifest_path,
        message_format=list(args.message_format),
        target=list(args.target),
        passthrough=list(passthrough),
        trailing=list(trailing),
    )


def _select_runner(dry_run: bool) -> CommandRunner:
    if dry_run:
        return RecordingCommandRunner()
    return SubprocessCommandRunner()


def _emit_dry_run_output(runner: CommandRunner, env: Mapping[str, str] | None = None) -> None:
    if not isinstance(runner, RecordingCommandRunner):
        return
    if env:
        for key in sorted(env):
            print(f"[dry-run] {key}={env[key]}")
    for line in runner.iter_formatted():
        print(line)


def _handle_cargo(
    args: Namespace,
    passthrough: List[str],
    trailing: List[str],
    env: Mapping[str, str],
    console: Console,
) -> int:
    options = _build_options(args, env)
    vm = _vm_options(args) if args.subcommand == "run" else None
    cargo = _cargo_options(args, passthrough, trailing)

    runner = _select_runner(args.dry_run)
    engine = BuildEngine(command_runner=runner, console=console)
    plan = engine.plan(cargo, options, vm)
    code = engine.execute(plan)
    _emit_dry_run_output(runner, plan.env)
    return code


def _handle_runner(args: Namespace, env: Mapping[str, str], console: Console) -> int:
    runner = _select_runner(args.dry_run)
    execute_runner(_vm_options(args), args.binary, env=env, runner=runner, console=console)
    _emit_dry_run_output(runner)
    return 0


def main(argv: Iterable[str] | None = None, env: Mapping[str, str] | None = None) -> int:
    env = dict(os.environ) if env is None else env
    args, passthrough, trailing = _parse_arguments(sys.argv[1:] if argv is None else argv, env)
    console = Console()

    try:
        if args.subcommand == "runner":
            return _handle_runner(args, env, console)
        return _handle_cargo(args, passthrough, trailing, env, console)
    except CommandError as exc:
        console.error(str(exc))
        code = exc.result.exit_code
        return EXIT_NO_STATUS if code is None else code
    except RunnerEnvironmentError as exc:
        console.error(str(exc))
        return EXIT_NO_STATUS
    except (ConfigError, CargoError, UnsupportedPlatform, ValueError) as exc:
        console.error(str(exc))
        return EXIT_FAILURE


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
