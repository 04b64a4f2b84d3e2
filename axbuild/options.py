"""Kernel build options and emulator options, and their translation to cargo."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from ipaddress import IPv4Address
from pathlib import Path
from typing import Collection, Dict, List, Tuple

from .config_loader import CONFIG_FILE_NAME, dump_config, merge_config, write_if_changed
from .console import Console
from .features import Feature, active_features, check_features
from .platforms import Arch, Platform, resolve


LOG_LEVELS: Tuple[str, ...] = ("off", "error", "warn", "info", "debug", "trace")

DEFAULT_IP = IPv4Address("10.0.2.15")
DEFAULT_GATEWAY = IPv4Address("10.0.2.2")


def parse_log_level(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in LOG_LEVELS:
        raise ValueError(f"invalid log level '{value}' (choose from {', '.join(LOG_LEVELS)})")
    return normalized


def parse_cpus(value: str | int) -> int:
    try:
        cpus = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"invalid number of CPUs '{value}'") from None
    if cpus < 1:
        raise ValueError(f"number of CPUs must be at least 1, got {cpus}")
    return cpus


@dataclass(slots=True)
class TargetSetup:
    """Everything :meth:`BuildOptions.apply` adds to a cargo invocation."""

    target: str
    binary_dir: Path
    config_path: Path
    config_written: bool
    args: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class BuildOptions:
    arch: Arch | None = None
    platform: Platform | None = None
    soft_float: bool = False
    cpus: int = 1
    configs: Tuple[Path, ...] = ()
    log: str = "warn"
    ip: IPv4Address = DEFAULT_IP
    gateway: IPv4Address = DEFAULT_GATEWAY

    def __post_init__(self) -> None:
        if self.arch is not None and self.platform is not None:
            raise ValueError("the arguments '--arch' and '--platform' cannot be used together")
        if self.cpus < 1:
            raise ValueError(f"number of CPUs must be at least 1, got {self.cpus}")
        if self.log not in LOG_LEVELS:
            raise ValueError(f"invalid log level '{self.log}'")

    @property
    def selected_platform(self) -> Platform:
        return resolve(self.arch, self.platform)

    @property
    def selected_arch(self) -> Arch:
        return self.selected_platform.arch

    @property
    def target(self) -> str:
        return self.selected_arch.target(self.soft_float)

    def link_flags(self, binary_dir: Path) -> str | None:
        """RUSTFLAGS needed to link a kernel image, ``None`` for the dummy platform."""

        platform = self.selected_platform
        if platform.is_dummy:
            return None
        return (
            f"-C link-arg=-T{binary_dir}/{platform.linker_script} "
            "-C link-arg=-no-pie "
            "-C link-arg=-znostart-stop-gc"
        )

    def apply(self, target_dir: Path, profile: str) -> TargetSetup:
        """Generate the kernel config and compute cargo arguments and environment.

        The merged config is written to
        ``<target_dir>/<target>/<profile>/axconfig.toml`` only when it changed.
        """

        platform = self.selected_platform
        arch = platform.arch
        target = self.target

        binary_dir = Path(target_dir) / target / profile
        config_path = binary_dir / CONFIG_FILE_NAME

        config = merge_config(platform.base_config(), self.configs, self.cpus)
        written = write_if_changed(config_path, dump_config(config))

        env: Dict[str, str] = {
            "AX_CONFIG_PATH": str(config_path.resolve()),
            "AX_PLATFORM": platform.name,
            "AX_ARCH": arch.value,
            "AX_SMP": str(self.cpus),
            "AX_TARGET": target,
            "AX_MODE": profile,
            "AX_LOG": self.log.upper(),
        }
        if self.ip is not None:
            env["AX_IP"] = str(self.ip)
        if self.gateway is not None:
            env["AX_GW"] = str(self.gateway)

        link_flags = self.link_flags(binary_dir)
        if link_flags is not None:
            env["RUSTFLAGS"] = link_flags

        return TargetSetup(
            target=target,
            binary_dir=binary_dir,
            config_path=config_path,
            config_written=written,
            args=["--target", target],
            env=env,
        )

    def features(self) -> List[Feature]:
        return active_features(cpus=self.cpus, arch=self.selected_arch, soft_float=self.soft_float)

    def check_features(
        self,
        package: str,
        enabled: Collection[str],
        *,
        console: Console | None = None,
    ) -> List[str]:
        return check_features(self.features(), package, enabled, console=console)


class BusType(str, Enum):
    PCI = "pci"
    MMIO = "mmio"

    @property
    def vdev_suffix(self) -> str:
        return "pci" if self is BusType.PCI else "device"


class NetDevType(str, Enum):
    USER = "user"


@dataclass(frozen=True, slots=True)
class VMOptions:
    smp: str | None = None
    mem: str | None = None
    bus: BusType | None = None
    net: bool = False
    net_type: NetDevType | None = None
    net_dump: Path | None = None
    disk: Path | None = None
    graphics: bool = False
    accel: bool = False
    debug: bool = False

    def __post_init__(self) -> None:
        if self.debug and self.accel:
            raise ValueError("the argument '--debug' cannot be used with '--accel'")
        if self.net_dump is not None and not self.net:
            raise ValueError("the argument '--net-dump' requires '--net'")
        if self.net_type is not None and not self.net:
            raise ValueError("a network device type was given without enabling '--net'")

    @property
    def vdev_suffix(self) -> str:
        return (self.bus or BusType.PCI).vdev_suffix

    @property
    def net_device(self) -> NetDevType:
        return self.net_type or NetDevType.USER

    def runner_args(self) -> List[str]:
        """The flags reproducing these options on the ``runner`` command line."""

        args: List[str] = []
        if self.smp is not None:
            args.extend(["--smp", self.smp])
        if self.mem is not None:
            args.extend(["--mem", self.mem])
        if self.bus is not None:
            args.extend(["--bus", self.bus.value])
        if self.net:
            args.append(f"--net={self.net_device.value}")
        if self.net_dump is not None:
            args.extend(["--net-dump", str(self.net_dump)])
        if self.disk is not None:
            args.extend(["--disk", str(self.disk)])
        if self.graphics:
            args.append("--graphics")
        if self.accel:
            args.append("--accel")
        if self.debug:
            args.append("--debug")
        return args


__all__ = [
    "BuildOptions",
    "BusType",
    "DEFAULT_GATEWAY",
    "DEFAULT_IP",
    "LOG_LEVELS",
    "NetDevType",
    "TargetSetup",
    "VMOptions",
    "parse_cpus",
    "parse_log_level",
]
