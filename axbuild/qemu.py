"""QEMU command line synthesis for running a built kernel image."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Sequence, Tuple
import platform as host_platform
import sys

from .command_runner import CommandResult, CommandRunner
from .console import Console
from .options import NetDevType, VMOptions
from .platforms import Arch, Platform


class UnsupportedPlatform(ValueError):
    def __init__(self, platform: Platform):
        super().__init__(f"unsupported platform: {platform.name}")
        self.platform = platform


# platform name -> (machine type, default memory size)
MACHINES: Dict[str, Tuple[str, str | None]] = {
    "aarch64-qemu-virt": ("virt", None),
    "aarch64-raspi4": ("raspi4b", "2G"),
    "loongarch64-qemu-virt": ("virt", "1G"),
    "riscv64-qemu-virt": ("virt", None),
    "x86_64-qemu-q35": ("q35", None),
}

CPU_MODELS: Dict[Arch, str] = {
    Arch.AARCH64: "cortex-a72",
}

# these boot from a flat binary rather than the linked ELF
RAW_IMAGE_ARCHES = frozenset({Arch.AARCH64, Arch.RISCV64})

OBJCOPY = "rust-objcopy"

NETDEV_BACKENDS: Dict[NetDevType, str] = {
    NetDevType.USER: "user,id=net0,hostfwd=tcp::5555-:5555,hostfwd=udp::5555-:5555",
}

_HOST_MACHINES: Dict[str, Arch] = {
    "x86_64": Arch.X86_64,
    "amd64": Arch.X86_64,
    "aarch64": Arch.AARCH64,
    "arm64": Arch.AARCH64,
}


@dataclass(frozen=True, slots=True)
class HostInfo:
    """What the machine running QEMU can offer for acceleration."""

    machine: str
    is_apple: bool
    kvm_available: bool

    @classmethod
    def detect(cls, kvm_device: Path = Path("/dev/kvm")) -> "HostInfo":
        return cls(
            machine=host_platform.machine(),
            is_apple=sys.platform == "darwin",
            kvm_available=kvm_device.exists(),
        )

    @property
    def native_arch(self) -> Arch | None:
        return _HOST_MACHINES.get(self.machine.lower())

    @property
    def accelerator(self) -> str:
        return "hvf" if self.is_apple else "kvm"

    def can_accelerate(self, arch: Arch) -> bool:
        # HVF is assumed present on every Apple host
        return self.native_arch is arch and (self.is_apple or self.kvm_available)


def machine_for(platform: Platform) -> Tuple[str, str | None]:
    try:
        return MACHINES[platform.name]
    except KeyError:
        raise UnsupportedPlatform(platform) from None


def qemu_program(arch: Arch) -> str:
    return f"qemu-system-{arch.value}"


def kernel_image(binary: Path, arch: Arch) -> Path:
    """Path of the image QEMU boots for ``binary``."""

    if arch in RAW_IMAGE_ARCHES:
        return binary.with_suffix(".bin")
    return binary


def objcopy_command(binary: Path, image: Path) -> List[str]:
    return [OBJCOPY, "--strip-all", "-O", "binary", str(binary), str(image)]


def build_qemu_args(
    options: VMOptions,
    platform: Platform,
    kernel: Path,
    *,
    cpus: str,
    host: HostInfo,
) -> List[str]:
    """Return the full QEMU argv, program name first."""

    machine, default_mem = machine_for(platform)
    arch = platform.arch

    args: List[str] = [
        qemu_program(arch),
        "-kernel",
        str(kernel),
        "-machine",
        machine,
        "-smp",
        options.smp if options.smp is not None else cpus,
    ]

    cpu_model = CPU_MODELS.get(arch)
    if cpu_model is not None:
        args.extend(["-cpu", cpu_model])

    mem = options.mem if options.mem is not None else default_mem
    if mem is not None:
        args.extend(["-m", mem])

    suffix = options.vdev_suffix

    if options.net:
        backend = NETDEV_BACKENDS[options.net_device]
        args.extend(["-device", f"virtio-net-{suffix},netdev=net0", "-netdev", backend])

    if options.net_dump is not None:
        args.extend(["-object", f"filter-dump,id=dump0,netdev=net0,file={options.net_dump}"])

    if options.disk is not None:
        args.extend(
            [
                "-device",
                f"virtio-blk-{suffix},drive=disk0",
                "-drive",
                f"id=disk0,if=none,format=raw,file={options.disk}",
            ]
        )

    if options.graphics:
        args.extend(["-device", f"virtio-gpu-{suffix}", "-vga", "none", "-serial", "mon:stdio"])
    else:
        args.append("-nographic")

    if options.debug:
        args.extend(["-s", "-S"])
    elif options.accel or host.can_accelerate(arch):
        args.extend(["-cpu", "host", "-accel", host.accelerator])

    return args


def run_command(runner: CommandRunner, console: Console, command: Sequence[str]) -> CommandResult:
    console.status("Running", f"`{' '.join(command)}`")
    return runner.run(command, stream=True)


def run_qemu(
    options: VMOptions,
    platform: Platform,
    binary: Path,
    *,
    cpus: str,
    runner: CommandRunner,
    console: Console,
    host: HostInfo | None = None,
) -> CommandResult:
    """Prepare the kernel image for ``platform`` and boot it under QEMU.

    Raises :class:`UnsupportedPlatform` before touching anything when the
    platform has no QEMU machine, and :class:`CommandError` when objcopy or
    QEMU exits unsuccessfully.
    """

    machine_for(platform)
    host = host or HostInfo.detect()

    kernel = kernel_image(binary, platform.arch)
    if kernel != binary:
        run_command(runner, console, objcopy_command(binary, kernel))

    args = build_qemu_args(options, platform, kernel, cpus=cpus, host=host)
    return run_command(runner, console, args)


__all__ = [
    "CPU_MODELS",
    "HostInfo",
    "MACHINES",
    "NETDEV_BACKENDS",
    "OBJCOPY",
    "RAW_IMAGE_ARCHES",
    "UnsupportedPlatform",
    "build_qemu_args",
    "kernel_image",
    "machine_for",
    "objcopy_command",
    "qemu_program",
    "run_qemu",
]
