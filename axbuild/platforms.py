"""Static tables of supported architectures and platforms."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from importlib import resources
from typing import Dict, List, Mapping

import tomlkit
from tomlkit.toml_document import TOMLDocument

from .config_loader import overlay_config


class Arch(str, Enum):
    AARCH64 = "aarch64"
    LOONGARCH64 = "loongarch64"
    RISCV64 = "riscv64"
    X86_64 = "x86_64"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, name: str) -> "Arch":
        try:
            return cls(name)
        except ValueError:
            choices = ", ".join(arch.value for arch in cls)
            raise ValueError(f"unknown architecture '{name}' (choose from {choices})") from None

    @property
    def default_platform(self) -> "Platform":
        return PLATFORMS[_DEFAULT_PLATFORMS[self]]

    def target(self, soft_float: bool = False) -> str:
        """Return the rustc target triple for this architecture."""

        return _TARGETS[(self, soft_float and self is Arch.AARCH64)]


_TARGETS: Dict[tuple[Arch, bool], str] = {
    (Arch.AARCH64, False): "aarch64-unknown-none",
    (Arch.AARCH64, True): "aarch64-unknown-none-softfloat",
    (Arch.LOONGARCH64, False): "loongarch64-unknown-none",
    (Arch.RISCV64, False): "riscv64gc-unknown-none-elf",
    (Arch.X86_64, False): "x86_64-unknown-none",
}


@dataclass(frozen=True, slots=True)
class Platform:
    name: str
    arch: Arch

    def __str__(self) -> str:
        return self.name

    @property
    def is_dummy(self) -> bool:
        return self.name == DUMMY

    @property
    def linker_script(self) -> str:
        return f"linker_{self.name}.lds"

    def base_config(self) -> TOMLDocument:
        """Built-in defaults overlaid with this platform's fragment."""

        config = _builtin_document("defconfig")
        overlay_config(config, _builtin_document(self.name))
        return config

    @classmethod
    def parse(cls, name: str) -> "Platform":
        try:
            return PLATFORMS[name]
        except KeyError:
            choices = ", ".join(PLATFORMS)
            raise ValueError(f"unknown platform '{name}' (choose from {choices})") from None


DUMMY = "dummy"

PLATFORMS: Mapping[str, Platform] = {
    platform.name: platform
    for platform in (
        Platform(DUMMY, Arch.X86_64),
        Platform("aarch64-bsta1000b", Arch.AARCH64),
        Platform("aarch64-phytium-pi", Arch.AARCH64),
        Platform("aarch64-qemu-virt", Arch.AARCH64),
        Platform("aarch64-raspi4", Arch.AARCH64),
        Platform("loongarch64-qemu-virt", Arch.LOONGARCH64),
        Platform("riscv64-qemu-virt", Arch.RISCV64),
        Platform("x86_64-pc-oslab", Arch.X86_64),
        Platform("x86_64-qemu-q35", Arch.X86_64),
    )
}

_DEFAULT_PLATFORMS: Dict[Arch, str] = {
    Arch.AARCH64: "aarch64-qemu-virt",
    Arch.LOONGARCH64: "loongarch64-qemu-virt",
    Arch.RISCV64: "riscv64-qemu-virt",
    Arch.X86_64: "x86_64-qemu-q35",
}


@lru_cache(maxsize=None)
def _builtin_text(name: str) -> str:
    return resources.files(__package__).joinpath("configs", f"{name}.toml").read_text(encoding="utf-8")


def _builtin_document(name: str) -> TOMLDocument:
    # parsed on every call, documents are mutated by the caller
    return tomlkit.parse(_builtin_text(name))


def resolve(arch: Arch | str | None = None, platform: Platform | str | None = None) -> Platform:
    """Pick the platform for an explicit architecture or platform.

    At most one of ``arch`` and ``platform`` may be given. An architecture maps
    to its default platform; with neither, the dummy platform is returned.
    """

    if arch is not None and platform is not None:
        raise ValueError("the arguments '--arch' and '--platform' cannot be used together")
    if arch is not None:
        if not isinstance(arch, Arch):
            arch = Arch.parse(arch)
        return arch.default_platform
    if platform is not None:
        if isinstance(platform, Platform):
            return platform
        return Platform.parse(platform)
    return PLATFORMS[DUMMY]


def platform_names() -> List[str]:
    return list(PLATFORMS)


def arch_names() -> List[str]:
    return [arch.value for arch in Arch]


__all__ = [
    "Arch",
    "DUMMY",
    "PLATFORMS",
    "Platform",
    "arch_names",
    "platform_names",
    "resolve",
]
