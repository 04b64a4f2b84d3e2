"""Advisory checks on the cargo features enabled for kernel crates."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Collection, List

from .console import Console
from .platforms import Arch


@dataclass(frozen=True, slots=True)
class Feature:
    name: str
    cond: str
    packages: frozenset[str]


SMP = Feature(
    name="smp",
    cond="number of CPUs > 1",
    packages=frozenset(
        {
            "axlibc",
            "arceos_posix_api",
            "axstd",
            "axfeat",
            "axhal",
            "axruntime",
            "axtask",
        }
    ),
)

FP_SIMD = Feature(
    name="fp_simd",
    cond="compiling to AArch64 without soft float",
    packages=frozenset({"axlibc", "axstd", "axfeat", "axhal"}),
)


def active_features(*, cpus: int, arch: Arch, soft_float: bool) -> List[Feature]:
    """Features whose enabling condition holds for this build."""

    features: List[Feature] = []
    if cpus > 1:
        features.append(SMP)
    if arch is Arch.AARCH64 and not soft_float:
        features.append(FP_SIMD)
    return features


def check_features(
    features: Collection[Feature],
    package: str,
    enabled: Collection[str],
    *,
    console: Console | None = None,
) -> List[str]:
    """Warn when ``package`` lacks a feature required by ``features``.

    This never fails: cargo has usually finished compiling the crate by the
    time its artifact message is seen.
    """

    warnings: List[str] = []
    for feature in features:
        if package in feature.packages and feature.name not in enabled:
            message = f"feature `{feature.name}` should be enabled for package `{package}` when {feature.cond}"
            warnings.append(message)
            if console is not None:
                console.warn(message)
    return warnings


__all__ = ["FP_SIMD", "Feature", "SMP", "active_features", "check_features"]
