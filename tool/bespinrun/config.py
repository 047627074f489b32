#
# Copyright 2021, Breakaway Consulting Pty. Ltd.
#
# SPDX-License-Identifier: BSD-2-Clause
#
"""Resolve user supplied options into a BuildConfig.

Also holds the fixed target triples and the RunContext, which owns the
names of every host resource a run touches (image file, tap device, ...).
Two runs sharing a RunContext must not overlap.
"""
import re
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import FrozenSet, Iterable, List, Optional, Tuple, Union

from bespinrun.util import ConfigError

UEFI_TARGET = "x86_64-uefi"
USER_TARGET = "x86_64-bespin-none"
KERNEL_TARGET = "x86_64-bespin"

BOOTLOADER_BINARY = "bootloader.efi"
KERNEL_BINARY = "bespin"

DEFAULT_MODULES = ("init",)

# Debug builds of user-space fall back to the rump runtime
USER_DEBUG_FEATURES = frozenset({"rumprt"})

FEATURES_TYPE = Union[None, str, Iterable[str]]


class BuildMode(IntEnum):
    DEBUG = 1
    RELEASE = 2

    def to_str(self) -> str:
        if self == BuildMode.DEBUG:
            return "debug"
        elif self == BuildMode.RELEASE:
            return "release"
        else:
            raise Exception(f"Unsupported build mode {self}")

    def build_args(self) -> List[str]:
        if self == BuildMode.RELEASE:
            return ["--release"]
        return []


@dataclass(frozen=True)
class BuildConfig:
    mode: BuildMode = BuildMode.DEBUG
    kernel_features: FrozenSet[str] = frozenset()
    user_features: FrozenSet[str] = frozenset()
    cmdline: str = ""
    modules: Tuple[str, ...] = DEFAULT_MODULES
    qemu_args: str = ""
    norun: bool = False
    cores: int = 1
    nodes: int = 1
    memory: int = 1024
    timeout: Optional[float] = None

    @property
    def release(self) -> bool:
        return self.mode == BuildMode.RELEASE

    def module_features(self) -> FrozenSet[str]:
        if self.mode == BuildMode.DEBUG:
            return self.user_features | USER_DEBUG_FEATURES
        return self.user_features


@dataclass(frozen=True)
class RunContext:
    root: Path
    tap_device: str = "tap0"
    tap_address: str = "172.31.0.20/24"
    image_name: str = "uefi.img"
    monitor_port: int = 55555
    debug_log_name: str = "debuglog.out"
    binutils_dir_name: str = "binutils-2.30.90"

    @property
    def target_dir(self) -> Path:
        return self.root / "target"

    @property
    def bootloader_dir(self) -> Path:
        return self.root / "bootloader"

    @property
    def kernel_dir(self) -> Path:
        return self.root / "kernel"

    @property
    def usr_dir(self) -> Path:
        return self.root / "usr"

    @property
    def cmdline_path(self) -> Path:
        return self.kernel_dir / "cmdline.in"

    @property
    def image_path(self) -> Path:
        return self.kernel_dir / self.image_name

    @property
    def debug_log_path(self) -> Path:
        return self.kernel_dir / self.debug_log_name

    @property
    def binutils_bin_dir(self) -> Path:
        return self.root / self.binutils_dir_name / "bin"

    def build_dir(self, target: str, mode: BuildMode) -> Path:
        return self.target_dir / target / mode.to_str()

    def esp_dir(self, mode: BuildMode) -> Path:
        return self.build_dir(UEFI_TARGET, mode) / "esp"


def parse_features(features: FEATURES_TYPE) -> FrozenSet[str]:
    """Features may be given as "a,b c" or as a list of such strings."""
    if features is None:
        return frozenset()
    if isinstance(features, str):
        features = [features]
    result = set()
    for item in features:
        result.update(f for f in re.split(r"[,\s]+", item) if f)
    return frozenset(result)


def _check_module_names(modules: Iterable[str]) -> Tuple[str, ...]:
    seen: List[str] = []
    for name in modules:
        if not name or name in (".", "..") or "/" in name or "\\" in name:
            raise ConfigError(f"Error: invalid module name '{name}'")
        if name in seen:
            raise ConfigError(f"Error: module '{name}' given more than once")
        seen.append(name)
    if len(seen) == 0:
        raise ConfigError("Error: at least one module must be given")
    return tuple(seen)


def resolve_config(
    release: bool = False,
    debug: bool = False,
    kernel_features: FEATURES_TYPE = None,
    user_features: FEATURES_TYPE = None,
    cmdline: Optional[str] = None,
    modules: Optional[Iterable[str]] = None,
    qemu_args: Optional[str] = None,
    norun: bool = False,
    cores: int = 1,
    nodes: int = 1,
    memory: int = 1024,
    timeout: Optional[float] = None,
) -> BuildConfig:
    if release and debug:
        raise ConfigError("Error: --release and --debug are mutually exclusive")
    mode = BuildMode.RELEASE if release else BuildMode.DEBUG

    if modules is None:
        modules = DEFAULT_MODULES
    module_names = _check_module_names(modules)

    if cores < 1:
        raise ConfigError(f"Error: cores must be at least 1 (got {cores})")
    if nodes < 1:
        raise ConfigError(f"Error: nodes must be at least 1 (got {nodes})")
    if cores % nodes != 0:
        raise ConfigError(f"Error: {cores} cores can not be divided evenly across {nodes} NUMA nodes")
    if memory < 1:
        raise ConfigError(f"Error: memory must be at least 1 MiB (got {memory})")
    if timeout is not None and timeout <= 0:
        raise ConfigError(f"Error: timeout must be positive (got {timeout})")

    return BuildConfig(
        mode=mode,
        kernel_features=parse_features(kernel_features),
        user_features=parse_features(user_features),
        cmdline=cmdline or "",
        modules=module_names,
        qemu_args=qemu_args or "",
        norun=norun,
        cores=cores,
        nodes=nodes,
        memory=memory,
        timeout=timeout,
    )
