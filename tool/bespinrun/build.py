#
# Copyright 2021, Breakaway Consulting Pty. Ltd.
#
# SPDX-License-Identifier: BSD-2-Clause
#
"""Cross-compile the bootloader, the user modules and the kernel.

Every component is built with xargo against a fixed target triple. Build
output lands in `target/<triple>/<debug|release>` under the source root.
The first failing compiler aborts the run.
"""
import os
import shutil
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Dict, FrozenSet, List, Tuple

from bespinrun.config import (
    BuildConfig,
    RunContext,
    UEFI_TARGET,
    USER_TARGET,
    KERNEL_TARGET,
    BOOTLOADER_BINARY,
    KERNEL_BINARY,
)
from bespinrun.util import BuildError, log, run

XARGO = "xargo"
CROSS_LINKER = "x86_64-elf-ld"


class ComponentKind(IntEnum):
    BOOTLOADER = 1
    KERNEL = 2
    MODULE = 3


@dataclass(frozen=True)
class BuildArtifact:
    kind: ComponentKind
    name: str
    path: Path
    output_dir: Path


@dataclass(frozen=True)
class BuildArtifacts:
    bootloader: BuildArtifact
    kernel: BuildArtifact
    modules: Tuple[BuildArtifact, ...]


def features_args(features: FrozenSet[str]) -> List[str]:
    if len(features) == 0:
        return []
    return ["--features", ",".join(sorted(features))]


def _build(name: str, cmd: List[str], cwd: Path, env: Dict[str, str]) -> None:
    if not cwd.is_dir():
        raise BuildError(f"Error: source directory for {name} '{cwd}' does not exist")
    r = run(cmd, cwd=cwd, env=env)
    if r != 0:
        raise BuildError(f"Error building: {name} (exit={r})")


def _artifact(kind: ComponentKind, name: str, output_dir: Path, filename: str) -> BuildArtifact:
    path = output_dir / filename
    if not path.is_file():
        raise BuildError(f"Error: build of {name} did not produce '{path}'")
    return BuildArtifact(kind=kind, name=name, path=path, output_dir=output_dir)


def build_bootloader(config: BuildConfig, ctx: RunContext) -> BuildArtifact:
    log.info("> Building the bootloader")
    env = os.environ.copy()
    env["RUST_TARGET_PATH"] = str(ctx.bootloader_dir)
    cmd = [XARGO, "build", "--target", UEFI_TARGET, "--package", "bootloader"]
    cmd += config.mode.build_args()
    _build("bootloader", cmd, ctx.bootloader_dir, env)
    output_dir = ctx.build_dir(UEFI_TARGET, config.mode)
    return _artifact(ComponentKind.BOOTLOADER, "bootloader", output_dir, BOOTLOADER_BINARY)


def build_module(module: str, config: BuildConfig, ctx: RunContext) -> BuildArtifact:
    """Build one user-space module.

    Modules share a target specification that lives in the `usr` directory
    itself, and only see the user features."""
    log.info("> Building user module %s", module)
    env = os.environ.copy()
    env["RUST_TARGET_PATH"] = str(ctx.usr_dir)
    cmd = [XARGO, "build", "--verbose", "--target", USER_TARGET]
    cmd += config.mode.build_args()
    cmd += features_args(config.module_features())
    _build(f"module {module}", cmd, ctx.usr_dir / module, env)
    output_dir = ctx.build_dir(USER_TARGET, config.mode)
    return _artifact(ComponentKind.MODULE, module, output_dir, module)


def write_cmdline(config: BuildConfig, ctx: RunContext) -> Path:
    """The kernel build embeds this file, so it must exist beforehand."""
    path = ctx.cmdline_path
    content = f"./kernel {config.cmdline}\n"
    log.debug("write %s (%d bytes)", path, len(content))
    try:
        with open(path, "w") as f:
            f.write(content)
    except OSError as e:
        raise BuildError(f"Error: unable to write kernel command line '{path}': {e}")
    return path


def kernel_env(ctx: RunContext) -> Dict[str, str]:
    env = os.environ.copy()
    env["BESPIN_TARGET"] = KERNEL_TARGET
    env["RUST_TARGET_PATH"] = str(ctx.kernel_dir / "src" / "arch" / "x86_64")
    env["PATH"] = os.pathsep.join([str(ctx.binutils_bin_dir), env.get("PATH", "")])
    # On non-Linux hosts the cross-compiled linker from binutils has to be used
    if shutil.which(CROSS_LINKER, path=env["PATH"]) is not None:
        env["CARGO_TARGET_X86_64_BESPIN_LINKER"] = CROSS_LINKER
    return env


def build_kernel(config: BuildConfig, ctx: RunContext) -> BuildArtifact:
    log.info("> Building the kernel")
    write_cmdline(config, ctx)
    cmd = [XARGO, "build", "--target", KERNEL_TARGET, "--verbose"]
    cmd += config.mode.build_args()
    cmd += features_args(config.kernel_features)
    _build("kernel", cmd, ctx.kernel_dir, kernel_env(ctx))
    output_dir = ctx.build_dir(KERNEL_TARGET, config.mode)
    return _artifact(ComponentKind.KERNEL, "kernel", output_dir, KERNEL_BINARY)


def build_all(config: BuildConfig, ctx: RunContext) -> BuildArtifacts:
    bootloader = build_bootloader(config, ctx)
    modules = tuple(build_module(module, config, ctx) for module in config.modules)
    kernel = build_kernel(config, ctx)
    return BuildArtifacts(bootloader=bootloader, kernel=kernel, modules=modules)
