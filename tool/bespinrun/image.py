#
# Copyright 2021, Breakaway Consulting Pty. Ltd.
#
# SPDX-License-Identifier: BSD-2-Clause
#
"""Stage the EFI system partition and pack it into a FAT32 disk image.

The image always has the same size, whatever the payload. A payload that
does not fit makes mcopy fail, which aborts the run.
"""
import shutil
from pathlib import Path
from typing import List

from bespinrun.build import BuildArtifacts
from bespinrun.config import BuildConfig, RunContext
from bespinrun.util import AssemblyError, kb, log, mb, run

IMAGE_SIZE = mb(64)
IMAGE_BLOCK_SIZE = kb(1)

BOOT_ENTRY_DIR = Path("EFI") / "Boot"
BOOT_ENTRY_NAME = "BootX64.efi"
KERNEL_NAME = "kernel"


def reset_esp(esp_dir: Path) -> None:
    # Remove the whole staging tree, not just EFI, so modules from an
    # earlier module list do not end up in the new image
    if esp_dir.exists():
        shutil.rmtree(esp_dir)
    (esp_dir / BOOT_ENTRY_DIR).mkdir(parents=True)


def _copy(src: Path, dest: Path) -> None:
    log.debug("copy %s -> %s", src, dest)
    shutil.copy(src, dest)


def stage_esp(artifacts: BuildArtifacts, config: BuildConfig, ctx: RunContext) -> Path:
    esp_dir = ctx.esp_dir(config.mode)
    try:
        reset_esp(esp_dir)
        _copy(artifacts.bootloader.path, esp_dir / BOOT_ENTRY_DIR / BOOT_ENTRY_NAME)
        for module in artifacts.modules:
            _copy(module.path, esp_dir / module.name)
        # A copy next to the kernel sources for local inspection
        _copy(artifacts.kernel.path, ctx.kernel_dir / KERNEL_NAME)
        _copy(artifacts.kernel.path, esp_dir / KERNEL_NAME)
    except OSError as e:
        raise AssemblyError(f"Error: unable to stage ESP in '{esp_dir}': {e}")

    for p in sorted(esp_dir.rglob("*")):
        log.info("%s", p)
    return esp_dir


def esp_entries(esp_dir: Path) -> List[Path]:
    return sorted(esp_dir.iterdir())


def _tool(cmd: List[str]) -> None:
    r = run(cmd)
    if r != 0:
        raise AssemblyError(f"Error: '{cmd[0]}' failed while creating the disk image (exit={r})")


def create_image(esp_dir: Path, image: Path) -> Path:
    """Pack `esp_dir` into a freshly zeroed FAT32 image at `image`.

    The old image is removed first so no filesystem metadata survives
    from a previous run."""
    log.info("> Making a bootable image")
    try:
        image.unlink(missing_ok=True)
    except OSError as e:
        raise AssemblyError(f"Error: unable to remove old image '{image}': {e}")

    count = IMAGE_SIZE // IMAGE_BLOCK_SIZE
    _tool(["dd", "if=/dev/zero", f"of={image}", "bs=1k", f"count={count}"])
    _tool(["mkfs.vfat", str(image), "-F", "32"])
    _tool(["mcopy", "-s", "-i", str(image)] + [str(p) for p in esp_entries(esp_dir)] + ["::/"])
    return image


def assemble(artifacts: BuildArtifacts, config: BuildConfig, ctx: RunContext) -> Path:
    esp_dir = stage_esp(artifacts, config, ctx)
    return create_image(esp_dir, ctx.image_path)
