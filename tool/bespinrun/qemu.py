#
# Copyright 2021, Breakaway Consulting Pty. Ltd.
#
# SPDX-License-Identifier: BSD-2-Clause
#
"""Boot the assembled image under QEMU.

The guest relies on fs/gs base instructions that are only available with
KVM, so a host without KVM is a fatal precondition failure. There is no
unaccelerated fallback.
"""
import getpass
import grp
import os
import shlex
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import pexpect

from bespinrun.config import BuildConfig, RunContext
from bespinrun.util import LaunchError, PreconditionError, command_str, log, run

QEMU = "qemu-system-x86_64"

PROC_MODULES = Path("/proc/modules")
KVM_MODULE = "kvm_intel"

KVM_ARGS = ["-enable-kvm", "-cpu", "host,migratable=no,+invtsc,+tsc"]

# The guest writes its status to this port, QEMU exits with (status << 1) | 1
DEBUG_EXIT_DEVICE = "isa-debug-exit,iobase=0xf4,iosize=0x04"

OVMF_CODE = "OVMF_CODE.fd"
OVMF_VARS = "OVMF_VARS.fd"


def kvm_supported(modules_file: Path = PROC_MODULES) -> bool:
    try:
        with open(modules_file, "r") as f:
            for line in f:
                fields = line.split()
                if fields and fields[0] == KVM_MODULE:
                    return True
    except OSError as e:
        log.warning("unable to read %s: %s", modules_file, e)
    return False


def check_acceleration(modules_file: Path = PROC_MODULES) -> None:
    if not kvm_supported(modules_file):
        raise PreconditionError(
            f"Error: No KVM ({KVM_MODULE} is not loaded), the system would fail in "
            "initialization since we're missing fs/gs base instructions."
        )


def _user_and_group() -> Tuple[str, str]:
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = str(os.getuid())
    try:
        group = grp.getgrgid(os.getgid()).gr_name
    except KeyError:
        group = str(os.getgid())
    return user, group


def provision_tap(ctx: RunContext) -> None:
    """Create the host tap device and give it an address.

    Runs on every launch. Failures are tolerated since the device
    usually exists already from an earlier run."""
    user, group = _user_and_group()
    for cmd in (
        ["sudo", "tunctl", "-t", ctx.tap_device, "-u", user, "-g", group],
        ["sudo", "ifconfig", ctx.tap_device, ctx.tap_address],
    ):
        r = run(cmd)
        if r != 0:
            log.warning("'%s' failed (exit=%d), continuing", command_str(cmd), r)


@dataclass
class LaunchSpec:
    image: Path
    firmware_dir: Path
    tap_device: str
    monitor_port: int
    debug_log: Path
    memory: int = 1024
    cores: int = 1
    nodes: int = 1
    accel_args: List[str] = field(default_factory=lambda: list(KVM_ARGS))
    extra_args: List[str] = field(default_factory=list)

    @classmethod
    def from_config(cls, image: Path, config: BuildConfig, ctx: RunContext) -> "LaunchSpec":
        return cls(
            image=image,
            firmware_dir=ctx.bootloader_dir,
            tap_device=ctx.tap_device,
            monitor_port=ctx.monitor_port,
            debug_log=ctx.debug_log_path,
            memory=config.memory,
            cores=config.cores,
            nodes=config.nodes,
            extra_args=shlex.split(config.qemu_args),
        )

    def uefi_args(self) -> List[str]:
        return [
            "-drive", f"if=pflash,format=raw,file={self.firmware_dir / OVMF_CODE},readonly=on",
            "-drive", f"if=pflash,format=raw,file={self.firmware_dir / OVMF_VARS},readonly=on",
            "-device", "ahci,id=ahci,multifunction=on",
            "-drive", f"if=none,format=raw,file={self.image},id=esp",
            "-device", "ide-hd,bus=ahci.0,drive=esp",
        ]

    def net_args(self) -> List[str]:
        return [
            "-net", "nic,model=e1000,netdev=n0",
            "-netdev", f"tap,id=n0,script=no,ifname={self.tap_device}",
        ]

    def smp_args(self) -> List[str]:
        if self.cores == 1 and self.nodes == 1:
            return []
        return ["-smp", f"{self.cores},sockets={self.nodes}"]

    def monitor_args(self) -> List[str]:
        # https://en.wikibooks.org/wiki/QEMU/Monitor
        return [
            "-monitor", f"telnet:127.0.0.1:{self.monitor_port},server,nowait",
            "-d", "guest_errors",
            "-d", "int",
            "-D", str(self.debug_log),
        ]

    def args(self) -> List[str]:
        # User supplied arguments go last so they override anything before
        return [
            QEMU,
            *self.accel_args,
            "-m", str(self.memory),
            "-d", "int",
            "-nographic",
            "-device", DEBUG_EXIT_DEVICE,
            *self.uefi_args(),
            *self.net_args(),
            *self.smp_args(),
            *self.monitor_args(),
            *self.extra_args,
        ]


def launch(spec: LaunchSpec, timeout: Optional[float] = None) -> int:
    """Run QEMU in the foreground and return its raw exit code.

    With no timeout this blocks until the guest exits."""
    args = spec.args()
    log.info("$ %s", command_str(args))
    try:
        child = pexpect.spawn(
            args[0],
            args[1:],
            timeout=timeout,
            encoding="utf-8",
            codec_errors="replace",
        )
    except pexpect.ExceptionPexpect as e:
        raise LaunchError(f"Error: unable to start {args[0]}: {e}")
    child.logfile_read = sys.stdout

    try:
        child.expect(pexpect.EOF, timeout=timeout)
    except pexpect.TIMEOUT:
        child.terminate(force=True)
        raise LaunchError(f"Error: guest did not exit within {timeout} seconds")
    child.close()

    if child.exitstatus is None:
        raise LaunchError(f"Error: {args[0]} was terminated by signal {child.signalstatus}")
    return child.exitstatus


def run_emulator(image: Path, config: BuildConfig, ctx: RunContext) -> int:
    check_acceleration()
    provision_tap(ctx)
    spec = LaunchSpec.from_config(image, config, ctx)
    return launch(spec, config.timeout)
