#
# Copyright 2021, Breakaway Consulting Pty. Ltd.
#
# SPDX-License-Identifier: BSD-2-Clause
#
"""
Bespin runner.

Builds the bootloader, the requested user modules and the kernel, packs
them into a UEFI bootable FAT32 image and boots it under QEMU. The
kernel reports its test result through the isa-debug-exit device and
the runner exits with the status the kernel reported (0 on success).

Must be run from (or pointed with --root at) the top of a Bespin
checkout, i.e. the directory containing `bootloader`, `kernel` and `usr`.
"""
import logging
import sys
from argparse import ArgumentParser
from pathlib import Path
from typing import List, Optional

from bespinrun.config import RunContext, resolve_config
from bespinrun.pipeline import Stage, run_pipeline
from bespinrun.util import HarnessError, log


def make_parser() -> ArgumentParser:
    parser = ArgumentParser(prog="bespinrun", description="Bespin runner script")
    parser.add_argument("-f", "--kfeatures", action="append", help="Rust features to enable (in the kernel).")
    parser.add_argument("-u", "--ufeatures", action="append", help="Rust features to enable (in user-space).")
    parser.add_argument("-q", "--qemu", default="", help="Optional qemu arguments.")
    parser.add_argument("-c", "--cmd", default="", help="Command line for kernel.")
    parser.add_argument("-m", "--mods", action="append", help="Modules to include on startup (default: init).")
    parser.add_argument("-r", "--release", action="store_true", help="Do a release build.")
    parser.add_argument("--debug", action="store_true", help="Do a debug build (the default).")
    parser.add_argument("-n", "--norun", action="store_true", help="Only build, don't run.")
    parser.add_argument("-s", "--cores", type=int, default=1, help="How many cores (evenly divided across NUMA nodes).")
    parser.add_argument("-a", "--nodes", type=int, default=1, help="How many NUMA nodes.")
    parser.add_argument("--memory", type=int, default=1024, help="Guest memory in MiB.")
    parser.add_argument("--timeout", type=float, default=None, help="Kill the guest after this many seconds.")
    parser.add_argument("--root", type=Path, default=Path.cwd(), help="Top of the Bespin checkout.")
    parser.add_argument("--tap", default="tap0", help="Host tap device to bridge the guest NIC to.")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(args: Optional[List[str]] = None) -> int:
    parser = make_parser()
    opts = parser.parse_args(args)

    logging.basicConfig(
        level=logging.DEBUG if opts.verbose else logging.INFO,
        format="%(message)s",
    )

    log.debug("stage %s", Stage.CONFIGURING.name)
    try:
        config = resolve_config(
            release=opts.release,
            debug=opts.debug,
            kernel_features=opts.kfeatures,
            user_features=opts.ufeatures,
            cmdline=opts.cmd,
            modules=opts.mods,
            qemu_args=opts.qemu,
            norun=opts.norun,
            cores=opts.cores,
            nodes=opts.nodes,
            memory=opts.memory,
            timeout=opts.timeout,
        )
        ctx = RunContext(root=opts.root.expanduser().absolute(), tap_device=opts.tap)
        outcome = run_pipeline(config, ctx)
    except HarnessError as e:
        log.error("%s", e)
        log.error("[FAIL] run aborted during %s", e.stage)
        return 1

    if outcome is None:
        return 0
    if outcome.success:
        log.info(outcome.message)
    else:
        log.error(outcome.message)
    return outcome.harness_exit_code


if __name__ == "__main__":
    sys.exit(main())
