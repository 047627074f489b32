#
# Copyright 2021, Breakaway Consulting Pty. Ltd.
#
# SPDX-License-Identifier: BSD-2-Clause
#
from enum import IntEnum
from typing import Optional

from bespinrun.build import build_all
from bespinrun.config import BuildConfig, RunContext
from bespinrun.image import assemble
from bespinrun.qemu import run_emulator
from bespinrun.util import log
from bespinrun.verdict import GuestOutcome, decode


class Stage(IntEnum):
    CONFIGURING = 1
    BUILDING = 2
    ASSEMBLING = 3
    LAUNCHING = 4
    DECODED = 5


def run_pipeline(config: BuildConfig, ctx: RunContext) -> Optional[GuestOutcome]:
    """Build, assemble and (unless config.norun) boot the image.

    Returns None for a build-only run. Any HarnessError raised by a stage
    propagates out untouched, leaving earlier artifacts in place."""
    log.debug("stage %s", Stage.BUILDING.name)
    artifacts = build_all(config, ctx)

    log.debug("stage %s", Stage.ASSEMBLING.name)
    image = assemble(artifacts, config, ctx)

    if config.norun:
        log.info("Built %s (not running)", image)
        return None

    log.debug("stage %s", Stage.LAUNCHING.name)
    exit_code = run_emulator(image, config, ctx)

    outcome = decode(exit_code)
    log.debug("stage %s: exit=%d status=%d verdict=%s", Stage.DECODED.name, exit_code, outcome.status, outcome.verdict.name)
    return outcome
