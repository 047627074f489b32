#
# Copyright 2021, Breakaway Consulting Pty. Ltd.
#
# SPDX-License-Identifier: BSD-2-Clause
#
import logging
import shlex
import subprocess
from pathlib import Path
from typing import Dict, Optional, Sequence, Union

log = logging.getLogger("bespinrun")


class HarnessError(Exception):
    """Any failure that aborts a run.

    Every pipeline stage raises a subclass of this and nothing catches
    it until the entry point."""
    stage = "run"


class ConfigError(HarnessError):
    stage = "configure"


class BuildError(HarnessError):
    stage = "build"


class AssemblyError(HarnessError):
    stage = "assemble"


class PreconditionError(HarnessError):
    stage = "launch"


class LaunchError(HarnessError):
    stage = "launch"


def kb(n: int) -> int:
    return n * 1024


def mb(n: int) -> int:
    return n * 1024 * 1024


def command_str(cmd: Sequence[Union[str, Path]]) -> str:
    return " ".join(shlex.quote(str(c)) for c in cmd)


def run(
    cmd: Sequence[Union[str, Path]],
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
) -> int:
    """Run `cmd` in the foreground and return its exit code.

    Output is not captured so the tool's diagnostics reach the terminal
    unmodified."""
    args = [str(c) for c in cmd]
    log.info("$ %s", command_str(args))
    try:
        r = subprocess.run(args, cwd=cwd, env=env)
    except FileNotFoundError as e:
        # Same convention as the shell: 127 for a missing program
        log.error("unable to run '%s': %s", args[0], e)
        return 127
    return r.returncode
