#
# Copyright 2021, Breakaway Consulting Pty. Ltd.
#
# SPDX-License-Identifier: BSD-2-Clause
#
import tempfile
import unittest
from pathlib import Path
from typing import Dict, List, Optional

from bespinrun.config import BuildMode, RunContext, UEFI_TARGET, USER_TARGET, KERNEL_TARGET


def make_checkout(root: Path, modules=("init",)) -> None:
    """Lay out the directories of a Bespin checkout under `root`."""
    (root / "bootloader").mkdir(parents=True)
    (root / "kernel" / "src" / "arch" / "x86_64").mkdir(parents=True)
    for module in modules:
        (root / "usr" / module).mkdir(parents=True)


class FakeTools:
    """Stands in for bespinrun.util.run.

    Records every command and, like the real tools would, creates the
    files a successful xargo or dd invocation leaves behind."""

    def __init__(self, ctx: RunContext, fail: Optional[str] = None, returncode: int = 101):
        self.ctx = ctx
        self.fail = fail
        self.returncode = returncode
        self.calls: List[List[str]] = []
        self.envs: List[Optional[Dict[str, str]]] = []
        self.cwds: List[Optional[Path]] = []

    def __call__(self, cmd, cwd=None, env=None) -> int:
        cmd = [str(c) for c in cmd]
        self.calls.append(cmd)
        self.envs.append(env)
        self.cwds.append(cwd)
        if self.fail is not None and self._matches(cmd, cwd):
            return self.returncode
        if cmd[0] == "xargo":
            self._produce_output(cmd, cwd)
        elif cmd[0] == "dd":
            of = next(a for a in cmd if a.startswith("of="))[3:]
            Path(of).write_bytes(b"")
        return 0

    def _matches(self, cmd: List[str], cwd: Optional[Path]) -> bool:
        return self.fail == cmd[0] or (cwd is not None and Path(cwd).name == self.fail)

    def _produce_output(self, cmd: List[str], cwd: Path) -> None:
        target = cmd[cmd.index("--target") + 1]
        mode = BuildMode.RELEASE if "--release" in cmd else BuildMode.DEBUG
        output_dir = self.ctx.build_dir(target, mode)
        output_dir.mkdir(parents=True, exist_ok=True)
        if target == UEFI_TARGET:
            name = "bootloader.efi"
        elif target == USER_TARGET:
            name = Path(cwd).name
        elif target == KERNEL_TARGET:
            name = "bespin"
        else:
            raise AssertionError(f"unexpected target {target}")
        (output_dir / name).write_bytes(f"{name} {mode.to_str()}".encode())

    def commands(self, program: str) -> List[List[str]]:
        return [c for c in self.calls if c[0] == program]


class CheckoutTestCase(unittest.TestCase):
    modules = ("init",)

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.root = Path(self._tmp.name)
        make_checkout(self.root, self.modules)
        self.ctx = RunContext(root=self.root)

    def tree(self, path: Path) -> List[str]:
        return sorted(str(p.relative_to(path)) for p in path.rglob("*") if p.is_file())
