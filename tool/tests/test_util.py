#
# Copyright 2021, Breakaway Consulting Pty. Ltd.
#
# SPDX-License-Identifier: BSD-2-Clause
#
import subprocess
import unittest
from pathlib import Path
from unittest import mock

from bespinrun.util import BuildError, HarnessError, command_str, mb, run


class RunTests(unittest.TestCase):
    def test_returns_exit_code(self):
        completed = subprocess.CompletedProcess(args=["xargo"], returncode=101)
        with mock.patch("bespinrun.util.subprocess.run", return_value=completed) as sp_run:
            self.assertEqual(run(["xargo", "build", Path("/tmp")], cwd=Path("/tmp")), 101)
        sp_run.assert_called_once_with(["xargo", "build", "/tmp"], cwd=Path("/tmp"), env=None)

    def test_missing_program(self):
        with mock.patch("bespinrun.util.subprocess.run", side_effect=FileNotFoundError("xargo")):
            self.assertEqual(run(["xargo"]), 127)

    def test_command_str_quotes(self):
        self.assertEqual(command_str(["qemu", "-append", "a b"]), "qemu -append 'a b'")


class ErrorTests(unittest.TestCase):
    def test_stage(self):
        self.assertTrue(issubclass(BuildError, HarnessError))
        self.assertEqual(BuildError("x").stage, "build")

    def test_sizes(self):
        self.assertEqual(mb(64), 64 * 1024 * 1024)
