#
# Copyright 2021, Breakaway Consulting Pty. Ltd.
#
# SPDX-License-Identifier: BSD-2-Clause
#
import unittest
from pathlib import Path

from bespinrun.config import BuildMode, RunContext, parse_features, resolve_config
from bespinrun.util import ConfigError


class ExtendedTestCase(unittest.TestCase):
    def assertStartsWith(self, v, check):
        self.assertTrue(v.startswith(check), f"'{v}' does not start with '{check}'")

    def _check_error(self, message, **kwargs):
        with self.assertRaises(ConfigError) as e:
            resolve_config(**kwargs)
        self.assertStartsWith(str(e.exception), message)


class ResolveConfigTests(ExtendedTestCase):
    def test_defaults(self):
        config = resolve_config()
        self.assertEqual(config.mode, BuildMode.DEBUG)
        self.assertEqual(config.modules, ("init",))
        self.assertEqual(config.kernel_features, frozenset())
        self.assertEqual(config.cmdline, "")
        self.assertFalse(config.norun)
        self.assertIsNone(config.timeout)

    def test_release(self):
        self.assertEqual(resolve_config(release=True).mode, BuildMode.RELEASE)

    def test_conflicting_modes(self):
        self._check_error("Error: --release and --debug are mutually exclusive", release=True, debug=True)

    def test_modules_replace_default(self):
        self.assertEqual(resolve_config(modules=["zygote", "init"]).modules, ("zygote", "init"))

    def test_empty_module_list(self):
        self._check_error("Error: at least one module must be given", modules=[])

    def test_duplicate_module(self):
        self._check_error("Error: module 'init' given more than once", modules=["init", "init"])

    def test_invalid_module_names(self):
        for name in ("", "..", "a/b"):
            self._check_error("Error: invalid module name", modules=[name])

    def test_cores_not_divisible(self):
        self._check_error("Error: 3 cores can not be divided evenly across 2 NUMA nodes", cores=3, nodes=2)

    def test_zero_cores(self):
        self._check_error("Error: cores must be at least 1", cores=0)

    def test_bad_timeout(self):
        self._check_error("Error: timeout must be positive", timeout=0)

    def test_feature_sets(self):
        config = resolve_config(kernel_features="test-fs, smoke", user_features=["test-print", "test-print"])
        self.assertEqual(config.kernel_features, frozenset({"test-fs", "smoke"}))
        self.assertEqual(config.user_features, frozenset({"test-print"}))

    def test_debug_adds_fallback_runtime(self):
        config = resolve_config(user_features="test-print")
        self.assertEqual(config.module_features(), frozenset({"test-print", "rumprt"}))

    def test_release_has_no_fallback_runtime(self):
        config = resolve_config(release=True, user_features="test-print")
        self.assertEqual(config.module_features(), frozenset({"test-print"}))


class ParseFeaturesTests(unittest.TestCase):
    def test_none(self):
        self.assertEqual(parse_features(None), frozenset())

    def test_separators(self):
        self.assertEqual(parse_features("a,b  c,,"), frozenset({"a", "b", "c"}))


class RunContextTests(unittest.TestCase):
    def test_paths(self):
        ctx = RunContext(root=Path("/src/bespin"))
        self.assertEqual(ctx.build_dir("x86_64-bespin", BuildMode.RELEASE), Path("/src/bespin/target/x86_64-bespin/release"))
        self.assertEqual(ctx.esp_dir(BuildMode.DEBUG), Path("/src/bespin/target/x86_64-uefi/debug/esp"))
        self.assertEqual(ctx.image_path, Path("/src/bespin/kernel/uefi.img"))
        self.assertEqual(ctx.cmdline_path, Path("/src/bespin/kernel/cmdline.in"))
        self.assertEqual(ctx.tap_device, "tap0")
