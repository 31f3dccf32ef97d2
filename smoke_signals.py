import contextlib
import importlib
import io
import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import numpy as np

import gpuconform
from conform.artifacts import resolve_run_json_path
from conform.errors import CompilerInvocationFault
from conform.registry import all_tests
from conform.scalars import ScalarKind
from fake_device import FakeDriver

ROOT = Path(__file__).resolve().parent


def _run_cli(argv, driver=None):
    """Run gpuconform.main in-process; returns (exit code, stdout, stderr)."""
    out, err = io.StringIO(), io.StringIO()
    patches = [mock.patch.object(gpuconform.signal, "signal")]
    if driver is not None:
        patches.append(mock.patch.object(gpuconform, "CUDADriver", return_value=driver))
    with contextlib.ExitStack() as stack:
        for p in patches:
            stack.enter_context(p)
        stack.enter_context(contextlib.redirect_stdout(out))
        stack.enter_context(contextlib.redirect_stderr(err))
        code = gpuconform.main(argv)
    return code, out.getvalue(), err.getvalue()


class SmokeSignalTests(unittest.TestCase):
    def test_core_modules_import(self):
        modules = [
            "gpuconform",
            "conform.artifacts",
            "conform.backends",
            "conform.cuda_api",
            "conform.engine",
            "conform.nvrtc_api",
            "conform.ptx_gen",
            "conform.ranges",
            "conform.registry",
            "conform.toolchain",
            "conform.verifier",
        ]
        for module_name in modules:
            with self.subTest(module=module_name):
                self.assertIsNotNone(importlib.import_module(module_name))

    def test_cli_help_runs(self):
        result = subprocess.run(
            [sys.executable, str(ROOT / "gpuconform.py"), "--help"],
            capture_output=True,
            text=True,
            timeout=20,
            check=False,
            cwd=str(ROOT),
        )
        self.assertEqual(result.returncode, 0)
        self.assertIn("usage:", result.stdout.lower())

    def test_list_prints_sorted_names(self):
        code, out, _ = _run_cli(["list"])
        self.assertEqual(code, 0)
        names = out.splitlines()
        self.assertEqual(names, sorted(t.name for t in all_tests()))

    def test_bad_filter_is_fatal(self):
        code, out, err = _run_cli(["run", "--filter", "(", "libcuda.so.1"])
        self.assertEqual(code, gpuconform.FATAL_EXIT)
        self.assertEqual(out, "")
        self.assertIn("Error:", err)

    def test_run_exit_code_counts_failures(self):
        driver = FakeDriver([ScalarKind.U16, ScalarKind.U32], lambda a: a.astype(np.uint32))
        code, out, _ = _run_cli(["run", "--filter", "^cvt_u32_u16$", "libcuda.so.1"], driver)
        self.assertEqual(code, 0)
        self.assertEqual(out, "cvt_u32_u16: OK\n")
        self.assertTrue(driver.destroyed)

        broken = FakeDriver([ScalarKind.U16, ScalarKind.U32], lambda a: (a.astype(np.uint32) + 1))
        code, out, _ = _run_cli(["run", "--filter", "^cvt_u32_u16$", "libcuda.so.1"], broken)
        self.assertEqual(code, 1)
        self.assertEqual(
            out, "cvt_u32_u16: FAIL: Input 0, computed on GPU 1, computed on CPU 0\n"
        )

    def test_block_size_over_device_limit_is_fatal(self):
        driver = FakeDriver([ScalarKind.U16, ScalarKind.U32], None)
        code, _, err = _run_cli(
            ["run", "--block-size", "2048", "--batch-size", "4096", "libcuda.so.1"], driver
        )
        self.assertEqual(code, gpuconform.FATAL_EXIT)
        self.assertIn("block size", err)

    def test_nvrtc_failure_prints_status_and_log(self):
        driver = FakeDriver([ScalarKind.U16, ScalarKind.U32], None)
        fault = CompilerInvocationFault(5, "NVRTC_ERROR_INVALID_OPTION", "unknown option '--bogus'")
        with mock.patch.object(gpuconform, "NVRTCCompiler", side_effect=fault):
            code, out, err = _run_cli(["run", "--backend", "compiled", "libcuda.so.1"], driver)
        self.assertEqual(code, gpuconform.FATAL_EXIT)
        self.assertIn("NVRTC_ERROR_INVALID_OPTION", err)
        self.assertIn("unknown option '--bogus'", err)
        self.assertEqual(out, "")

    def test_json_report_written_under_artifact_dir(self):
        driver = FakeDriver([ScalarKind.U16, ScalarKind.U32], lambda a: a.astype(np.uint32))
        with tempfile.TemporaryDirectory() as tmp:
            code, _, _ = _run_cli(
                ["run", "--filter", "^cvt_u32_u16$", "--json", "run.json",
                 "--artifact-dir", tmp, "libcuda.so.1"],
                driver,
            )
            self.assertEqual(code, 0)
            with open(os.path.join(tmp, "run.json"), "r", encoding="utf-8") as f:
                payload = json.load(f)
        for key in ["tool", "version", "timestamp", "backend", "device", "toolchain_versions", "tests"]:
            self.assertIn(key, payload)
        self.assertEqual(payload["backend"], "direct")
        self.assertEqual(payload["failures"], 0)
        self.assertEqual(payload["tests"]["cvt_u32_u16"]["result"], "PASS")
        self.assertEqual(payload["toolchain_versions"]["nvrtc"], "not loaded")

    def test_json_path_resolution(self):
        self.assertEqual(resolve_run_json_path("run.json", "out"), Path("out") / "run.json")
        self.assertEqual(resolve_run_json_path("reports/run.json", "out"), Path("reports/run.json"))
        self.assertEqual(resolve_run_json_path("/tmp/run.json", "out"), Path("/tmp/run.json"))

    def test_interrupt_keeps_reported_results(self):
        driver = FakeDriver([ScalarKind.U16, ScalarKind.U32], lambda a: a.astype(np.uint32))
        # One poll for cvt_u32_u16 (a single batch), then stop before min_u16.
        stop = mock.Mock(side_effect=[False, True])
        with tempfile.TemporaryDirectory() as tmp, \
                mock.patch.object(gpuconform, "interrupted", stop):
            code, out, err = _run_cli(
                ["run", "--filter", "^cvt_u32_u16$|^min_u16$", "--batch-size", "65536",
                 "--json", "run.json", "--artifact-dir", tmp, "libcuda.so.1"],
                driver,
            )
            with open(os.path.join(tmp, "run.json"), "r", encoding="utf-8") as f:
                payload = json.load(f)
        self.assertEqual(code, 0)
        self.assertEqual(out, "cvt_u32_u16: OK\n")
        self.assertIn("Interrupted during min_u16", err)
        self.assertTrue(payload["interrupted"])
        self.assertEqual(list(payload["tests"]), ["cvt_u32_u16"])
        self.assertTrue(driver.destroyed)


if __name__ == "__main__":
    unittest.main()
