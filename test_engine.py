import io
import unittest
from dataclasses import replace

import numpy as np

from conform.backends import CompiledBackend, DirectBackend
from conform.cuda_api import CUDA_ERROR_LAUNCH_FAILED
from conform.engine import ExecutionEngine, OutcomeKind
from conform.errors import ArgumentFault, CompileFault, DriverFault, RunInterrupted
from conform.ranges import BitDomain
from conform.registry import find
from conform.scalars import ScalarKind
from fake_device import FakeDriver

U16, S16, U32 = ScalarKind.U16, ScalarKind.S16, ScalarKind.U32


class _RejectingCompiler:
    def __init__(self):
        self.sources = []

    def compile(self, source, options=()):
        self.sources.append(source)
        raise CompileFault("NVRTC", "conform_test.cu(7): error: invalid asm operand")


class _PassThroughCompiler:
    def compile(self, source, options=()):
        return b"// ptx from nvrtc\n"


def _engine(driver, backend=None, **kwargs):
    kwargs.setdefault("batch_size", 4096)
    kwargs.setdefault("block_size", 256)
    kwargs.setdefault("log", io.StringIO())
    return ExecutionEngine(driver, backend or DirectBackend(driver), **kwargs)


class ScanTests(unittest.TestCase):
    def test_correct_device_passes_whole_domain(self):
        driver = FakeDriver([U16, U32], lambda a: a.astype(np.uint32))
        test = find("cvt_u32_u16")
        outcome = _engine(driver).run_test(test)

        self.assertEqual(outcome.kind, OutcomeKind.PASS)
        self.assertEqual(outcome.evaluated, 1 << 16)
        self.assertEqual(outcome.report_line(), "cvt_u32_u16: OK")
        self.assertEqual(len(driver.launches), (1 << 16) // 4096)
        self.assertEqual(driver.allocations, {})
        self.assertEqual(driver.unloaded, driver.modules)

    def test_first_rejected_input_is_reported(self):
        # Zero-extends where the instruction must sign-extend.
        driver = FakeDriver([S16, ScalarKind.S32], lambda a: a.view(np.uint16).astype(np.int32))
        outcome = _engine(driver).run_test(find("cvt_s32_s16"))

        self.assertEqual(outcome.kind, OutcomeKind.MISMATCH)
        self.assertEqual(outcome.index, 0x8000)
        self.assertEqual(outcome.evaluated, 0x8001)
        self.assertEqual(
            outcome.report_line(),
            "cvt_s32_s16: FAIL: Input -32768, computed on GPU 32768, computed on CPU -32768",
        )
        self.assertEqual(driver.allocations, {})

    def test_scan_stops_at_failing_batch(self):
        driver = FakeDriver([U16, U32], lambda a: np.where(a == 5000, 0, a).astype(np.uint32))
        outcome = _engine(driver).run_test(find("cvt_u32_u16"))

        self.assertEqual(outcome.kind, OutcomeKind.MISMATCH)
        self.assertEqual(outcome.index, 5000)
        self.assertEqual(len(driver.launches), 2)

    def test_partial_last_batch_and_progress(self):
        driver = FakeDriver([U16, U32], lambda a: a.astype(np.uint32))
        seen = []
        engine = _engine(
            driver, batch_size=768, block_size=256,
            progress=lambda test, done, total: seen.append((done, total)),
        )
        outcome = engine.run_test(find("cvt_u32_u16"))

        self.assertEqual(outcome.kind, OutcomeKind.PASS)
        self.assertEqual(seen[-1], (1 << 16, 1 << 16))
        self.assertEqual(len(seen), -(-(1 << 16) // 768))
        self.assertTrue(all(n == 768 for n in driver.launches))

    def test_two_operand_lanes_reach_the_kernel(self):
        def kernel(values, amounts):
            return (values.astype(np.uint32) << amounts).astype(np.uint16)

        driver = FakeDriver([U16, U16, U16], kernel)
        # Shift amounts 0-15 only, so the scan stays small.
        test = replace(find("shl_b16"), domain=BitDomain([U16, U16], size=1 << 20))
        engine = _engine(driver, batch_size=1 << 16, block_size=256)
        outcome = engine.scan(test, engine.build(test))
        self.assertEqual(outcome.kind, OutcomeKind.PASS)


class BuildFailureTests(unittest.TestCase):
    def test_compiled_rejection_is_miscompile(self):
        driver = FakeDriver([U16, U32], lambda a: a.astype(np.uint32))
        compiler = _RejectingCompiler()
        log = io.StringIO()
        engine = _engine(driver, CompiledBackend(driver, compiler), log=log)
        outcome = engine.run_test(find("cvt_u32_u16"))

        self.assertEqual(outcome.kind, OutcomeKind.MISCOMPILE)
        self.assertEqual(outcome.evaluated, 0)
        self.assertEqual(outcome.report_line(), "cvt_u32_u16: FAIL: Compilation mismatch")
        self.assertIn("invalid asm operand", outcome.compile_log)
        self.assertIn("invalid asm operand", log.getvalue())
        self.assertEqual(driver.launches, [])
        self.assertEqual(driver.allocations, {})
        self.assertEqual(driver.sources, [])
        self.assertIn('extern "C" __global__ void run(', compiler.sources[0])

    def test_driver_rejection_is_miscompile(self):
        driver = FakeDriver([U16, U32], None, reject_log="ptxas application ptx input, line 12; error")
        outcome = _engine(driver).run_test(find("cvt_u32_u16"))
        self.assertEqual(outcome.kind, OutcomeKind.MISCOMPILE)
        self.assertTrue(outcome.failed)

    def test_compiled_output_is_loaded_by_driver(self):
        driver = FakeDriver([U16, U32], lambda a: a.astype(np.uint32))
        engine = _engine(driver, CompiledBackend(driver, _PassThroughCompiler(), options=[]))
        outcome = engine.run_test(find("cvt_u32_u16"))
        self.assertEqual(outcome.kind, OutcomeKind.PASS)
        self.assertEqual(driver.sources, [b"// ptx from nvrtc\n"])


class FaultTests(unittest.TestCase):
    def test_launch_failure_is_fatal(self):
        driver = FakeDriver([U16, U32], None, launch_result=CUDA_ERROR_LAUNCH_FAILED)
        with self.assertRaises(DriverFault) as ctx:
            _engine(driver).run_test(find("cvt_u32_u16"))
        self.assertEqual(ctx.exception.code, CUDA_ERROR_LAUNCH_FAILED)
        self.assertEqual(driver.allocations, {})
        self.assertEqual(driver.unloaded, driver.modules)

    def test_interrupt_between_batches(self):
        driver = FakeDriver([U16, U32], lambda a: a.astype(np.uint32))
        calls = []

        def should_stop():
            calls.append(1)
            return len(calls) > 2

        with self.assertRaises(RunInterrupted):
            _engine(driver, should_stop=should_stop).run_test(find("cvt_u32_u16"))
        self.assertEqual(len(driver.launches), 2)
        self.assertEqual(driver.allocations, {})

    def test_batch_must_be_whole_blocks(self):
        driver = FakeDriver([U16, U32], None)
        with self.assertRaises(ArgumentFault):
            _engine(driver, batch_size=1000, block_size=256)

    def test_run_reports_in_order(self):
        driver = FakeDriver([U16, U32], lambda a: a.astype(np.uint32))
        reported = []
        tests = [find("cvt_u32_u16"), find("cvt_u32_u16")]
        outcomes = _engine(driver).run(tests, callback=reported.append)
        self.assertEqual(outcomes, reported)
        self.assertEqual(len(driver.modules), 2)


if __name__ == "__main__":
    unittest.main()
