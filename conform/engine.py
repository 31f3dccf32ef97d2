#!/usr/bin/env python3
"""
Execution engine: runs one opcode test end to end.

  Built -> Scanning -> PASS | MISMATCH | MISCOMPILE

The domain is scanned in ascending batches. Each batch is one launch with
one thread per input; device buffers and host staging arrays are allocated
once per test and rewritten for every batch. The first rejected input ends
the scan.
"""

import sys
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, List, Optional

import numpy as np

from conform.errors import ArgumentFault, CompileFault, RunInterrupted
from conform.cuda_api import CUDA_SUCCESS, driver_fault
from conform.ptx_gen import ENTRY_POINT, generate
from conform.scalars import format_scalar

DEFAULT_BATCH_SIZE = 1 << 20
DEFAULT_BLOCK_SIZE = 256


class OutcomeKind(Enum):
    PASS = auto()          # whole domain accepted
    MISMATCH = auto()      # device output rejected for one input
    MISCOMPILE = auto()    # build step rejected the generated program


@dataclass
class ExecutionOutcome:
    """Result of running a single test."""
    test_name: str
    kind: OutcomeKind
    input: str = ""
    device_output: str = ""
    host_expected: str = ""
    index: Optional[int] = None
    evaluated: int = 0
    elapsed_s: float = 0.0
    compile_log: str = ""

    @property
    def failed(self) -> bool:
        return self.kind is not OutcomeKind.PASS

    def report_line(self) -> str:
        if self.kind is OutcomeKind.PASS:
            return f"{self.test_name}: OK"
        if self.kind is OutcomeKind.MISMATCH:
            return (
                f"{self.test_name}: FAIL: Input {self.input}, "
                f"computed on GPU {self.device_output}, "
                f"computed on CPU {self.host_expected}"
            )
        return f"{self.test_name}: FAIL: Compilation mismatch"


@dataclass
class DeviceProgram:
    """Loaded module plus its resolved entry point."""
    module: object
    function: object


@dataclass
class _Buffer:
    host: np.ndarray
    device: object = None
    nbytes: int = field(init=False)

    def __post_init__(self):
        self.nbytes = self.host.nbytes


def format_input(kinds, values) -> str:
    parts = [format_scalar(k, v) for k, v in zip(kinds, values)]
    return parts[0] if len(parts) == 1 else f"({', '.join(parts)})"


class ExecutionEngine:
    """
    Drives tests on one device context through one backend.

    `should_stop()` is polled between batches; `progress(test, done, total)`
    is called after each batch.
    """

    def __init__(self, driver, backend,
                 batch_size: int = DEFAULT_BATCH_SIZE,
                 block_size: int = DEFAULT_BLOCK_SIZE,
                 should_stop: Callable[[], bool] = None,
                 progress: Callable = None,
                 log=None):
        if block_size <= 0 or batch_size <= 0 or batch_size % block_size:
            raise ArgumentFault(
                f"batch size {batch_size} must be a positive multiple of block size {block_size}"
            )
        self.driver = driver
        self.backend = backend
        self.batch_size = batch_size
        self.block_size = block_size
        self.should_stop = should_stop or (lambda: False)
        self.progress = progress
        self.log = log or sys.stderr

    # -- build -------------------------------------------------------------

    def build(self, test) -> DeviceProgram:
        """Generate, build and resolve. Raises CompileFault on rejection."""
        source = generate(test, self.backend.convention)
        module = self.backend.build(source)
        function = self.driver.get_function(module, ENTRY_POINT)
        if function is None:
            self.driver.unload_module(module)
            raise ArgumentFault(f"{test.name}: entry point '{ENTRY_POINT}' not found in module")
        return DeviceProgram(module, function)

    def release(self, program: DeviceProgram):
        self.driver.unload_module(program.module)

    # -- scan --------------------------------------------------------------

    def _batch_for(self, size: int) -> int:
        """Per-test batch: the engine batch, shrunk to a whole-block cover of small domains."""
        blocks = -(-size // self.block_size)
        return min(self.batch_size, blocks * self.block_size)

    def _allocate(self, test, batch: int) -> List[_Buffer]:
        buffers = []
        try:
            for arg in test.arguments:
                buf = _Buffer(np.zeros(batch, dtype=arg.kind.dtype))
                buf.device = self.driver.malloc(buf.nbytes)
                buffers.append(buf)
        except Exception:
            self._free(buffers)
            raise
        return buffers

    def _free(self, buffers: List[_Buffer]):
        for buf in buffers:
            if buf.device is not None:
                self.driver.free(buf.device)
                buf.device = None

    def scan(self, test, program: DeviceProgram) -> ExecutionOutcome:
        domain = test.domain
        batch = self._batch_for(domain.size)
        grid = (batch // self.block_size, 1, 1)
        block = (self.block_size, 1, 1)
        input_kinds = [arg.kind for arg in test.inputs]
        buffers = self._allocate(test, batch)
        *in_bufs, out_buf = buffers

        try:
            for start in range(0, domain.size, batch):
                if self.should_stop():
                    raise RunInterrupted(test.name)
                count = min(batch, domain.size - start)
                indices = np.arange(start, start + count, dtype=np.uint64)
                inputs = domain.generate(indices)

                for buf, values in zip(in_bufs, inputs):
                    buf.host[:count] = values
                    buf.host[count:] = 0
                    self.driver.memcpy_htod(buf.device, buf.host.ctypes.data, buf.nbytes)

                result = self.driver.launch_and_sync(
                    program.function, grid=grid, block=block,
                    params=[buf.device for buf in buffers],
                )
                if result != CUDA_SUCCESS:
                    raise driver_fault(result, f"{test.name}: kernel launch")
                self.driver.memcpy_dtoh(out_buf.host.ctypes.data, out_buf.device, out_buf.nbytes)

                outputs = out_buf.host[:count]
                accepted, expected = test.verifier.check(inputs, outputs)
                if not accepted.all():
                    first = int(np.argmin(accepted))
                    return ExecutionOutcome(
                        test_name=test.name,
                        kind=OutcomeKind.MISMATCH,
                        input=format_input(input_kinds, [x[first] for x in inputs]),
                        device_output=format_scalar(test.output.kind, outputs[first]),
                        host_expected=format_scalar(test.output.kind, expected[first]),
                        index=start + first,
                        evaluated=start + first + 1,
                    )
                if self.progress:
                    self.progress(test, start + count, domain.size)
            return ExecutionOutcome(test.name, OutcomeKind.PASS, evaluated=domain.size)
        finally:
            self._free(buffers)

    # -- one test ----------------------------------------------------------

    def run_test(self, test) -> ExecutionOutcome:
        t0 = time.monotonic()
        try:
            program = self.build(test)
        except CompileFault as e:
            if e.log:
                print(f"{test.name}: {e}:\n{e.log}", file=self.log)
            outcome = ExecutionOutcome(
                test.name, OutcomeKind.MISCOMPILE, compile_log=e.log,
            )
        else:
            try:
                outcome = self.scan(test, program)
            finally:
                self.release(program)
        outcome.elapsed_s = time.monotonic() - t0
        return outcome

    def run(self, tests, callback: Callable[[ExecutionOutcome], None] = None) -> List[ExecutionOutcome]:
        """Run tests in the given order, reporting each outcome as it completes."""
        outcomes = []
        for test in tests:
            outcome = self.run_test(test)
            outcomes.append(outcome)
            if callback:
                callback(outcome)
        return outcomes
