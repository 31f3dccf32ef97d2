#!/usr/bin/env python3
"""
gpuconform: differential conformance tester for PTX opcodes

Runs each registered opcode test over its whole input domain on the GPU and
compares every device result with a host reference.

Front-ends:
  direct     generated PTX goes straight to the driver JIT (default)
  compiled   the same PTX body, wrapped in inline asm, is compiled by NVRTC
             and the resulting PTX is loaded by the driver

Usage:
    python gpuconform.py list
    python gpuconform.py run /usr/lib/x86_64-linux-gnu/libcuda.so.1
    python gpuconform.py run --filter '^sin' --backend compiled libcuda.so.1
    python gpuconform.py run -v --json run.json libcuda.so.1

The exit status of `run` is the number of failing tests.
"""

import argparse
import signal
import sys
import time
from datetime import datetime

from conform import __version__
from conform.artifacts import DEFAULT_ARTIFACT_DIR, export_results, resolve_run_json_path
from conform.backends import make_backend
from conform.cuda_api import CUDADriver
from conform.engine import DEFAULT_BATCH_SIZE, DEFAULT_BLOCK_SIZE, ExecutionEngine
from conform.errors import (
    ArgumentFault, CompilerInvocationFault, ConformError, RunInterrupted,
)
from conform.nvrtc_api import NVRTCCompiler
from conform.registry import all_tests, select
from conform.toolchain import collect_toolchain_versions

FATAL_EXIT = 255
FORCE_QUIT_EXIT = 130
# Largest failure count that cannot be confused with FATAL_EXIT.
MAX_FAILURE_EXIT = FATAL_EXIT - 1


# ---------------------------------------------------------------------------
# ANSI terminal colors
# ---------------------------------------------------------------------------

class C:
    """ANSI color codes for terminal output (diagnostics go to stderr)."""
    RESET    = "\033[0m"
    BOLD     = "\033[1m"
    DIM      = "\033[2m"
    RED      = "\033[31m"
    GREEN    = "\033[32m"
    YELLOW   = "\033[33m"
    CYAN     = "\033[36m"
    WHITE    = "\033[37m"


# Disable colors if not a terminal
if not sys.stderr.isatty():
    for attr in dir(C):
        if not attr.startswith("_"):
            setattr(C, attr, "")


# ---------------------------------------------------------------------------
# Global state for clean shutdown
# ---------------------------------------------------------------------------

_interrupted = False


def _signal_handler(sig, frame):
    global _interrupted
    if _interrupted:
        print(f"\n{C.RED}Force quit.{C.RESET}", file=sys.stderr)
        sys.exit(FORCE_QUIT_EXIT)
    _interrupted = True
    print(f"\n{C.YELLOW}Interrupt received, stopping after the current batch...{C.RESET}",
          file=sys.stderr)


def interrupted() -> bool:
    return _interrupted


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------

def eprint(*args, **kwargs):
    print(*args, file=sys.stderr, **kwargs)


def print_header(title: str):
    """Print a section header."""
    width = 72
    eprint(f"\n{C.CYAN}{'=' * width}{C.RESET}")
    eprint(f"  {C.BOLD}{title}{C.RESET}")
    eprint(f"{C.CYAN}{'=' * width}{C.RESET}")


def progress_bar(current: int, total: int, width: int = 40, prefix: str = "") -> str:
    """Create a progress bar string."""
    pct = current / total if total > 0 else 0
    filled = int(width * pct)
    bar = "█" * filled + "░" * (width - filled)
    return f"{prefix}[{C.CYAN}{bar}{C.RESET}] {current}/{total} ({pct*100:.1f}%)"


class ProgressDisplay:
    """Live per-test progress line on stderr, redrawn at most every 0.1s."""

    def __init__(self):
        self.last_update = 0.0
        self.t_start = time.monotonic()
        self.active = False

    def __call__(self, test, done: int, total: int):
        now = time.monotonic()
        if now - self.last_update < 0.1 and done != total:
            return
        if not self.active:
            self.t_start = now
        self.last_update = now
        self.active = True
        elapsed = now - self.t_start
        rate = done / elapsed if elapsed > 0 else 0
        sys.stderr.write(
            f"\r  {progress_bar(done, total)}  {rate / 1e6:.1f}M/s  "
            f"{C.DIM}{test.name:24s}{C.RESET}"
        )
        sys.stderr.flush()

    def clear(self):
        if self.active:
            sys.stderr.write("\r\033[K" if C.RESET else "\n")
            sys.stderr.flush()
        self.active = False


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------

def cmd_list(args) -> int:
    for test in all_tests():
        print(test.name)
    return 0


def _print_run_header(args, driver, backend, tests, toolchain):
    print_header("gpuconform run")
    eprint(f"  {C.DIM}Date: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}{C.RESET}")
    eprint(f"  Device:   {C.WHITE}{driver.gpu_info}{C.RESET}")
    eprint(f"  Driver:   {C.WHITE}{driver.library_path}{C.RESET}")
    eprint(f"  Backend:  {C.WHITE}{backend.name}{C.RESET}")
    if args.backend == "compiled":
        eprint(f"  NVRTC:    {C.WHITE}{toolchain.get('nvrtc')} ({toolchain.get('nvrtc_library')}){C.RESET}")
    eprint(f"  Batch:    {C.WHITE}{args.batch_size} inputs, {args.block_size} threads/block{C.RESET}")
    eprint(f"  Tests:    {C.WHITE}{len(tests)}{C.RESET}")
    eprint()


def cmd_run(args) -> int:
    tests = select(all_tests(), args.filter)

    driver = CUDADriver(args.driver_library, device_ordinal=args.device)
    compiler = None

    def compiler_factory():
        nonlocal compiler
        compiler = NVRTCCompiler(args.nvrtc)
        return compiler

    backend = make_backend(args.backend, driver, compiler_factory)
    if args.block_size > driver.gpu_info.max_threads_per_block:
        raise ArgumentFault(
            f"block size {args.block_size} exceeds the device limit "
            f"of {driver.gpu_info.max_threads_per_block}"
        )

    toolchain = collect_toolchain_versions(driver, compiler)
    progress = ProgressDisplay() if args.verbose else None
    if args.verbose:
        _print_run_header(args, driver, backend, tests, toolchain)

    engine = ExecutionEngine(
        driver, backend,
        batch_size=args.batch_size,
        block_size=args.block_size,
        should_stop=interrupted,
        progress=progress,
    )

    # Collected by the callback so an interrupt keeps what was already reported.
    outcomes = []

    def report(outcome):
        outcomes.append(outcome)
        if progress:
            progress.clear()
        print(outcome.report_line(), flush=True)
        if args.verbose:
            eprint(f"  {C.DIM}{outcome.evaluated} inputs in {outcome.elapsed_s:.2f}s{C.RESET}")

    was_interrupted = False
    try:
        engine.run(tests, callback=report)
    except RunInterrupted as e:
        was_interrupted = True
        if progress:
            progress.clear()
        eprint(f"{C.YELLOW}Interrupted during {e}; remaining tests not run.{C.RESET}")

    failures = sum(1 for o in outcomes if o.failed)

    if args.json:
        path = export_results(
            resolve_run_json_path(args.json, args.artifact_dir),
            outcomes,
            backend=backend.name,
            device=str(driver.gpu_info),
            toolchain=toolchain,
            interrupted=was_interrupted,
        )
        if args.verbose:
            eprint(f"  {C.DIM}Run report: {path}{C.RESET}")

    if args.verbose:
        passed = len(outcomes) - failures
        colour = C.GREEN if failures == 0 else C.RED
        eprint(f"\n  {colour}{passed}/{len(outcomes)} tests passed{C.RESET}")

    driver.destroy()
    return min(failures, MAX_FAILURE_EXIT)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def positive_int(text: str) -> int:
    value = int(text, 0)
    if value <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {text}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gpuconform",
        description="gpuconform: differential conformance tester for PTX opcodes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  %(prog)s list                                  Show every test
  %(prog)s run libcuda.so.1                      Run every test (driver JIT)
  %(prog)s run --filter 'approx' libcuda.so.1    Only tests whose name matches
  %(prog)s run --backend compiled libcuda.so.1   Go through NVRTC first
  %(prog)s run -v --json run.json libcuda.so.1   Verbose, save a JSON report
""",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="Print every registered test name")
    p_list.set_defaults(func=cmd_list)

    p_run = sub.add_parser("run", help="Run tests against a driver library")
    p_run.add_argument(
        "driver_library", metavar="driver-library-path",
        help="Path to the CUDA driver library under test (e.g. libcuda.so.1)"
    )
    p_run.add_argument(
        "--filter", type=str, default=None, metavar="REGEX",
        help="Only run tests whose name matches REGEX (searched anywhere in the name)"
    )
    p_run.add_argument(
        "--backend", choices=["direct", "compiled"], default="direct",
        help="Front-end: driver JIT (direct) or NVRTC then driver (compiled). Default: direct"
    )
    p_run.add_argument(
        "--nvrtc", type=str, default=None, metavar="PATH",
        help="NVRTC library for --backend compiled. Default: search the system"
    )
    p_run.add_argument(
        "--device", type=int, default=0,
        help="Device ordinal. Default: 0"
    )
    p_run.add_argument(
        "--batch-size", type=positive_int, default=DEFAULT_BATCH_SIZE,
        help=f"Inputs per launch. Default: {DEFAULT_BATCH_SIZE}"
    )
    p_run.add_argument(
        "--block-size", type=positive_int, default=DEFAULT_BLOCK_SIZE,
        help=f"Threads per block. Default: {DEFAULT_BLOCK_SIZE}"
    )
    p_run.add_argument(
        "--json", type=str, default=None, metavar="PATH",
        help="Write a JSON run report. A bare file name goes under --artifact-dir."
    )
    p_run.add_argument(
        "--artifact-dir", type=str, default=DEFAULT_ARTIFACT_DIR,
        help=f"Artifact directory. Default: {DEFAULT_ARTIFACT_DIR}"
    )
    p_run.add_argument(
        "-v", "--verbose", action="store_true",
        help="Print device/toolchain details and live progress on stderr"
    )
    p_run.set_defaults(func=cmd_run)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    signal.signal(signal.SIGINT, _signal_handler)
    try:
        return args.func(args)
    except CompilerInvocationFault as e:
        eprint(f"{C.RED}Error: NVRTC invocation failed: {e.status}{C.RESET}")
        if e.log:
            eprint(e.log)
        return FATAL_EXIT
    except ConformError as e:
        eprint(f"{C.RED}Error: {e}{C.RESET}")
        return FATAL_EXIT


if __name__ == "__main__":
    sys.exit(main())
