#!/usr/bin/env python3
"""
Device backends: turn generated source into a loaded module.

Both variants end in the driver's PTX loader, so everything after "have a
module" is backend-agnostic. The backend is picked once per run from the
command line.
"""

from typing import Optional, Sequence

from conform.errors import CompileFault
from conform.ptx_gen import Convention


class DirectBackend:
    """Generated PTX goes straight to the driver JIT."""

    name = "direct"
    convention = Convention.DIRECT

    def __init__(self, driver):
        self.driver = driver

    def load(self, ptx):
        module, error_log = self.driver.load_ptx(ptx)
        if module is None:
            raise CompileFault("driver JIT", error_log)
        return module

    def build(self, source: str):
        return self.load(source)


class CompiledBackend(DirectBackend):
    """Generated CUDA C++ is compiled by NVRTC, then loaded like Direct."""

    name = "compiled"
    convention = Convention.COMPILED

    def __init__(self, driver, compiler, options: Optional[Sequence[str]] = None):
        super().__init__(driver)
        self.compiler = compiler
        if options is None:
            options = default_options(getattr(driver, "gpu_info", None))
        self.options = tuple(options)

    def build(self, source: str):
        ptx = self.compiler.compile(source, self.options)
        return self.load(ptx)


def default_options(gpu_info) -> list:
    """NVRTC options targeting the device under test."""
    options = []
    if gpu_info is not None:
        options.append(f"--gpu-architecture={gpu_info.compute_version}")
    return options


def make_backend(kind: str, driver, compiler_factory=None):
    """Backend by command-line name. `compiler_factory` builds the NVRTC binding."""
    if kind == DirectBackend.name:
        return DirectBackend(driver)
    if kind == CompiledBackend.name:
        return CompiledBackend(driver, compiler_factory())
    raise ValueError(f"unknown backend {kind!r}")
