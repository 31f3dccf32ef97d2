"""
Error taxonomy for a conformance run.

DriverFault and CompilerInvocationFault mean the host environment is broken
and end the run. CompileFault is raised by a backend for one test's source
and is downgraded by the engine to that test's Miscompile outcome.
"""

from typing import Optional


class ConformError(Exception):
    """Base class for all gpuconform errors."""


class DriverFault(ConformError):
    """A CUDA driver call reported failure."""
    def __init__(self, code: int, msg: str = "", name: Optional[str] = None):
        self.code = code
        self.name = name or f"CUDA_ERROR({code})"
        super().__init__(f"{self.name}: {msg}" if msg else self.name)


class CompilerInvocationFault(ConformError):
    """NVRTC could not be loaded or invoked at all."""
    def __init__(self, code: int, status: str, log: str = ""):
        self.code = code
        self.status = status
        self.log = log
        super().__init__(status)


class CompileFault(ConformError):
    """The build step rejected one test's generated source."""
    def __init__(self, stage: str, log: str = ""):
        self.stage = stage
        self.log = log
        super().__init__(f"{stage} rejected the program")


class ArgumentFault(ConformError):
    """Invalid command-line input or an unusable generated entry point."""


class RunInterrupted(ConformError):
    """The operator asked the run to stop."""
