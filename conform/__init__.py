"""gpuconform: differential conformance tests for PTX opcodes."""

__version__ = "0.1.0"
