#!/usr/bin/env python3
"""
NVRTC bindings via ctypes for the Compiled backend.

Same shape as the driver binding: the library is loaded and every entry
point prototyped once. A compile that fails with NVRTC_ERROR_COMPILATION
is a rejection of that one program (CompileFault); every other failure
means the compiler itself is unusable (CompilerInvocationFault).
"""

import ctypes
import ctypes.util
from ctypes import c_int, c_char_p, c_void_p, c_size_t, byref, POINTER, create_string_buffer
from typing import Optional, Sequence, Tuple

from conform.errors import CompileFault, CompilerInvocationFault

NVRTC_SUCCESS = 0
NVRTC_ERROR_OUT_OF_MEMORY = 1
NVRTC_ERROR_PROGRAM_CREATION_FAILURE = 2
NVRTC_ERROR_INVALID_INPUT = 3
NVRTC_ERROR_INVALID_PROGRAM = 4
NVRTC_ERROR_INVALID_OPTION = 5
NVRTC_ERROR_COMPILATION = 6

nvrtcProgram = c_void_p
nvrtcResult = c_int

PROGRAM_NAME = "conform_test.cu"


def find_nvrtc_library() -> Optional[str]:
    """Locate libnvrtc from the system search path or a CUDA install."""
    path = ctypes.util.find_library("nvrtc")
    if path:
        return path
    candidates = [
        "libnvrtc.so",
        "libnvrtc.so.13",
        "libnvrtc.so.12",
        "libnvrtc.so.11.2",
        "/usr/local/cuda/lib64/libnvrtc.so",
        "/usr/local/cuda/targets/x86_64-linux/lib/libnvrtc.so",
        "/usr/local/cuda/targets/sbsa-linux/lib/libnvrtc.so",
    ]
    for p in candidates:
        try:
            ctypes.CDLL(p)
            return p
        except OSError:
            continue
    return None


class NVRTCCompiler:
    """Minimal NVRTC wrapper: CUDA C++ source in, PTX bytes out."""

    PROTOTYPES = [
        ("nvrtcVersion", [POINTER(c_int), POINTER(c_int)]),
        ("nvrtcCreateProgram", [
            POINTER(nvrtcProgram), c_char_p, c_char_p,
            c_int, POINTER(c_char_p), POINTER(c_char_p),
        ]),
        ("nvrtcCompileProgram", [nvrtcProgram, c_int, POINTER(c_char_p)]),
        ("nvrtcGetProgramLogSize", [nvrtcProgram, POINTER(c_size_t)]),
        ("nvrtcGetProgramLog", [nvrtcProgram, c_char_p]),
        ("nvrtcGetPTXSize", [nvrtcProgram, POINTER(c_size_t)]),
        ("nvrtcGetPTX", [nvrtcProgram, c_char_p]),
        ("nvrtcDestroyProgram", [POINTER(nvrtcProgram)]),
    ]

    def __init__(self, library_path: Optional[str] = None):
        self.library_path = library_path or find_nvrtc_library()
        if not self.library_path:
            raise CompilerInvocationFault(
                -1, "could not find the NVRTC library (pass --nvrtc)"
            )
        try:
            self.lib = ctypes.CDLL(self.library_path)
        except OSError as e:
            raise CompilerInvocationFault(-1, f"cannot load {self.library_path}: {e}")
        self._setup_prototypes()

    def _setup_prototypes(self):
        for name, argtypes in self.PROTOTYPES:
            fn = getattr(self.lib, name, None)
            if fn is None:
                raise CompilerInvocationFault(
                    -1, f"{self.library_path} does not export {name}"
                )
            fn.restype = nvrtcResult
            fn.argtypes = argtypes
        getter = getattr(self.lib, "nvrtcGetErrorString", None)
        if getter is None:
            raise CompilerInvocationFault(
                -1, f"{self.library_path} does not export nvrtcGetErrorString"
            )
        getter.restype = c_char_p
        getter.argtypes = [nvrtcResult]

    def error_string(self, result: int) -> str:
        text = self.lib.nvrtcGetErrorString(result)
        return text.decode(errors="replace") if text else f"NVRTC error {result}"

    def version(self) -> Tuple[int, int]:
        major, minor = c_int(), c_int()
        self._invoke(self.lib.nvrtcVersion(byref(major), byref(minor)), "nvrtcVersion")
        return major.value, minor.value

    def _invoke(self, result: int, what: str, log: str = ""):
        if result != NVRTC_SUCCESS:
            raise CompilerInvocationFault(
                result, f"{what}: {self.error_string(result)}", log
            )

    def _program_log(self, prog) -> str:
        size = c_size_t()
        self._invoke(self.lib.nvrtcGetProgramLogSize(prog, byref(size)), "nvrtcGetProgramLogSize")
        buf = create_string_buffer(max(size.value, 1))
        self._invoke(self.lib.nvrtcGetProgramLog(prog, buf), "nvrtcGetProgramLog")
        return buf.value.decode(errors="replace").strip()

    def compile(self, source: str, options: Sequence[str] = ()) -> bytes:
        """
        Compile CUDA C++ source to PTX.

        Raises CompileFault (with the program log) when NVRTC rejects the
        source and CompilerInvocationFault for any other failure. The
        program handle is destroyed on every path.
        """
        prog = nvrtcProgram()
        self._invoke(
            self.lib.nvrtcCreateProgram(
                byref(prog), source.encode("utf-8"), PROGRAM_NAME.encode(), 0, None, None
            ),
            "nvrtcCreateProgram",
        )
        try:
            encoded = [o.encode() for o in options]
            opts = (c_char_p * len(encoded))(*encoded) if encoded else None
            result = self.lib.nvrtcCompileProgram(prog, len(encoded), opts)
            if result != NVRTC_SUCCESS:
                log = self._program_log(prog)
                if result == NVRTC_ERROR_COMPILATION:
                    raise CompileFault("NVRTC", log)
                self._invoke(result, "nvrtcCompileProgram", log)

            size = c_size_t()
            self._invoke(self.lib.nvrtcGetPTXSize(prog, byref(size)), "nvrtcGetPTXSize")
            buf = create_string_buffer(size.value)
            self._invoke(self.lib.nvrtcGetPTX(prog, buf), "nvrtcGetPTX")
            return buf.raw.rstrip(b"\0")
        finally:
            self.lib.nvrtcDestroyProgram(byref(prog))
