#!/usr/bin/env python3
"""
CUDA Driver API bindings via ctypes for gpuconform.

The driver library under test is given explicitly on the command line, so
the binding is built around one loaded library object. Every entry point
the harness needs is resolved and prototyped once when the binding is
created; a library missing one of them is rejected up front.

Provides:
- GPU device information
- PTX module loading through the driver JIT
- Kernel launch and synchronization
- Device memory management
"""

import ctypes
from ctypes import (
    c_int, c_uint, c_char_p, c_void_p, c_size_t, c_ulonglong,
    byref, POINTER, create_string_buffer,
)
from dataclasses import dataclass
from typing import Optional, Tuple

from conform.errors import DriverFault

# ---------------------------------------------------------------------------
# CUDA constants
# ---------------------------------------------------------------------------

CUDA_SUCCESS = 0
CUDA_ERROR_INVALID_VALUE = 1
CUDA_ERROR_OUT_OF_MEMORY = 2
CUDA_ERROR_NOT_INITIALIZED = 3
CUDA_ERROR_NO_DEVICE = 100
CUDA_ERROR_INVALID_DEVICE = 101
CUDA_ERROR_INVALID_IMAGE = 200
CUDA_ERROR_INVALID_CONTEXT = 201
CUDA_ERROR_NO_BINARY_FOR_GPU = 209
CUDA_ERROR_INVALID_PTX = 218
CUDA_ERROR_JIT_COMPILER_NOT_FOUND = 221
CUDA_ERROR_UNSUPPORTED_PTX_VERSION = 222
CUDA_ERROR_INVALID_SOURCE = 300
CUDA_ERROR_NOT_FOUND = 500
CUDA_ERROR_ILLEGAL_ADDRESS = 700
CUDA_ERROR_LAUNCH_OUT_OF_RESOURCES = 701
CUDA_ERROR_LAUNCH_TIMEOUT = 702
CUDA_ERROR_ILLEGAL_INSTRUCTION = 715
CUDA_ERROR_LAUNCH_FAILED = 719

# Loader statuses that mean "this program text was rejected" rather than
# "the driver is unusable".
CUDA_PROGRAM_REJECTIONS = frozenset({
    CUDA_ERROR_INVALID_IMAGE,
    CUDA_ERROR_NO_BINARY_FOR_GPU,
    CUDA_ERROR_INVALID_PTX,
    CUDA_ERROR_UNSUPPORTED_PTX_VERSION,
    CUDA_ERROR_INVALID_SOURCE,
})

# JIT options
CU_JIT_INFO_LOG_BUFFER = 3
CU_JIT_INFO_LOG_BUFFER_SIZE_BYTES = 4
CU_JIT_ERROR_LOG_BUFFER = 5
CU_JIT_ERROR_LOG_BUFFER_SIZE_BYTES = 6

JIT_LOG_SIZE = 16384

# Device attributes
CU_DEVICE_ATTRIBUTE_MAX_THREADS_PER_BLOCK = 1
CU_DEVICE_ATTRIBUTE_MULTIPROCESSOR_COUNT = 16
CU_DEVICE_ATTRIBUTE_COMPUTE_CAPABILITY_MAJOR = 75
CU_DEVICE_ATTRIBUTE_COMPUTE_CAPABILITY_MINOR = 76

# Type aliases
CUdevice = c_int
CUcontext = c_void_p
CUmodule = c_void_p
CUfunction = c_void_p
CUdeviceptr = c_ulonglong
CUresult = c_int
CUjit_option = c_uint

# Error name mapping for common errors
CUDA_ERROR_NAMES = {
    CUDA_SUCCESS: "CUDA_SUCCESS",
    CUDA_ERROR_INVALID_VALUE: "CUDA_ERROR_INVALID_VALUE",
    CUDA_ERROR_OUT_OF_MEMORY: "CUDA_ERROR_OUT_OF_MEMORY",
    CUDA_ERROR_NOT_INITIALIZED: "CUDA_ERROR_NOT_INITIALIZED",
    CUDA_ERROR_NO_DEVICE: "CUDA_ERROR_NO_DEVICE",
    CUDA_ERROR_INVALID_DEVICE: "CUDA_ERROR_INVALID_DEVICE",
    CUDA_ERROR_INVALID_IMAGE: "CUDA_ERROR_INVALID_IMAGE",
    CUDA_ERROR_INVALID_CONTEXT: "CUDA_ERROR_INVALID_CONTEXT",
    CUDA_ERROR_NO_BINARY_FOR_GPU: "CUDA_ERROR_NO_BINARY_FOR_GPU",
    CUDA_ERROR_INVALID_PTX: "CUDA_ERROR_INVALID_PTX",
    CUDA_ERROR_JIT_COMPILER_NOT_FOUND: "CUDA_ERROR_JIT_COMPILER_NOT_FOUND",
    CUDA_ERROR_UNSUPPORTED_PTX_VERSION: "CUDA_ERROR_UNSUPPORTED_PTX_VERSION",
    CUDA_ERROR_INVALID_SOURCE: "CUDA_ERROR_INVALID_SOURCE",
    CUDA_ERROR_NOT_FOUND: "CUDA_ERROR_NOT_FOUND",
    CUDA_ERROR_ILLEGAL_ADDRESS: "CUDA_ERROR_ILLEGAL_ADDRESS",
    CUDA_ERROR_LAUNCH_OUT_OF_RESOURCES: "CUDA_ERROR_LAUNCH_OUT_OF_RESOURCES",
    CUDA_ERROR_LAUNCH_TIMEOUT: "CUDA_ERROR_LAUNCH_TIMEOUT",
    CUDA_ERROR_ILLEGAL_INSTRUCTION: "CUDA_ERROR_ILLEGAL_INSTRUCTION",
    CUDA_ERROR_LAUNCH_FAILED: "CUDA_ERROR_LAUNCH_FAILED",
}


def driver_fault(code: int, msg: str = "") -> DriverFault:
    return DriverFault(code, msg, CUDA_ERROR_NAMES.get(code, f"UNKNOWN({code})"))


@dataclass
class GPUInfo:
    """GPU device information."""
    name: str
    compute_major: int
    compute_minor: int
    sm_count: int
    max_threads_per_block: int
    driver_version: int

    @property
    def compute_version(self) -> str:
        return f"compute_{self.compute_major}{self.compute_minor}"

    @property
    def driver_version_str(self) -> str:
        return f"{self.driver_version // 1000}.{(self.driver_version % 1000) // 10}"

    def __str__(self) -> str:
        return (
            f"{self.name} | SM {self.compute_major}.{self.compute_minor} | "
            f"{self.sm_count} SMs | Driver API {self.driver_version_str}"
        )


class CUDADriver:
    """
    CUDA driver API wrapper via ctypes.

    One instance is the run's device context: created once, shared by every
    test, destroyed at exit.
    """

    PROTOTYPES = [
        ("cuInit", [c_uint]),
        ("cuDriverGetVersion", [POINTER(c_int)]),
        ("cuDeviceGet", [POINTER(CUdevice), c_int]),
        ("cuDeviceGetName", [c_char_p, c_int, CUdevice]),
        ("cuDeviceGetAttribute", [POINTER(c_int), c_int, CUdevice]),
        ("cuCtxCreate_v2", [POINTER(CUcontext), c_uint, CUdevice]),
        ("cuCtxDestroy_v2", [CUcontext]),
        ("cuCtxSynchronize", []),
        ("cuModuleLoadDataEx", [
            POINTER(CUmodule), c_void_p, c_uint,
            POINTER(CUjit_option), POINTER(c_void_p)
        ]),
        ("cuModuleUnload", [CUmodule]),
        ("cuModuleGetFunction", [
            POINTER(CUfunction), CUmodule, c_char_p
        ]),
        ("cuLaunchKernel", [
            CUfunction,
            c_uint, c_uint, c_uint,  # grid
            c_uint, c_uint, c_uint,  # block
            c_uint,                  # shared mem
            c_void_p,                # stream
            POINTER(c_void_p),       # params
            POINTER(c_void_p),       # extra
        ]),
        ("cuMemAlloc_v2", [POINTER(CUdeviceptr), c_size_t]),
        ("cuMemFree_v2", [CUdeviceptr]),
        ("cuMemcpyDtoH_v2", [c_void_p, CUdeviceptr, c_size_t]),
        ("cuMemcpyHtoD_v2", [CUdeviceptr, c_void_p, c_size_t]),
        ("cuGetErrorString", [CUresult, POINTER(c_char_p)]),
    ]

    def __init__(self, library_path: str, device_ordinal: int = 0):
        self.library_path = library_path
        self.lib = self._load_library(self.library_path)
        self._setup_prototypes()
        self.context = None
        self._check(self.lib.cuInit(c_uint(0)), "cuInit")

        # Get device
        self.device = CUdevice()
        self._check(self.lib.cuDeviceGet(byref(self.device), device_ordinal), "cuDeviceGet")

        # Create context
        context = CUcontext()
        self._check(self.lib.cuCtxCreate_v2(
            byref(context), c_uint(0), self.device
        ), "cuCtxCreate")
        self.context = context

        self.gpu_info = self._query_gpu_info()

    @staticmethod
    def _load_library(path: str):
        try:
            return ctypes.CDLL(path)
        except OSError as e:
            raise driver_fault(CUDA_ERROR_NOT_INITIALIZED, f"cannot load {path}: {e}")

    def _setup_prototypes(self):
        """Resolve every required entry point and set its prototype."""
        for name, argtypes in self.PROTOTYPES:
            fn = getattr(self.lib, name, None)
            if fn is None:
                raise driver_fault(
                    CUDA_ERROR_NOT_FOUND, f"{self.library_path} does not export {name}"
                )
            fn.restype = CUresult
            fn.argtypes = argtypes

    def error_string(self, result: int) -> str:
        err_str = c_char_p()
        self.lib.cuGetErrorString(CUresult(result), byref(err_str))
        return err_str.value.decode() if err_str.value else ""

    def _check(self, result: int, context: str = ""):
        """Check CUDA result, raise DriverFault on failure."""
        if result != CUDA_SUCCESS:
            msg = self.error_string(result)
            if context:
                msg = f"{context}: {msg}"
            raise driver_fault(result, msg)

    def _get_attribute(self, attr: int) -> int:
        """Query a device attribute."""
        val = c_int()
        self._check(
            self.lib.cuDeviceGetAttribute(byref(val), attr, self.device)
        )
        return val.value

    def _query_gpu_info(self) -> GPUInfo:
        """Query GPU device information."""
        name_buf = create_string_buffer(256)
        self._check(self.lib.cuDeviceGetName(name_buf, 256, self.device))
        version = c_int()
        self._check(self.lib.cuDriverGetVersion(byref(version)))

        return GPUInfo(
            name=name_buf.value.decode(errors="replace"),
            compute_major=self._get_attribute(CU_DEVICE_ATTRIBUTE_COMPUTE_CAPABILITY_MAJOR),
            compute_minor=self._get_attribute(CU_DEVICE_ATTRIBUTE_COMPUTE_CAPABILITY_MINOR),
            sm_count=self._get_attribute(CU_DEVICE_ATTRIBUTE_MULTIPROCESSOR_COUNT),
            max_threads_per_block=self._get_attribute(CU_DEVICE_ATTRIBUTE_MAX_THREADS_PER_BLOCK),
            driver_version=version.value,
        )

    def load_ptx(self, ptx_source) -> Tuple[Optional[CUmodule], str]:
        """
        JIT-compile PTX source and load as a module.

        Returns (module, error_log). Module is None when the driver rejected
        the program; any other failure raises DriverFault.
        """
        module = CUmodule()

        # Set up JIT options for error logging
        info_buf = create_string_buffer(JIT_LOG_SIZE)
        error_buf = create_string_buffer(JIT_LOG_SIZE)

        options = (CUjit_option * 4)(
            CU_JIT_INFO_LOG_BUFFER,
            CU_JIT_INFO_LOG_BUFFER_SIZE_BYTES,
            CU_JIT_ERROR_LOG_BUFFER,
            CU_JIT_ERROR_LOG_BUFFER_SIZE_BYTES,
        )
        values = (c_void_p * 4)(
            ctypes.cast(info_buf, c_void_p),
            c_void_p(JIT_LOG_SIZE),
            ctypes.cast(error_buf, c_void_p),
            c_void_p(JIT_LOG_SIZE),
        )

        if isinstance(ptx_source, str):
            ptx_source = ptx_source.encode("utf-8")
        ptx_bytes = ptx_source.rstrip(b"\0") + b"\0"
        result = self.lib.cuModuleLoadDataEx(
            byref(module),
            ptx_bytes,
            c_uint(4),
            options,
            values,
        )

        error_log = error_buf.value.decode(errors="replace").strip()

        if result in CUDA_PROGRAM_REJECTIONS:
            return None, error_log or CUDA_ERROR_NAMES.get(result, f"error {result}")
        self._check(result, "cuModuleLoadDataEx")

        return module, ""

    def get_function(self, module: CUmodule, name: str) -> Optional[CUfunction]:
        """Get a kernel function handle from a module, None if it is absent."""
        func = CUfunction()
        result = self.lib.cuModuleGetFunction(byref(func), module, name.encode())
        if result == CUDA_ERROR_NOT_FOUND:
            return None
        self._check(result, f"get_function({name})")
        return func

    def unload_module(self, module: CUmodule):
        """Unload a CUDA module."""
        if module:
            self._check(self.lib.cuModuleUnload(module), "cuModuleUnload")

    def malloc(self, size: int) -> CUdeviceptr:
        """Allocate device memory."""
        ptr = CUdeviceptr()
        self._check(
            self.lib.cuMemAlloc_v2(byref(ptr), c_size_t(size)),
            f"malloc({size})"
        )
        return ptr

    def free(self, ptr: CUdeviceptr):
        """Free device memory."""
        if ptr:
            self._check(self.lib.cuMemFree_v2(ptr), "free")

    def memcpy_dtoh(self, dst, src: CUdeviceptr, size: int):
        """Copy from device to host. `dst` is a host address or ctypes buffer."""
        self._check(
            self.lib.cuMemcpyDtoH_v2(dst, src, c_size_t(size)),
            "memcpy_dtoh"
        )

    def memcpy_htod(self, dst: CUdeviceptr, src, size: int):
        """Copy from host to device. `src` is a host address or ctypes buffer."""
        self._check(
            self.lib.cuMemcpyHtoD_v2(dst, src, c_size_t(size)),
            "memcpy_htod"
        )

    def launch_kernel(
        self,
        func: CUfunction,
        grid: Tuple[int, int, int] = (1, 1, 1),
        block: Tuple[int, int, int] = (1, 1, 1),
        shared_mem: int = 0,
        params: list = None,
    ) -> int:
        """
        Launch a kernel. Returns CUDA error code (0 = success).

        Every parameter is a device pointer passed by value.
        """
        if params:
            # Each element of param_ptrs is a void* pointing to the
            # parameter value (which itself is a device pointer).
            param_ptrs = (c_void_p * len(params))()
            param_storage = []
            for i, p in enumerate(params):
                storage = CUdeviceptr(p.value if hasattr(p, "value") else p)
                param_storage.append(storage)
                param_ptrs[i] = ctypes.cast(
                    ctypes.pointer(storage), c_void_p
                )
        else:
            param_ptrs = None

        result = self.lib.cuLaunchKernel(
            func,
            c_uint(grid[0]), c_uint(grid[1]), c_uint(grid[2]),
            c_uint(block[0]), c_uint(block[1]), c_uint(block[2]),
            c_uint(shared_mem),
            c_void_p(0),  # default stream
            param_ptrs,
            None,  # extra
        )
        return result

    def synchronize(self) -> int:
        """Synchronize context. Returns error code."""
        return self.lib.cuCtxSynchronize()

    def launch_and_sync(
        self,
        func: CUfunction,
        grid: Tuple[int, int, int] = (1, 1, 1),
        block: Tuple[int, int, int] = (1, 1, 1),
        shared_mem: int = 0,
        params: list = None,
    ) -> int:
        """Launch kernel and synchronize. Returns final error code."""
        result = self.launch_kernel(func, grid, block, shared_mem, params)
        if result != CUDA_SUCCESS:
            return result
        return self.synchronize()

    def destroy(self):
        """Destroy CUDA context."""
        if self.context:
            self.lib.cuCtxDestroy_v2(self.context)
            self.context = None

    def __del__(self):
        if getattr(self, "context", None):
            self.destroy()
