"""
In-process stand-ins for the CUDA driver and NVRTC used by the test suite.

"Device" memory is ordinary ctypes buffers addressed by their host address,
so the engine's memcpy calls work unchanged. A launch runs a numpy model of
the kernel over the marshalled input buffers and writes the output buffer.
"""

import ctypes
from unittest import mock

import numpy as np

from conform.cuda_api import (
    CU_DEVICE_ATTRIBUTE_COMPUTE_CAPABILITY_MAJOR, CU_DEVICE_ATTRIBUTE_COMPUTE_CAPABILITY_MINOR,
    CU_DEVICE_ATTRIBUTE_MAX_THREADS_PER_BLOCK, CU_DEVICE_ATTRIBUTE_MULTIPROCESSOR_COUNT,
    CUDA_SUCCESS, CUDADriver, GPUInfo,
)
from conform.nvrtc_api import (
    NVRTC_ERROR_COMPILATION, NVRTC_ERROR_INVALID_OPTION, NVRTC_ERROR_INVALID_PROGRAM,
    NVRTC_SUCCESS, NVRTCCompiler,
)
from conform.ptx_gen import ENTRY_POINT


def fake_gpu_info(max_threads_per_block=1024):
    return GPUInfo(
        name="Fake GPU",
        compute_major=8,
        compute_minor=0,
        sm_count=4,
        max_threads_per_block=max_threads_per_block,
        driver_version=12040,
    )


class FakeDriver:
    """
    `kinds` lists the kernel's argument kinds (inputs, then output) and
    `kernel(*inputs)` returns the output array for one launch.
    """

    library_path = "libcuda-fake.so"

    def __init__(self, kinds, kernel, reject_log=None, launch_result=CUDA_SUCCESS):
        self.kinds = list(kinds)
        self.kernel = kernel
        self.reject_log = reject_log
        self.launch_result = launch_result
        self.gpu_info = fake_gpu_info()
        self.sources = []
        self.modules = []
        self.unloaded = []
        self.allocations = {}
        self.launches = []
        self.destroyed = False

    def load_ptx(self, ptx):
        self.sources.append(ptx)
        if self.reject_log is not None:
            return None, self.reject_log
        module = object()
        self.modules.append(module)
        return module, ""

    def get_function(self, module, name):
        return ("function", name) if name == ENTRY_POINT else None

    def unload_module(self, module):
        self.unloaded.append(module)

    def malloc(self, size):
        buf = ctypes.create_string_buffer(size)
        addr = ctypes.addressof(buf)
        self.allocations[addr] = buf
        return addr

    def free(self, ptr):
        del self.allocations[ptr]

    def memcpy_htod(self, dst, src, size):
        ctypes.memmove(dst, src, size)

    def memcpy_dtoh(self, dst, src, size):
        ctypes.memmove(dst, src, size)

    def launch_and_sync(self, function, grid=(1, 1, 1), block=(1, 1, 1), params=None):
        threads = grid[0] * block[0]
        self.launches.append(threads)
        if self.launch_result != CUDA_SUCCESS:
            return self.launch_result
        *in_ptrs, out_ptr = params
        *in_kinds, out_kind = self.kinds
        inputs = [
            np.frombuffer(ctypes.string_at(p, threads * k.nbytes), dtype=k.dtype)
            for p, k in zip(in_ptrs, in_kinds)
        ]
        with np.errstate(all="ignore"):
            out = np.ascontiguousarray(self.kernel(*inputs), dtype=out_kind.dtype)
        ctypes.memmove(out_ptr, out.ctypes.data, out.nbytes)
        return CUDA_SUCCESS

    def destroy(self):
        self.destroyed = True


# ---------------------------------------------------------------------------
# Library-level fakes for the ctypes bindings
# ---------------------------------------------------------------------------
#
# These stand in for the object returned by ctypes.CDLL, so CUDADriver and
# NVRTCCompiler run their real marshalling code. Out-parameters arrive as
# byref() objects and are filled through `._obj`; string buffers are
# written in place.

FAKE_ATTRIBUTES = {
    CU_DEVICE_ATTRIBUTE_MAX_THREADS_PER_BLOCK: 1024,
    CU_DEVICE_ATTRIBUTE_MULTIPROCESSOR_COUNT: 4,
    CU_DEVICE_ATTRIBUTE_COMPUTE_CAPABILITY_MAJOR: 8,
    CU_DEVICE_ATTRIBUTE_COMPUTE_CAPABILITY_MINOR: 6,
}

FAKE_CONTEXT = 0xC000
FAKE_MODULE = 0xD000
FAKE_FUNCTION = 0xF000
FAKE_PROGRAM = 0x9000

NVRTC_ERROR_NAMES = {
    NVRTC_SUCCESS: "NVRTC_SUCCESS",
    NVRTC_ERROR_INVALID_PROGRAM: "NVRTC_ERROR_INVALID_PROGRAM",
    NVRTC_ERROR_INVALID_OPTION: "NVRTC_ERROR_INVALID_OPTION",
    NVRTC_ERROR_COMPILATION: "NVRTC_ERROR_COMPILATION",
}


def _status_for(status, payload):
    return status(payload) if callable(status) else status


class FakeDriverLibrary:
    """
    A libcuda lookalike. `load_status` and `jit_log` may be callables of the
    PTX bytes handed to cuModuleLoadDataEx.
    """

    def __init__(self, load_status=CUDA_SUCCESS, jit_log=b"",
                 function_status=CUDA_SUCCESS):
        self.load_status = load_status
        self.jit_log = jit_log
        self.function_status = function_status
        self.loaded = []
        self.lib = mock.MagicMock()
        for name, _ in CUDADriver.PROTOTYPES:
            getattr(self.lib, name).return_value = CUDA_SUCCESS
        self.lib.cuCtxCreate_v2.side_effect = self._ctx_create
        self.lib.cuDeviceGetName.side_effect = self._device_name
        self.lib.cuDriverGetVersion.side_effect = self._driver_version
        self.lib.cuDeviceGetAttribute.side_effect = self._attribute
        self.lib.cuModuleLoadDataEx.side_effect = self._load
        self.lib.cuModuleGetFunction.side_effect = self._function
        self.lib.cuGetErrorString.side_effect = self._error_string

    def _ctx_create(self, ref, flags, device):
        ref._obj.value = FAKE_CONTEXT
        return CUDA_SUCCESS

    def _device_name(self, buf, size, device):
        buf.value = b"Fake GPU"
        return CUDA_SUCCESS

    def _driver_version(self, ref):
        ref._obj.value = 12040
        return CUDA_SUCCESS

    def _attribute(self, ref, attr, device):
        ref._obj.value = FAKE_ATTRIBUTES[attr]
        return CUDA_SUCCESS

    def _load(self, ref, ptx, count, options, values):
        self.loaded.append(ptx)
        log = _status_for(self.jit_log, ptx)
        if log:
            # values[2] is the JIT error log buffer, values[3] its size.
            ctypes.memmove(values[2], log, min(len(log), values[3] - 1))
        status = _status_for(self.load_status, ptx)
        if status == CUDA_SUCCESS:
            ref._obj.value = FAKE_MODULE
        return status

    def _function(self, ref, module, name):
        if self.function_status == CUDA_SUCCESS:
            ref._obj.value = FAKE_FUNCTION
        return self.function_status

    def _error_string(self, code, ref):
        ref._obj.value = f"fake driver error {code.value}".encode()
        return CUDA_SUCCESS


class FakeNVRTCLibrary:
    """
    A libnvrtc lookalike. `compile_status` may be a callable of the source
    bytes given to nvrtcCreateProgram; `log` is returned as the program log.
    """

    def __init__(self, compile_status=NVRTC_SUCCESS, log=b"",
                 ptx=b"// fake nvrtc ptx\n", ptx_status=NVRTC_SUCCESS):
        self.compile_status = compile_status
        self.log = log
        self.ptx = ptx
        self.ptx_status = ptx_status
        self.sources = []
        self.options = []
        self.destroyed = []
        self.lib = mock.MagicMock()
        for name, _ in NVRTCCompiler.PROTOTYPES:
            getattr(self.lib, name).return_value = NVRTC_SUCCESS
        self.lib.nvrtcVersion.side_effect = self._version
        self.lib.nvrtcCreateProgram.side_effect = self._create
        self.lib.nvrtcCompileProgram.side_effect = self._compile
        self.lib.nvrtcGetProgramLogSize.side_effect = self._log_size
        self.lib.nvrtcGetProgramLog.side_effect = self._get_log
        self.lib.nvrtcGetPTXSize.side_effect = self._ptx_size
        self.lib.nvrtcGetPTX.side_effect = self._get_ptx
        self.lib.nvrtcDestroyProgram.side_effect = self._destroy
        self.lib.nvrtcGetErrorString.side_effect = self._error_string

    def _version(self, major, minor):
        major._obj.value, minor._obj.value = 12, 4
        return NVRTC_SUCCESS

    def _create(self, ref, source, name, num_headers, headers, include_names):
        self.sources.append(source)
        ref._obj.value = FAKE_PROGRAM
        return NVRTC_SUCCESS

    def _compile(self, prog, count, opts):
        self.options.append([opts[i] for i in range(count)] if count else [])
        return _status_for(self.compile_status, self.sources[-1])

    def _log_size(self, prog, ref):
        ref._obj.value = len(self.log) + 1
        return NVRTC_SUCCESS

    def _get_log(self, prog, buf):
        buf.value = self.log
        return NVRTC_SUCCESS

    def _ptx_size(self, prog, ref):
        ref._obj.value = len(self.ptx) + 1
        return NVRTC_SUCCESS

    def _get_ptx(self, prog, buf):
        if self.ptx_status != NVRTC_SUCCESS:
            return self.ptx_status
        buf.value = self.ptx
        return NVRTC_SUCCESS

    def _destroy(self, ref):
        self.destroyed.append(ref._obj.value)
        ref._obj.value = None
        return NVRTC_SUCCESS

    def _error_string(self, result):
        return NVRTC_ERROR_NAMES.get(result, "NVRTC_ERROR_UNKNOWN").encode()
