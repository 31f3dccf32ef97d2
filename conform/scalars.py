#!/usr/bin/env python3
"""
Scalar kinds and bit-pattern helpers.

Every test argument is tagged with a ScalarKind (width x signedness x
float-ness). Width-dependent behaviour such as shift saturation, sign
extension and truncation is looked up from the kind instead of being
specialised per numpy type.

The bit-cast helpers only ever reinterpret storage of the same width; they
never convert values. Arrays are used throughout so a whole launch batch can
be handled at once.
"""

import struct
from enum import Enum

import numpy as np


_DTYPES = {
    "u16": np.uint16, "s16": np.int16,
    "u32": np.uint32, "s32": np.int32,
    "u64": np.uint64, "s64": np.int64,
    "f16": np.float16, "f32": np.float32,
}

_UNSIGNED = {2: np.uint16, 4: np.uint32, 8: np.uint64}

_CTYPES = {
    "u16": "unsigned short", "s16": "short",
    "u32": "unsigned int", "s32": "int",
    "u64": "unsigned long long", "s64": "long long",
    "f16": "unsigned short", "f32": "float",
}


class ScalarKind(Enum):
    U16 = ("u16", 16, False, False)
    S16 = ("s16", 16, True, False)
    U32 = ("u32", 32, False, False)
    S32 = ("s32", 32, True, False)
    U64 = ("u64", 64, False, False)
    S64 = ("s64", 64, True, False)
    F16 = ("f16", 16, True, True)
    F32 = ("f32", 32, True, True)

    def __init__(self, label: str, bits: int, signed: bool, is_float: bool):
        self.label = label
        self.bits = bits
        self.signed = signed
        self.is_float = is_float

    @property
    def nbytes(self) -> int:
        return self.bits // 8

    @property
    def mask(self) -> int:
        return (1 << self.bits) - 1

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(_DTYPES[self.label])

    @property
    def storage_dtype(self) -> np.dtype:
        """Unsigned integer dtype of the same width."""
        return np.dtype(_UNSIGNED[self.nbytes])

    @property
    def ptx(self) -> str:
        """PTX type suffix used for registers and ld/st of this kind."""
        # Half values travel in untyped 16-bit registers.
        if self is ScalarKind.F16:
            return ".b16"
        return f".{self.label}"

    @property
    def ctype(self) -> str:
        """CUDA C element type of a buffer holding this kind."""
        return _CTYPES[self.label]


# ---------------------------------------------------------------------------
# Same-width bit casts
# ---------------------------------------------------------------------------

def to_bits(values: np.ndarray) -> np.ndarray:
    """View an array as unsigned integers of the same width."""
    values = np.asarray(values)
    return values.view(_UNSIGNED[values.dtype.itemsize])


def from_bits(bits: np.ndarray, kind: ScalarKind) -> np.ndarray:
    """View unsigned bit patterns as `kind`. Widths must match exactly."""
    bits = np.asarray(bits)
    if bits.dtype.itemsize != kind.nbytes:
        raise ValueError(
            f"cannot reinterpret {bits.dtype} as {kind.label}: width differs"
        )
    return bits.view(kind.storage_dtype).view(kind.dtype)


def scalar_array(kind: ScalarKind, value) -> np.ndarray:
    """
    One-element array of `kind` holding `value`.

    Integers may be given either as values or as raw bit patterns, so
    0xFFFF and -1 both give the s16 value -1. Floats are taken as values.
    """
    if kind.is_float:
        return np.asarray([value], dtype=kind.dtype)
    bits = np.asarray([int(value) & kind.mask], dtype=kind.storage_dtype)
    return bits.view(kind.dtype)


def f32_to_bits(value: float) -> int:
    return struct.unpack("<I", struct.pack("<f", value))[0]


def f32_from_bits(bits: int) -> float:
    return struct.unpack("<f", struct.pack("<I", bits & 0xFFFFFFFF))[0]


def widen_bits(kind: ScalarKind, values: np.ndarray) -> np.ndarray:
    """Zero-extend the raw bits of `values` to uint64."""
    return np.asarray(values).view(kind.storage_dtype).astype(np.uint64)


def narrow_bits(kind: ScalarKind, bits: np.ndarray) -> np.ndarray:
    """Keep the low `kind.bits` of uint64 patterns and view them as `kind`."""
    low = (bits & np.uint64(kind.mask)).astype(kind.storage_dtype)
    return low.view(kind.dtype)


# ---------------------------------------------------------------------------
# Width-driven integer rules
# ---------------------------------------------------------------------------

def shift_left(kind: ScalarKind, values: np.ndarray, amounts: np.ndarray) -> np.ndarray:
    """shl: any amount at or beyond the width clears the value."""
    bits = widen_bits(kind, values)
    amounts = np.asarray(amounts).astype(np.uint64)
    clipped = np.minimum(amounts, np.uint64(kind.bits - 1))
    shifted = np.where(amounts >= kind.bits, np.uint64(0), bits << clipped)
    return narrow_bits(kind, shifted)


def shift_right(kind: ScalarKind, values: np.ndarray, amounts: np.ndarray) -> np.ndarray:
    """
    shr: unsigned kinds clear on saturation, signed kinds fill with the sign.

    A signed shift by width-1 already yields the sign fill, so clamping the
    amount is enough for the signed case.
    """
    amounts = np.asarray(amounts).astype(np.uint64)
    clipped = np.minimum(amounts, np.uint64(kind.bits - 1))
    if kind.signed:
        wide = np.asarray(values).astype(np.int64)
        shifted = wide >> clipped.astype(np.int64)
        return narrow_bits(kind, shifted.view(np.uint64))
    bits = widen_bits(kind, values)
    shifted = np.where(amounts >= kind.bits, np.uint64(0), bits >> clipped)
    return narrow_bits(kind, shifted)


def convert_int(src: ScalarKind, dst: ScalarKind, values: np.ndarray) -> np.ndarray:
    """Integer cvt: extend according to the source, truncate to the destination."""
    values = np.asarray(values)
    if src.signed:
        wide = values.astype(np.int64).view(np.uint64)
    else:
        wide = values.astype(np.uint64)
    return narrow_bits(dst, wide)


# ---------------------------------------------------------------------------
# f32 classification
# ---------------------------------------------------------------------------

F32_SIGN = 0x80000000
F32_EXPONENT = 0x7F800000
F32_MANTISSA = 0x007FFFFF


def is_subnormal(values: np.ndarray) -> np.ndarray:
    bits = to_bits(np.asarray(values, dtype=np.float32))
    return ((bits & np.uint32(F32_EXPONENT)) == 0) & ((bits & np.uint32(F32_MANTISSA)) != 0)


def flush_to_zero(values: np.ndarray) -> np.ndarray:
    """Replace f32 subnormals with a zero of the same sign."""
    bits = to_bits(np.asarray(values, dtype=np.float32))
    flushed = np.where(is_subnormal(values), bits & np.uint32(F32_SIGN), bits)
    return flushed.astype(np.uint32).view(np.float32)


def same_bits(expected: np.ndarray, actual: np.ndarray, kind: ScalarKind) -> np.ndarray:
    """Bitwise equality; for float kinds any NaN also matches any NaN."""
    equal = to_bits(expected) == to_bits(actual)
    if kind.is_float:
        equal |= np.isnan(expected) & np.isnan(actual)
    return equal


def format_scalar(kind: ScalarKind, value) -> str:
    """Human-readable text for one value, with the bit pattern for floats."""
    if kind.is_float:
        bits = int(to_bits(np.asarray([value], dtype=kind.dtype))[0])
        return f"{float(value)!r} (0x{bits:0{kind.nbytes * 2}x})"
    return str(int(value))
