"""
Bit-field extract: bfe.{u32,s32,u64,s64}.

PTX semantics (ISA "Integer Arithmetic Instructions: bfe"):

    msb = width - 1
    pos = b & 0xff;  len = c & 0xff
    sbit = signed && len != 0 ? a[min(pos + len - 1, msb)] : 0
    d[i] = (i < len && pos + i <= msb) ? a[pos + i] : sbit
"""

import numpy as np

from conform.ranges import BitFieldDomain
from conform.registry import TestDefinition, inputs_of, output_of
from conform.scalars import ScalarKind, narrow_bits, widen_bits
from conform.verifier import ExactVerifier

PTX_BODY = """\
.reg {kind} %value;
.reg .u32 %pos;
.reg .u32 %len;
.reg {kind} %result;
<LOAD_ARGS>
ld{kind} %value, [input_a];
ld.u32 %pos, [input_b];
ld.u32 %len, [input_c];
bfe{kind} %result, %value, %pos, %len;
st{kind} [output], %result;
"""

_ONE = np.uint64(1)
_ALL_ONES = np.uint64(0xFFFFFFFFFFFFFFFF)


def low_mask(widths: np.ndarray) -> np.ndarray:
    """Masks of the low `widths` bits (0..64) as uint64."""
    widths = np.asarray(widths, dtype=np.uint64)
    partial = (_ONE << np.minimum(widths, np.uint64(63))) - _ONE
    return np.where(widths >= 64, _ALL_ONES, partial)


def field_geometry(kind: ScalarKind, pos: np.ndarray, length: np.ndarray):
    """
    Effective (pos, len, field_len) of a bit field in a `kind` register.

    Only the low 8 bits of pos and len are significant; the field is cut off
    at the most significant bit.
    """
    pos = (np.asarray(pos).astype(np.uint64)) & np.uint64(0xFF)
    length = (np.asarray(length).astype(np.uint64)) & np.uint64(0xFF)
    in_range = pos < np.uint64(kind.bits)
    available = np.where(in_range, np.uint64(kind.bits) - pos, np.uint64(0))
    return pos, length, np.minimum(length, available)


def bit_field_extract(kind: ScalarKind, values, pos, length) -> np.ndarray:
    msb = np.uint64(kind.bits - 1)
    bits = widen_bits(kind, values)
    pos, length, field_len = field_geometry(kind, pos, length)
    shifted = np.where(pos <= msb, bits >> np.minimum(pos, msb), np.uint64(0))
    field = shifted & low_mask(field_len)
    if kind.signed:
        # len == 0 wraps pos + len - 1; the sign bit is discarded for it anyway.
        top = np.minimum(pos + length - _ONE, msb)
        sign = (((bits >> top) & _ONE) != 0) & (length != 0)
        fill = ~low_mask(field_len) & np.uint64(kind.mask)
        field = np.where(sign, field | fill, field)
    return narrow_bits(kind, field)


def _bfe_test(kind: ScalarKind) -> TestDefinition:
    input_kinds = [kind, ScalarKind.U32, ScalarKind.U32]

    def reference(values, pos, length):
        return bit_field_extract(kind, values, pos, length)

    return TestDefinition(
        name=f"bfe_{kind.label}",
        body=PTX_BODY.format(kind=kind.ptx),
        inputs=inputs_of(("input_a", kind), ("input_b", ScalarKind.U32), ("input_c", ScalarKind.U32)),
        output=output_of(kind),
        domain=BitFieldDomain(kind, operands=1),
        verifier=ExactVerifier(reference, kind, input_kinds),
        description=f"bfe{kind.ptx} over every (pos, len) pair",
    )


def all_tests():
    return [_bfe_test(kind) for kind in (ScalarKind.U32, ScalarKind.S32, ScalarKind.U64, ScalarKind.S64)]
