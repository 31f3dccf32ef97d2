"""
Bit-field insert: bfi.{b32,b64}.

    f = b
    for i in 0 .. len-1 while pos + i <= msb:  f[pos + i] = a[i]
"""

import numpy as np

from conform.ranges import BitFieldDomain
from conform.registry import TestDefinition, inputs_of, output_of
from conform.scalars import ScalarKind, narrow_bits, widen_bits
from conform.testcases.bfe import field_geometry, low_mask
from conform.verifier import ExactVerifier

PTX_BODY = """\
.reg {kind} %insert;
.reg {kind} %base;
.reg .u32 %pos;
.reg .u32 %len;
.reg {kind} %result;
<LOAD_ARGS>
ld{kind} %insert, [input_a];
ld{kind} %base, [input_b];
ld.u32 %pos, [input_c];
ld.u32 %len, [input_d];
bfi.b{bits} %result, %insert, %base, %pos, %len;
st{kind} [output], %result;
"""


def bit_field_insert(kind: ScalarKind, insert, base, pos, length) -> np.ndarray:
    msb = np.uint64(kind.bits - 1)
    pos, _, field_len = field_geometry(kind, pos, length)
    offset = np.minimum(pos, msb)
    field_mask = low_mask(field_len) << offset
    merged = (widen_bits(kind, base) & ~field_mask) | ((widen_bits(kind, insert) << offset) & field_mask)
    return narrow_bits(kind, merged)


def _bfi_test(kind: ScalarKind) -> TestDefinition:
    input_kinds = [kind, kind, ScalarKind.U32, ScalarKind.U32]

    def reference(insert, base, pos, length):
        return bit_field_insert(kind, insert, base, pos, length)

    return TestDefinition(
        name=f"bfi_b{kind.bits}",
        body=PTX_BODY.format(kind=kind.ptx, bits=kind.bits),
        inputs=inputs_of(
            ("input_a", kind), ("input_b", kind),
            ("input_c", ScalarKind.U32), ("input_d", ScalarKind.U32),
        ),
        output=output_of(kind),
        domain=BitFieldDomain(kind, operands=2),
        verifier=ExactVerifier(reference, kind, input_kinds),
        description=f"bfi.b{kind.bits} over every (pos, len) pair",
    )


def all_tests():
    return [_bfi_test(ScalarKind.U32), _bfi_test(ScalarKind.U64)]
