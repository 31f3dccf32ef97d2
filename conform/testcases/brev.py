"""Bit reverse: brev.b32 over the full 32-bit space."""

import numpy as np

from conform.ranges import BitDomain
from conform.registry import TestDefinition, inputs_of, output_of
from conform.scalars import ScalarKind
from conform.verifier import ExactVerifier

PTX_BODY = """\
.reg .u32 %value;
.reg .u32 %result;
<LOAD_ARGS>
ld.u32 %value, [input_a];
brev.b32 %result, %value;
st.u32 [output], %result;
"""

# (shift, mask) swap steps: neighbours, pairs, nibbles, bytes, halves.
_SWAPS = [
    (1, np.uint32(0x55555555)),
    (2, np.uint32(0x33333333)),
    (4, np.uint32(0x0F0F0F0F)),
    (8, np.uint32(0x00FF00FF)),
    (16, np.uint32(0x0000FFFF)),
]


def reverse_bits32(values: np.ndarray) -> np.ndarray:
    v = np.asarray(values).astype(np.uint32)
    for shift, mask in _SWAPS:
        s = np.uint32(shift)
        v = ((v >> s) & mask) | ((v & mask) << s)
    return v


def all_tests():
    return [
        TestDefinition(
            name="brev_b32",
            body=PTX_BODY,
            inputs=inputs_of(("input_a", ScalarKind.U32)),
            output=output_of(ScalarKind.U32),
            domain=BitDomain([ScalarKind.U32]),
            verifier=ExactVerifier(reverse_bits32, ScalarKind.U32, [ScalarKind.U32]),
            description="brev.b32 over every 32-bit value",
        )
    ]
