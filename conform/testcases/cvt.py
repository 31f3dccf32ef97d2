"""
Conversions: integer widening/narrowing and f16 <-> f32.

Integer results follow the kinds involved: widening extends according to
the source signedness, narrowing (no .sat) keeps the low bits.
"""

import numpy as np

from conform.ranges import BitDomain
from conform.registry import TestDefinition, inputs_of, output_of
from conform.scalars import ScalarKind, convert_int
from conform.verifier import ExactVerifier

PTX_BODY = """\
.reg {src} %value;
.reg {dst} %result;
<LOAD_ARGS>
ld{src} %value, [input_a];
{op} %result, %value;
st{dst} [output], %result;
"""

S = ScalarKind

INTEGER_CONVERSIONS = [
    (S.U32, S.U16),
    (S.U32, S.S16),
    (S.S32, S.U16),
    (S.S32, S.S16),
    (S.U16, S.U32),
    (S.S16, S.S32),
]


def _cvt_test(name: str, op: str, dst: ScalarKind, src: ScalarKind, reference) -> TestDefinition:
    return TestDefinition(
        name=name,
        body=PTX_BODY.format(src=src.ptx, dst=dst.ptx, op=op),
        inputs=inputs_of(("input_a", src)),
        output=output_of(dst),
        domain=BitDomain([src]),
        verifier=ExactVerifier(reference, dst, [src]),
        description=f"{op} over every {src.label} value",
    )


def _integer_test(dst: ScalarKind, src: ScalarKind) -> TestDefinition:
    def reference(values):
        return convert_int(src, dst, values)

    return _cvt_test(
        f"cvt_{dst.label}_{src.label}", f"cvt.{dst.label}.{src.label}", dst, src, reference,
    )


def f32_to_f16(values: np.ndarray) -> np.ndarray:
    """Round to nearest even; overflow goes to infinity."""
    return np.asarray(values, dtype=np.float32).astype(np.float16)


def f16_to_f32(values: np.ndarray) -> np.ndarray:
    return np.asarray(values, dtype=np.float16).astype(np.float32)


def all_tests():
    tests = [_integer_test(dst, src) for dst, src in INTEGER_CONVERSIONS]
    tests.append(_cvt_test("cvt_rn_f16_f32", "cvt.rn.f16.f32", S.F16, S.F32, f32_to_f16))
    tests.append(_cvt_test("cvt_f32_f16", "cvt.f32.f16", S.F32, S.F16, f16_to_f32))
    return tests
