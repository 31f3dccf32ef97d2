"""
Reciprocal square root: rsqrt.approx.f32 and rsqrt.approx.ftz.f32.

Without .ftz the minimal positive subnormal gives about 2^74.5, so the
error bound scales with the result above one.
"""

import numpy as np

from conform.ranges import NEGATIVE_ONE, STANDARD_EDGES, FloatRangeDomain
from conform.testcases.common import unary_f32_test
from conform.verifier import F32_INF, F32_NAN, ApproximateVerifier, signed

TOLERANCE = 2.0 ** -22.9

EDGES = STANDARD_EDGES + (NEGATIVE_ONE,)


def reciprocal_sqrt(x):
    return 1.0 / np.sqrt(x)


def rsqrt_special(x):
    zero = x == 0
    negative = x < 0
    inf = np.isposinf(x)
    nan = np.isnan(x)
    expected = np.select(
        [zero, negative, inf, nan],
        [signed(F32_INF, x), np.full_like(x, F32_NAN), np.zeros_like(x), np.full_like(x, F32_NAN)],
        default=np.float32(0),
    )
    return zero | negative | inf | nan, expected


def _rsqrt_test(name: str, ftz: bool):
    op = "rsqrt.approx.ftz.f32" if ftz else "rsqrt.approx.f32"
    return unary_f32_test(
        name, op,
        FloatRangeDomain(1.0, 4.0, EDGES),
        ApproximateVerifier(reciprocal_sqrt, TOLERANCE, rsqrt_special, ftz=ftz,
                            magnitude_scaled=True),
        f"{op} on [1, 4] and edge values",
    )


def all_tests():
    return [
        _rsqrt_test("rsqrt_approx", ftz=False),
        _rsqrt_test("rsqrt_approx_ftz", ftz=True),
    ]
