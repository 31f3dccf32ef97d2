"""
Square root: sqrt.rn.f32, sqrt.rn.ftz.f32 and sqrt.approx.f32.

IEEE single-precision sqrt is correctly rounded, so numpy's float32 sqrt is
the exact reference for the .rn forms.
"""

import numpy as np

from conform.ranges import BitDomain, FloatRangeDomain
from conform.scalars import ScalarKind
from conform.testcases.common import unary_f32_test
from conform.verifier import F32_INF, F32_NAN, ApproximateVerifier, ExactVerifier

TOLERANCE = 2.0 ** -22


def sqrt_rn(x):
    return np.sqrt(np.asarray(x, dtype=np.float32))


def sqrt_special(x):
    negative = x < 0
    zero = x == 0
    inf = np.isposinf(x)
    nan = np.isnan(x)
    expected = np.select(
        [negative, zero, inf, nan],
        [np.full_like(x, F32_NAN), x, np.full_like(x, F32_INF), np.full_like(x, F32_NAN)],
        default=np.float32(0),
    )
    return negative | zero | inf | nan, expected


def _rn_test(name: str, ftz: bool):
    op = "sqrt.rn.ftz.f32" if ftz else "sqrt.rn.f32"
    return unary_f32_test(
        name, op,
        BitDomain([ScalarKind.F32]),
        ExactVerifier(sqrt_rn, ScalarKind.F32, [ScalarKind.F32], ftz=ftz),
        f"{op} over every f32 pattern",
    )


def all_tests():
    return [
        _rn_test("sqrt_rn", ftz=False),
        _rn_test("sqrt_rn_ftz", ftz=True),
        unary_f32_test(
            "sqrt_approx", "sqrt.approx.f32",
            FloatRangeDomain(1.0, 4.0),
            ApproximateVerifier(np.sqrt, TOLERANCE, sqrt_special),
            "sqrt.approx.f32 on [1, 4] and edge values",
        ),
    ]
