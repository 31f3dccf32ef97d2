"""
Base-2 logarithm: lg2.approx.f32 and lg2.approx.ftz.f32 on [1, 2].

Positive subnormals (only reachable without .ftz) have a large negative
logarithm, so they are held to the exactly rounded value instead of the
absolute bound.
"""

import numpy as np

from conform.ranges import NEGATIVE_ONE, STANDARD_EDGES, FloatRangeDomain
from conform.scalars import is_subnormal
from conform.testcases.common import unary_f32_test
from conform.verifier import F32_INF, F32_NAN, ApproximateVerifier

TOLERANCE = 2.0 ** -22.6

EDGES = STANDARD_EDGES + (NEGATIVE_ONE,)


def lg2_special(x):
    negative = x < 0
    zero = x == 0
    inf = np.isposinf(x)
    nan = np.isnan(x)
    tiny = is_subnormal(x) & ~np.signbit(x)
    with np.errstate(all="ignore"):
        exact = np.log2(x.astype(np.float64)).astype(np.float32)
    expected = np.select(
        [negative, zero, inf, nan, tiny],
        [
            np.full_like(x, F32_NAN),
            np.full_like(x, -F32_INF),
            np.full_like(x, F32_INF),
            np.full_like(x, F32_NAN),
            exact,
        ],
        default=np.float32(0),
    )
    return negative | zero | inf | nan | tiny, expected


def _lg2_test(name: str, ftz: bool):
    op = "lg2.approx.ftz.f32" if ftz else "lg2.approx.f32"
    return unary_f32_test(
        name, op,
        FloatRangeDomain(1.0, 2.0, EDGES),
        ApproximateVerifier(np.log2, TOLERANCE, lg2_special, ftz=ftz),
        f"{op} on [1, 2] and edge values",
    )


def all_tests():
    return [
        _lg2_test("lg2_approx", ftz=False),
        _lg2_test("lg2_approx_ftz", ftz=True),
    ]
