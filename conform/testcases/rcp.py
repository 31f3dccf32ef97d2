"""
Reciprocal: rcp.approx.f32 (with and without .ftz) and rcp.rn.f32.

The approximate forms are checked on [1, 2] plus the edge table; rcp.rn is
correctly rounded and is compared bit for bit over every f32 pattern.
"""

import numpy as np

from conform.ranges import BitDomain, FloatRangeDomain
from conform.scalars import ScalarKind
from conform.testcases.common import unary_f32_test
from conform.verifier import (
    F32_INF, F32_NAN, ApproximateVerifier, ExactVerifier, signed, zero_like,
)

TOLERANCE = 2.0 ** -23


def reciprocal(x):
    return 1.0 / x


def rcp_special(x):
    zero = zero_like(x)
    inf = np.isinf(x)
    nan = np.isnan(x)
    expected = np.select(
        [zero, inf, nan],
        [signed(F32_INF, x), signed(0.0, x), np.full_like(x, F32_NAN)],
        default=np.float32(0),
    )
    return zero | inf | nan, expected


def rcp_rn(x):
    return np.float32(1.0) / np.asarray(x, dtype=np.float32)


def _approx_test(name: str, ftz: bool):
    op = "rcp.approx.ftz.f32" if ftz else "rcp.approx.f32"
    return unary_f32_test(
        name, op,
        FloatRangeDomain(1.0, 2.0),
        ApproximateVerifier(reciprocal, TOLERANCE, rcp_special, ftz=ftz),
        f"{op} on [1, 2] and edge values",
    )


def all_tests():
    return [
        _approx_test("rcp_approx", ftz=False),
        _approx_test("rcp_approx_ftz", ftz=True),
        unary_f32_test(
            "rcp_rn", "rcp.rn.f32",
            BitDomain([ScalarKind.F32]),
            ExactVerifier(rcp_rn, ScalarKind.F32, [ScalarKind.F32]),
            "rcp.rn.f32 over every f32 pattern",
        ),
    ]
