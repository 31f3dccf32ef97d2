"""Sine: sin.approx.f32 and sin.approx.ftz.f32 on [0, pi/2]."""

import math

import numpy as np

from conform.ranges import FloatRangeDomain
from conform.testcases.common import unary_f32_test
from conform.verifier import F32_NAN, ApproximateVerifier, signed, zero_like

TOLERANCE = 2.0 ** -20.9
HALF_PI = float(np.float32(math.pi / 2))


def sin_special(x):
    zero = zero_like(x)
    non_finite = ~np.isfinite(x)
    expected = np.where(zero, signed(0.0, x), F32_NAN).astype(np.float32)
    return zero | non_finite, expected


def _sin_test(name: str, ftz: bool):
    op = "sin.approx.ftz.f32" if ftz else "sin.approx.f32"
    return unary_f32_test(
        name, op,
        FloatRangeDomain(0.0, HALF_PI),
        ApproximateVerifier(np.sin, TOLERANCE, sin_special, ftz=ftz),
        f"{op} on [0, pi/2] and edge values",
    )


def all_tests():
    return [
        _sin_test("sin_approx", ftz=False),
        _sin_test("sin_approx_ftz", ftz=True),
    ]
