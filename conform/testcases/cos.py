"""Cosine: cos.approx.f32 and cos.approx.ftz.f32 on [0, pi/2]."""

import numpy as np

from conform.ranges import FloatRangeDomain
from conform.testcases.common import unary_f32_test
from conform.testcases.sin import HALF_PI, TOLERANCE
from conform.verifier import F32_NAN, ApproximateVerifier, zero_like


def cos_special(x):
    zero = zero_like(x)
    non_finite = ~np.isfinite(x)
    expected = np.where(zero, np.float32(1.0), F32_NAN).astype(np.float32)
    return zero | non_finite, expected


def _cos_test(name: str, ftz: bool):
    op = "cos.approx.ftz.f32" if ftz else "cos.approx.f32"
    return unary_f32_test(
        name, op,
        FloatRangeDomain(0.0, HALF_PI),
        ApproximateVerifier(np.cos, TOLERANCE, cos_special, ftz=ftz),
        f"{op} on [0, pi/2] and edge values",
    )


def all_tests():
    return [
        _cos_test("cos_approx", ftz=False),
        _cos_test("cos_approx_ftz", ftz=True),
    ]
