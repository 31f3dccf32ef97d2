#!/usr/bin/env python3
"""
Host-side verification of device outputs.

Two policies:

  ExactVerifier        bit-for-bit equality with a host reference (bit
                       manipulation, integer conversion, correctly rounded
                       float ops). NaN matches NaN for float outputs.
  ApproximateVerifier  absolute error bound against a float64 reference for
                       the approximate transcendental opcodes, with a
                       special-value rule taking over for infinities, NaN,
                       zeros and subnormals.

Both work on whole batches (check) and single values (verify). Neither keeps
state between calls.
"""

from dataclasses import dataclass
from typing import Callable, Sequence, Tuple

import numpy as np

from conform.scalars import (
    ScalarKind, flush_to_zero, is_subnormal, same_bits, scalar_array,
)


@dataclass(frozen=True)
class Verdict:
    accepted: bool
    expected: object


class Verifier:
    """Base class: subclasses implement check()."""

    kind: ScalarKind
    input_kinds: Tuple[ScalarKind, ...]

    def check(self, inputs: Sequence[np.ndarray], outputs: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Return (accepted mask, host expected values) for a batch."""
        raise NotImplementedError

    def verify(self, inputs: Sequence, output) -> Verdict:
        """Decide one (input, output) pair."""
        arrays = tuple(scalar_array(k, v) for v, k in zip(inputs, self.input_kinds))
        accepted, expected = self.check(arrays, scalar_array(self.kind, output))
        return Verdict(bool(accepted[0]), expected[0])


class ExactVerifier(Verifier):
    """
    Zero-tolerance comparison with `reference(*inputs)`.

    With `ftz`, f32 inputs are flushed before the reference runs, and both
    the reference result and the device output are flushed before the
    comparison.
    """

    def __init__(self, reference: Callable, kind: ScalarKind,
                 input_kinds: Sequence[ScalarKind], ftz: bool = False):
        self.reference = reference
        self.kind = kind
        self.input_kinds = tuple(input_kinds)
        self.ftz = ftz

    def check(self, inputs, outputs):
        inputs = tuple(np.asarray(x) for x in inputs)
        outputs = np.asarray(outputs, dtype=self.kind.dtype)
        if self.ftz:
            inputs = tuple(
                flush_to_zero(x) if k is ScalarKind.F32 else x
                for x, k in zip(inputs, self.input_kinds)
            )
        with np.errstate(all="ignore"):
            expected = np.asarray(self.reference(*inputs)).astype(self.kind.dtype, copy=False)
        if self.ftz and self.kind is ScalarKind.F32:
            expected = flush_to_zero(expected)
            outputs = flush_to_zero(outputs)
        return same_bits(expected, outputs, self.kind), expected


SpecialRule = Callable[[np.ndarray], Tuple[np.ndarray, np.ndarray]]


class ApproximateVerifier(Verifier):
    """
    f32 -> f32 approximation checked against `precise` (float64 in, float64
    out) within an absolute `tolerance`. With `magnitude_scaled` the bound
    is `tolerance * max(1, |precise|)`, so results larger than one are held
    to a relative bound instead.

    `special(x)` returns (mask, expected) for the inputs whose result is
    prescribed exactly; those bypass the tolerance and must match bit for
    bit (any NaN matches any NaN). With `ftz` the input is flushed before
    dispatch and both outputs are flushed before comparison.
    """

    kind = ScalarKind.F32
    input_kinds = (ScalarKind.F32,)

    def __init__(self, precise: Callable[[np.ndarray], np.ndarray], tolerance: float,
                 special: SpecialRule, ftz: bool = False, magnitude_scaled: bool = False):
        self.precise = precise
        self.tolerance = tolerance
        self.special = special
        self.ftz = ftz
        self.magnitude_scaled = magnitude_scaled

    def check(self, inputs, outputs):
        (x,) = inputs
        x = np.asarray(x, dtype=np.float32)
        out = np.asarray(outputs, dtype=np.float32)
        if self.ftz:
            x = flush_to_zero(x)
            out = flush_to_zero(out)

        special_mask, special_expected = self.special(x)
        with np.errstate(all="ignore"):
            precise = np.asarray(self.precise(x.astype(np.float64)), dtype=np.float64)
            rounded = precise.astype(np.float32)
            if self.ftz:
                flushed = is_subnormal(rounded)
                precise = np.where(flushed, flush_to_zero(rounded).astype(np.float64), precise)
                rounded = flush_to_zero(rounded)
            bound = self.tolerance
            if self.magnitude_scaled:
                bound = self.tolerance * np.maximum(1.0, np.abs(precise))
            within = np.abs(out.astype(np.float64) - precise) <= bound

        special_expected = np.asarray(special_expected, dtype=np.float32)
        if self.ftz:
            special_expected = flush_to_zero(special_expected)
        expected = np.where(special_mask, special_expected, rounded).astype(np.float32)
        exact = same_bits(expected, out, ScalarKind.F32)
        accepted = np.where(special_mask, exact, within)
        return accepted, expected


# ---------------------------------------------------------------------------
# Shared pieces of special-value rules
# ---------------------------------------------------------------------------

F32_NAN = np.float32(np.nan)
F32_INF = np.float32(np.inf)


def zero_like(x: np.ndarray) -> np.ndarray:
    """Zeros of either sign and subnormals."""
    return (x == 0) | is_subnormal(x)


def signed(magnitude, x: np.ndarray) -> np.ndarray:
    """`magnitude` carrying the sign of each element of `x`."""
    return np.copysign(np.float32(magnitude), x).astype(np.float32)
