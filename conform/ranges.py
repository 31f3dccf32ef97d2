#!/usr/bin/env python3
"""
Enumeration domains: pure, total maps from a scan index to typed inputs.

A domain knows its size and turns an ascending block of indices into one
numpy array per test input. Nothing here depends on the verifier or on
program generation, so a sampling strategy could replace exhaustive scans
by supplying a different index sequence.
"""

from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from conform.scalars import ScalarKind, f32_to_bits, from_bits, narrow_bits


FULL_32BIT = 1 << 32


@dataclass(frozen=True)
class EdgeValue:
    """A named f32 bit pattern included in every float-range domain."""
    name: str
    bits: int


NEGATIVE_INFINITY = EdgeValue("negative infinity", 0xFF800000)
MIN_NEGATIVE_SUBNORMAL = EdgeValue("minimal negative subnormal", 0x80000001)
NEGATIVE_ZERO = EdgeValue("negative zero", 0x80000000)
POSITIVE_ZERO = EdgeValue("positive zero", 0x00000000)
MIN_POSITIVE_SUBNORMAL = EdgeValue("minimal positive subnormal", 0x00000001)
POSITIVE_INFINITY = EdgeValue("positive infinity", 0x7F800000)
QUIET_NAN = EdgeValue("NaN", 0x7FC00000)
NEGATIVE_ONE = EdgeValue("negative one", 0xBF800000)

STANDARD_EDGES: Tuple[EdgeValue, ...] = (
    NEGATIVE_INFINITY,
    MIN_NEGATIVE_SUBNORMAL,
    NEGATIVE_ZERO,
    POSITIVE_ZERO,
    MIN_POSITIVE_SUBNORMAL,
    POSITIVE_INFINITY,
    QUIET_NAN,
)


class Domain:
    """Base class. Subclasses set `size` and `kinds` and implement generate()."""

    size: int
    kinds: Tuple[ScalarKind, ...]

    def generate(self, indices: np.ndarray) -> Tuple[np.ndarray, ...]:
        raise NotImplementedError

    def value(self, index: int) -> tuple:
        """Inputs for a single index, one numpy scalar per argument."""
        if not 0 <= index < self.size:
            raise IndexError(f"index {index} outside domain of size {self.size}")
        arrays = self.generate(np.array([index], dtype=np.uint64))
        return tuple(a[0] for a in arrays)

    def _check(self, indices: np.ndarray) -> np.ndarray:
        indices = np.asarray(indices, dtype=np.uint64)
        if indices.size and int(indices.max()) >= self.size:
            raise IndexError(f"index outside domain of size {self.size}")
        return indices


class BitDomain(Domain):
    """
    Bit reinterpretation of the index.

    The index is split into lanes from the low bits upwards, one lane per
    input kind: a (u16, u16) domain takes the value from bits 0-15 and the
    second operand from bits 16-31.
    """

    def __init__(self, kinds: Sequence[ScalarKind], size: int = None):
        self.kinds = tuple(kinds)
        total_bits = sum(k.bits for k in self.kinds)
        limit = 1 << min(total_bits, 64)
        self.size = min(FULL_32BIT, limit) if size is None else size
        if not 0 < self.size <= limit:
            raise ValueError(f"domain size {self.size} exceeds {total_bits} input bits")

    def generate(self, indices):
        indices = self._check(indices)
        lanes = []
        shift = 0
        for kind in self.kinds:
            lane = indices >> np.uint64(shift) if shift < 64 else np.zeros_like(indices)
            lanes.append(narrow_bits(kind, lane))
            shift += kind.bits
        return tuple(lanes)


class FloatRangeDomain(Domain):
    """
    Every f32 between `start` and `stop` (inclusive, both non-negative),
    followed by a fixed table of edge values.

    Indices below the threshold are bit patterns counted up from `start`;
    indices at or beyond it are looked up in the table.
    """

    def __init__(self, start: float, stop: float,
                 edges: Sequence[EdgeValue] = STANDARD_EDGES):
        self.kinds = (ScalarKind.F32,)
        self.first = f32_to_bits(start)
        last = f32_to_bits(stop)
        if self.first & 0x80000000 or last & 0x80000000 or last < self.first:
            raise ValueError(f"invalid float range [{start}, {stop}]")
        self.threshold = last - self.first + 1
        self.edges = tuple(edges)
        self._edge_bits = np.array([e.bits for e in self.edges], dtype=np.uint32)
        self.size = self.threshold + len(self.edges)

    def edge_name(self, index: int) -> str:
        if index < self.threshold:
            return ""
        return self.edges[index - self.threshold].name

    def generate(self, indices):
        indices = self._check(indices)
        continuous = indices < np.uint64(self.threshold)
        bits = (indices + np.uint64(self.first)).astype(np.uint32)
        if self.edges:
            offsets = np.where(continuous, np.uint64(0), indices - np.uint64(self.threshold))
            bits = np.where(continuous, bits, self._edge_bits[offsets.astype(np.intp)])
        return (from_bits(bits.astype(np.uint32), ScalarKind.F32),)


# splitmix64 finaliser constants
_GOLDEN = 0x9E3779B97F4A7C15
_MIX1 = np.uint64(0xBF58476D1CE4E5B9)
_MIX2 = np.uint64(0x94D049BB133111EB)


def mix64(seeds: np.ndarray, salt: int = 0) -> np.ndarray:
    """Deterministic 64-bit scramble of each seed (splitmix64 finaliser)."""
    offset = np.uint64((_GOLDEN * (salt + 1)) & 0xFFFFFFFFFFFFFFFF)
    z = np.asarray(seeds, dtype=np.uint64) + offset
    z = (z ^ (z >> np.uint64(30))) * _MIX1
    z = (z ^ (z >> np.uint64(27))) * _MIX2
    return z ^ (z >> np.uint64(31))


class BitFieldDomain(Domain):
    """
    Semi-exhaustive domain for bit-field instructions.

    Bits 0-7 of the index give the position, bits 8-15 the length, so every
    (pos, len) pair the hardware distinguishes is covered. The remaining
    index bits seed `operands` scrambled values of `kind`. Yields
    (*values, pos, len) with pos and len as u32.
    """

    def __init__(self, kind: ScalarKind, operands: int = 1, size: int = 1 << 24):
        self.kind = kind
        self.operands = operands
        self.kinds = (kind,) * operands + (ScalarKind.U32, ScalarKind.U32)
        if size < 1 << 16:
            raise ValueError("bit-field domain must cover all (pos, len) pairs")
        self.size = size

    def generate(self, indices):
        indices = self._check(indices)
        pos = (indices & np.uint64(0xFF)).astype(np.uint32)
        length = ((indices >> np.uint64(8)) & np.uint64(0xFF)).astype(np.uint32)
        seeds = indices >> np.uint64(16)
        values = tuple(
            narrow_bits(self.kind, mix64(seeds, salt)) for salt in range(self.operands)
        )
        return values + (pos, length)
