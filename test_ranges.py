import unittest

import numpy as np

from conform.ranges import (
    MIN_POSITIVE_SUBNORMAL, NEGATIVE_ONE, STANDARD_EDGES, BitDomain, BitFieldDomain,
    FloatRangeDomain, mix64,
)
from conform.registry import find
from conform.scalars import (
    ScalarKind, convert_int, f32_from_bits, f32_to_bits, flush_to_zero,
    format_scalar, from_bits, same_bits, shift_left, shift_right, to_bits,
)

U16, S16, U32, F32 = ScalarKind.U16, ScalarKind.S16, ScalarKind.U32, ScalarKind.F32


class ScalarKindTests(unittest.TestCase):
    def test_kind_properties(self):
        self.assertEqual(S16.bits, 16)
        self.assertTrue(S16.signed)
        self.assertEqual(U32.mask, 0xFFFFFFFF)
        self.assertEqual(ScalarKind.F16.ptx, ".b16")
        self.assertEqual(ScalarKind.S64.ptx, ".s64")
        self.assertEqual(ScalarKind.U64.ctype, "unsigned long long")
        self.assertEqual(F32.storage_dtype, np.dtype(np.uint32))

    def test_bit_casts_keep_width(self):
        one = from_bits(np.array([0x3F800000], dtype=np.uint32), F32)
        self.assertEqual(float(one[0]), 1.0)
        with self.assertRaises(ValueError):
            from_bits(np.array([1], dtype=np.uint64), F32)
        self.assertEqual(f32_to_bits(-0.0), 0x80000000)
        self.assertEqual(f32_from_bits(0x40490FDB), np.float32(3.14159274))

    def test_shift_rules(self):
        values = np.array([0x1234, 0x1234, 0x1234], dtype=np.uint16)
        amounts = np.array([16, 17, 0], dtype=np.uint16)
        self.assertEqual(shift_left(U16, values, amounts).tolist(), [0, 0, 0x1234])

        signed = np.array([-1, 0x7FFF, -2], dtype=np.int16)
        amounts = np.array([20, 20, 1], dtype=np.uint16)
        self.assertEqual(shift_right(S16, signed, amounts).tolist(), [-1, 0, -1])
        unsigned = np.array([0xFFFF, 0x8000], dtype=np.uint16)
        self.assertEqual(shift_right(U16, unsigned, np.array([0xFFFF, 15], dtype=np.uint16)).tolist(), [0, 1])

    def test_convert_int(self):
        self.assertEqual(convert_int(S16, U32, np.array([-1], dtype=np.int16)).tolist(), [0xFFFFFFFF])
        self.assertEqual(convert_int(U16, ScalarKind.S32, np.array([0xFFFF], dtype=np.uint16)).tolist(), [0xFFFF])
        self.assertEqual(convert_int(U32, S16, np.array([0x12348000], dtype=np.uint32)).tolist(), [-32768])

    def test_flush_keeps_sign(self):
        values = np.array([f32_from_bits(0x80000001), f32_from_bits(0x00000001), 1.5], dtype=np.float32)
        self.assertEqual(to_bits(flush_to_zero(values)).tolist(), [0x80000000, 0, 0x3FC00000])

    def test_same_bits_nan(self):
        nans = from_bits(np.array([0x7FC00000, 0x7FFFFFFF], dtype=np.uint32), F32)
        self.assertTrue(same_bits(nans[:1], nans[1:], F32).all())
        zeros = np.array([0.0], dtype=np.float32)
        negative_zeros = np.array([-0.0], dtype=np.float32)
        self.assertFalse(same_bits(zeros, negative_zeros, F32).any())

    def test_format_scalar(self):
        self.assertEqual(format_scalar(F32, np.float32(1.0)), "1.0 (0x3f800000)")
        self.assertEqual(format_scalar(S16, np.int16(-1)), "-1")
        self.assertEqual(format_scalar(ScalarKind.F16, np.float16(1.0)), "1.0 (0x3c00)")


class BitDomainTests(unittest.TestCase):
    def test_default_sizes(self):
        self.assertEqual(BitDomain([U16]).size, 1 << 16)
        self.assertEqual(BitDomain([U16, U16]).size, 1 << 32)
        self.assertEqual(BitDomain([F32]).size, 1 << 32)
        self.assertEqual(BitDomain([ScalarKind.U64]).size, 1 << 32)

    def test_lanes_come_from_low_bits(self):
        value, amount = BitDomain([S16, U16]).value(0x0002FFFF)
        self.assertEqual(int(value), -1)
        self.assertEqual(int(amount), 2)

    def test_float_lane_is_reinterpreted(self):
        (x,) = BitDomain([F32]).value(0xBF800000)
        self.assertEqual(float(x), -1.0)

    def test_generation_is_deterministic(self):
        domain = BitDomain([U16, U16])
        indices = np.arange(1000, 2000, dtype=np.uint64)
        first = domain.generate(indices)
        second = domain.generate(indices)
        for a, b in zip(first, second):
            np.testing.assert_array_equal(a, b)

    def test_out_of_range(self):
        with self.assertRaises(IndexError):
            BitDomain([U16]).value(1 << 16)
        with self.assertRaises(ValueError):
            BitDomain([U16], size=1 << 17)


class FloatRangeDomainTests(unittest.TestCase):
    def setUp(self):
        self.domain = FloatRangeDomain(1.0, 2.0)

    def test_layout(self):
        self.assertEqual(self.domain.threshold, 0x800001)
        self.assertEqual(self.domain.size, 0x800001 + len(STANDARD_EDGES))
        self.assertEqual(float(self.domain.value(0)[0]), 1.0)
        self.assertEqual(float(self.domain.value(self.domain.threshold - 1)[0]), 2.0)

    def test_continuous_part_is_ascending(self):
        (x,) = self.domain.generate(np.arange(0, 4096, dtype=np.uint64))
        self.assertTrue((np.diff(to_bits(x).astype(np.int64)) == 1).all())

    def test_edges_follow_threshold(self):
        t = self.domain.threshold
        (edges,) = self.domain.generate(np.arange(t, self.domain.size, dtype=np.uint64))
        self.assertEqual(to_bits(edges).tolist(), [e.bits for e in STANDARD_EDGES])
        self.assertEqual(self.domain.edge_name(t), "negative infinity")
        self.assertEqual(self.domain.edge_name(self.domain.size - 1), "NaN")
        self.assertEqual(self.domain.edge_name(0), "")

    def test_mixed_batch(self):
        t = self.domain.threshold
        (x,) = self.domain.generate(np.array([t - 1, t, t + 2], dtype=np.uint64))
        self.assertEqual(to_bits(x).tolist(), [0x40000000, 0xFF800000, 0x80000000])

    def test_rejects_bad_range(self):
        with self.assertRaises(ValueError):
            FloatRangeDomain(2.0, 1.0)
        with self.assertRaises(ValueError):
            FloatRangeDomain(-1.0, 1.0)

    def test_rsqrt_edge_tables_keep_every_named_edge(self):
        for name in ("rsqrt_approx", "rsqrt_approx_ftz"):
            with self.subTest(test=name):
                edges = find(name).domain.edges
                for edge in STANDARD_EDGES:
                    self.assertIn(edge, edges)
                self.assertIn(MIN_POSITIVE_SUBNORMAL, edges)
                self.assertIn(NEGATIVE_ONE, edges)


class BitFieldDomainTests(unittest.TestCase):
    def test_pos_and_len_cover_low_index_bits(self):
        domain = BitFieldDomain(U32, operands=2)
        a, b, pos, length = domain.value(0x0305)
        self.assertEqual((int(pos), int(length)), (5, 3))
        self.assertEqual(domain.kinds, (U32, U32, U32, U32))
        self.assertNotEqual(int(a), int(b))

    def test_values_depend_only_on_seed(self):
        domain = BitFieldDomain(ScalarKind.S64)
        first = domain.value(0x0001_0000)[0]
        same_seed = domain.value(0x0001_FFFF)[0]
        self.assertEqual(int(first), int(same_seed))
        self.assertEqual(int(first), int(BitFieldDomain(ScalarKind.S64).value(0x0001_0000)[0]))

    def test_mix64_is_deterministic_and_salted(self):
        seeds = np.arange(16, dtype=np.uint64)
        np.testing.assert_array_equal(mix64(seeds), mix64(seeds))
        self.assertFalse((mix64(seeds, 0) == mix64(seeds, 1)).any())
        self.assertEqual(len(set(mix64(seeds).tolist())), 16)

    def test_must_cover_every_pair(self):
        with self.assertRaises(ValueError):
            BitFieldDomain(U32, size=1 << 12)


if __name__ == "__main__":
    unittest.main()
