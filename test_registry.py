import unittest
from dataclasses import replace

import numpy as np

from conform.errors import ArgumentFault
from conform.ranges import BitDomain
from conform.registry import all_tests, find, select, validate
from conform.scalars import ScalarKind

CATALOG = [
    "bfe_s32", "bfe_s64", "bfe_u32", "bfe_u64",
    "bfi_b32", "bfi_b64",
    "brev_b32",
    "cos_approx", "cos_approx_ftz",
    "cvt_f32_f16", "cvt_rn_f16_f32",
    "cvt_s16_s32", "cvt_s32_s16", "cvt_s32_u16",
    "cvt_u16_u32", "cvt_u32_s16", "cvt_u32_u16",
    "lg2_approx", "lg2_approx_ftz",
    "max_s16", "max_u16", "min_s16", "min_u16",
    "rcp_approx", "rcp_approx_ftz", "rcp_rn",
    "rsqrt_approx", "rsqrt_approx_ftz",
    "shl_b16", "shr_s16", "shr_u16",
    "sin_approx", "sin_approx_ftz",
    "sqrt_approx", "sqrt_rn", "sqrt_rn_ftz",
]


def _probe_indices(size: int) -> np.ndarray:
    head = np.arange(min(size, 2048), dtype=np.uint64)
    tail = np.arange(max(size - 64, 0), size, dtype=np.uint64)
    return np.concatenate([head, tail])


class RegistryTests(unittest.TestCase):
    def test_catalog(self):
        self.assertEqual(sorted(CATALOG), sorted(t.name for t in all_tests()))

    def test_names_sorted_and_unique(self):
        names = [t.name for t in all_tests()]
        self.assertEqual(names, sorted(names))
        self.assertEqual(len(names), len(set(names)))

    def test_select(self):
        tests = all_tests()
        self.assertEqual([t.name for t in select(tests, "^sin")], ["sin_approx", "sin_approx_ftz"])
        self.assertEqual(len(select(tests, None)), len(tests))
        self.assertEqual([t.name for t in select(tests, "16_s32")], ["cvt_s16_s32"])
        self.assertEqual(select(tests, "no_such_test"), [])

    def test_select_bad_pattern(self):
        with self.assertRaises(ArgumentFault):
            select(all_tests(), "(")

    def test_find(self):
        self.assertEqual(find("brev_b32").name, "brev_b32")
        with self.assertRaises(KeyError):
            find("nope")

    def test_validate_rejects_mismatched_domain(self):
        broken = replace(find("shl_b16"), domain=BitDomain([ScalarKind.U32]))
        with self.assertRaises(ValueError):
            validate(broken)

    def test_reference_output_is_accepted(self):
        # Feeding each verifier its own expected values must pass everywhere,
        # including the edge-value tail of every domain.
        for test in all_tests():
            with self.subTest(test=test.name):
                inputs = test.domain.generate(_probe_indices(test.domain.size))
                blank = np.zeros(len(inputs[0]), dtype=test.output.kind.dtype)
                _, expected = test.verifier.check(inputs, blank)
                accepted, _ = test.verifier.check(inputs, expected)
                self.assertTrue(accepted.all())


if __name__ == "__main__":
    unittest.main()
