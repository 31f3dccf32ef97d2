import re
import unittest

from conform.ptx_gen import (
    LOAD_ARGS, Convention, bind_operands, build_cuda_program, build_ptx_program,
    escape_percent, generate,
)
from conform.registry import Argument, all_tests, find
from conform.scalars import ScalarKind

ARGS = (
    Argument("input_a", ScalarKind.U16),
    Argument("input_b", ScalarKind.U16),
    Argument("output", ScalarKind.U16),
)


class DirectProgramTests(unittest.TestCase):
    def setUp(self):
        self.ptx = generate(find("shl_b16"), Convention.DIRECT)

    def test_module_layout(self):
        self.assertTrue(self.ptx.startswith(".version 7.0\n.target sm_52\n.address_size 64\n"))
        self.assertIn(".visible .entry run(", self.ptx)
        self.assertNotIn(LOAD_ARGS, self.ptx)
        self.assertEqual(self.ptx.count(".param .u64"), 3)

    def test_arguments_are_offset_by_thread_index(self):
        self.assertIn("mad.lo.u32 %ld_idx, %ld_ctaid, %ld_ntid, %ld_tid;", self.ptx)
        for name in ("input_a", "input_b", "output"):
            with self.subTest(arg=name):
                self.assertIn(f"ld.param.u64 {name}, [{name}_param];", self.ptx)
                self.assertIn(f"mad.wide.u32 {name}, %ld_idx, 2, {name};", self.ptx)

    def test_body_is_kept(self):
        self.assertIn("shl.b16 %result, %value, %amount;", self.ptx)
        self.assertIn("st.u16 [output], %result;", self.ptx)

    def test_element_size_follows_kind(self):
        ptx = generate(find("bfe_s64"), Convention.DIRECT)
        self.assertIn("mad.wide.u32 input_a, %ld_idx, 8, input_a;", ptx)
        self.assertIn("mad.wide.u32 input_b, %ld_idx, 4, input_b;", ptx)

    def test_custom_header(self):
        ptx = build_ptx_program(f"{LOAD_ARGS}\n", ARGS, header=".version 8.0\n.target sm_90\n.address_size 64")
        self.assertTrue(ptx.startswith(".version 8.0\n.target sm_90"))


class CompiledProgramTests(unittest.TestCase):
    def setUp(self):
        self.src = generate(find("shl_b16"), Convention.COMPILED)

    def test_signature_and_offsets(self):
        self.assertIn(
            'extern "C" __global__ void run(unsigned short* input_a, '
            'unsigned short* input_b, unsigned short* output)',
            self.src,
        )
        for name in ("input_a", "input_b", "output"):
            self.assertIn(f"    {name} += idx;", self.src)

    def test_asm_operands(self):
        self.assertIn(': "l"(input_a), "l"(input_b), "l"(output)', self.src)
        self.assertIn(': "memory");', self.src)
        self.assertIn("[%0]", self.src)
        self.assertIn("[%2]", self.src)
        self.assertIn("mov.u64 input_a, %0;", self.src)

    def test_registers_are_escaped(self):
        asm_lines = [l.strip() for l in self.src.splitlines() if l.strip().startswith('"')]
        self.assertTrue(asm_lines)
        body = "\n".join(asm_lines)
        self.assertIn("%%value", body)
        self.assertIsNone(re.search(r"(?<!%)%(?!%)[A-Za-z_]", body))

    def test_half_arguments_use_16bit_storage(self):
        src = generate(find("cvt_f32_f16"), Convention.COMPILED)
        self.assertIn("run(unsigned short* input_a, float* output)", src)


class HelperTests(unittest.TestCase):
    def test_escape_percent(self):
        self.assertEqual(escape_percent("mov.u32 %r, %tid.x;"), "mov.u32 %%r, %%tid.x;")

    def test_bind_operands(self):
        self.assertEqual(bind_operands("ld.u16 %a, [input_b];", ARGS), "ld.u16 %a, [%1];")
        self.assertEqual(bind_operands("ld.u16 %a, [ output ];", ARGS), "ld.u16 %a, [%2];")
        self.assertEqual(bind_operands("ld.u16 %a, [other];", ARGS), "ld.u16 %a, [other];")

    def test_body_must_have_one_load_marker(self):
        with self.assertRaises(ValueError):
            build_ptx_program("ret;", ARGS)
        with self.assertRaises(ValueError):
            build_cuda_program(f"{LOAD_ARGS}\n{LOAD_ARGS}", ARGS)

    def test_argument_names_unique(self):
        with self.assertRaises(ValueError):
            build_ptx_program(LOAD_ARGS, ARGS + (Argument("output", ScalarKind.U16),))

    def test_every_registered_test_renders_both_ways(self):
        for test in all_tests():
            for convention in Convention:
                with self.subTest(test=test.name, convention=convention.name):
                    source = generate(test, convention)
                    self.assertNotIn(LOAD_ARGS, source)
                    self.assertIn("run(", source)


if __name__ == "__main__":
    unittest.main()
