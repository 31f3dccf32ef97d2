"""16-bit shifts: shl.b16, shr.u16, shr.s16."""

from conform.ranges import BitDomain
from conform.registry import TestDefinition, inputs_of, output_of
from conform.scalars import ScalarKind, shift_left, shift_right
from conform.verifier import ExactVerifier

# The shift amount is carried as u16 and widened to the .u32 operand the
# instruction expects.
PTX_BODY = """\
.reg {kind} %value;
.reg .u16 %amount16;
.reg .u32 %amount;
.reg {kind} %result;
<LOAD_ARGS>
ld{kind} %value, [input_a];
ld.u16 %amount16, [input_b];
cvt.u32.u16 %amount, %amount16;
{op} %result, %value, %amount;
st{kind} [output], %result;
"""


def _shift_test(name: str, op: str, kind: ScalarKind, rule) -> TestDefinition:
    inputs = inputs_of(("input_a", kind), ("input_b", ScalarKind.U16))

    def reference(values, amounts):
        return rule(kind, values, amounts)

    return TestDefinition(
        name=name,
        body=PTX_BODY.format(kind=kind.ptx, op=op),
        inputs=inputs,
        output=output_of(kind),
        domain=BitDomain([kind, ScalarKind.U16]),
        verifier=ExactVerifier(reference, kind, [kind, ScalarKind.U16]),
        description=f"{op} over every (value, shift) pair",
    )


def all_tests():
    return [
        _shift_test("shl_b16", "shl.b16", ScalarKind.U16, shift_left),
        _shift_test("shr_u16", "shr.u16", ScalarKind.U16, shift_right),
        _shift_test("shr_s16", "shr.s16", ScalarKind.S16, shift_right),
    ]
