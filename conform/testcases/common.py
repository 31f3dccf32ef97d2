"""Pieces shared by the single-operand f32 tests."""

from conform.registry import TestDefinition, inputs_of, output_of
from conform.scalars import ScalarKind

UNARY_F32_BODY = """\
.reg .f32 %x;
.reg .f32 %r;
<LOAD_ARGS>
ld.f32 %x, [input_a];
{op} %r, %x;
st.f32 [output], %r;
"""


def unary_f32_test(name: str, op: str, domain, verifier, description: str = "") -> TestDefinition:
    return TestDefinition(
        name=name,
        body=UNARY_F32_BODY.format(op=op),
        inputs=inputs_of(("input_a", ScalarKind.F32)),
        output=output_of(ScalarKind.F32),
        domain=domain,
        verifier=verifier,
        description=description or op,
    )
