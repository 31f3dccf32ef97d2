"""16-bit min/max over every operand pair."""

import numpy as np

from conform.ranges import BitDomain
from conform.registry import TestDefinition, inputs_of, output_of
from conform.scalars import ScalarKind
from conform.verifier import ExactVerifier

PTX_BODY = """\
.reg {kind} %a;
.reg {kind} %b;
.reg {kind} %result;
<LOAD_ARGS>
ld{kind} %a, [input_a];
ld{kind} %b, [input_b];
{op} %result, %a, %b;
st{kind} [output], %result;
"""

OPERATIONS = {
    "min": np.minimum,
    "max": np.maximum,
}


def _minmax_test(op: str, kind: ScalarKind) -> TestDefinition:
    instruction = f"{op}.{kind.label}"
    return TestDefinition(
        name=f"{op}_{kind.label}",
        body=PTX_BODY.format(kind=kind.ptx, op=instruction),
        inputs=inputs_of(("input_a", kind), ("input_b", kind)),
        output=output_of(kind),
        domain=BitDomain([kind, kind]),
        verifier=ExactVerifier(OPERATIONS[op], kind, [kind, kind]),
        description=f"{instruction} over every operand pair",
    )


def all_tests():
    return [
        _minmax_test(op, kind)
        for op in ("min", "max")
        for kind in (ScalarKind.U16, ScalarKind.S16)
    ]
