#!/usr/bin/env python3
"""
Program generator for opcode tests.

A test body is a PTX fragment with two conventions:

  <LOAD_ARGS>   where the argument addresses become available
  [name]        memory operand holding this thread's element of argument
                `name` (inputs in declared order, then the output)

The same body is rendered two ways:

  Direct    a complete PTX module handed straight to the driver JIT. Every
            argument is a .u64 parameter; <LOAD_ARGS> loads it and offsets
            it by the global thread index.
  Compiled  a CUDA C++ kernel compiled by NVRTC. The kernel offsets typed
            pointers in C and passes them to one inline asm statement; the
            body's own '%' characters are doubled and [name] references
            become positional operands.

Running one body through both front-ends separates driver JIT divergence
from compiler front-end divergence.

References:
  PTX ISA, "Parameterized Variable Names" and "Inline PTX Assembly in CUDA":
    https://docs.nvidia.com/cuda/parallel-thread-execution/
    https://docs.nvidia.com/cuda/inline-ptx-assembly/
"""

import re
from enum import Enum, auto
from typing import Sequence

LOAD_ARGS = "<LOAD_ARGS>"
ENTRY_POINT = "run"

DEFAULT_HEADER = """\
.version 7.0
.target sm_52
.address_size 64"""

_ARG_REF = re.compile(r"\[\s*([A-Za-z_][A-Za-z0-9_]*)\s*\]")


class Convention(Enum):
    DIRECT = auto()      # PTX text for the driver loader
    COMPILED = auto()    # CUDA C++ with inline asm for NVRTC


# ---------------------------------------------------------------------------
# Direct convention
# ---------------------------------------------------------------------------

PTX_TEMPLATE = """\
{header}

.visible .entry {entry}(
{params}
)
{{
{body}
    ret;
}}
"""

# Global thread index shared by all argument address computations.
_THREAD_INDEX = """\
.reg .u32 %ld_tid;
.reg .u32 %ld_ntid;
.reg .u32 %ld_ctaid;
.reg .u32 %ld_idx;
mov.u32 %ld_tid, %tid.x;
mov.u32 %ld_ntid, %ntid.x;
mov.u32 %ld_ctaid, %ctaid.x;
mad.lo.u32 %ld_idx, %ld_ctaid, %ld_ntid, %ld_tid;"""


def _indent(text: str, prefix: str = "    ") -> str:
    return "\n".join(f"{prefix}{line}" if line.strip() else "" for line in text.strip("\n").split("\n"))


def _direct_loads(args) -> str:
    lines = [_THREAD_INDEX]
    for arg in args:
        lines.append(f".reg .u64 {arg.name};")
        lines.append(f"ld.param.u64 {arg.name}, [{arg.name}_param];")
        lines.append(f"mad.wide.u32 {arg.name}, %ld_idx, {arg.kind.nbytes}, {arg.name};")
    return "\n".join(lines)


def build_ptx_program(body: str, args: Sequence, header: str = DEFAULT_HEADER) -> str:
    """Render a test body as a complete PTX module (Direct convention)."""
    _check_body(body, args)
    params = ",\n".join(f"    .param .u64 {arg.name}_param" for arg in args)
    rendered = body.replace(LOAD_ARGS, _direct_loads(args))
    return PTX_TEMPLATE.format(
        header=header.strip(),
        entry=ENTRY_POINT,
        params=params,
        body=_indent(rendered),
    )


# ---------------------------------------------------------------------------
# Compiled convention
# ---------------------------------------------------------------------------

CUDA_TEMPLATE = """\
extern "C" __global__ void {entry}({params})
{{
    const unsigned long long idx = (unsigned long long)blockIdx.x * blockDim.x + threadIdx.x;
{offsets}
    asm volatile(
{asm_lines}
        :
        : {operands}
        : "memory");
}}
"""


def _c_string(line: str) -> str:
    escaped = line.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}\\n\\t"'


def escape_percent(body: str) -> str:
    """Double every '%' so inline asm does not read it as an operand."""
    return body.replace("%", "%%")


def bind_operands(body: str, args: Sequence) -> str:
    """Rewrite [name] references to the positional operand of that argument."""
    positions = {arg.name: i for i, arg in enumerate(args)}

    def _sub(match):
        name = match.group(1)
        if name not in positions:
            return match.group(0)
        return f"[%{positions[name]}]"

    return _ARG_REF.sub(_sub, body)


def _compiled_loads(args) -> str:
    lines = []
    for i, arg in enumerate(args):
        lines.append(f".reg .u64 {arg.name};")
        lines.append(f"mov.u64 {arg.name}, %{i};")
    return "\n".join(lines)


def build_cuda_program(body: str, args: Sequence) -> str:
    """Render a test body as an NVRTC-compilable kernel (Compiled convention)."""
    _check_body(body, args)
    asm_body = bind_operands(escape_percent(body), args)
    asm_body = asm_body.replace(LOAD_ARGS, _compiled_loads(args))

    lines = ["{"] + ["    " + l for l in asm_body.strip("\n").split("\n") if l.strip()] + ["}"]
    return CUDA_TEMPLATE.format(
        entry=ENTRY_POINT,
        params=", ".join(f"{arg.kind.ctype}* {arg.name}" for arg in args),
        offsets="\n".join(f"    {arg.name} += idx;" for arg in args),
        asm_lines="\n".join(f"        {_c_string(l)}" for l in lines),
        operands=", ".join(f'"l"({arg.name})' for arg in args),
    )


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def _check_body(body: str, args: Sequence):
    if body.count(LOAD_ARGS) != 1:
        raise ValueError(f"test body must contain {LOAD_ARGS} exactly once")
    names = [arg.name for arg in args]
    if len(set(names)) != len(names):
        raise ValueError(f"duplicate argument names: {names}")


def generate(test, convention: Convention) -> str:
    """Complete program source for `test` in the given convention."""
    if convention is Convention.DIRECT:
        return build_ptx_program(test.body, test.arguments, test.header)
    return build_cuda_program(test.body, test.arguments)
