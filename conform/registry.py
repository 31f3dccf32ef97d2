#!/usr/bin/env python3
"""
Test registry: the static catalog of opcode tests.

Each test module under conform.testcases exposes all_tests(); the registry
collects them once, checks names are unique and returns them in ascending
name order so run logs are reproducible and diffable.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from conform.errors import ArgumentFault
from conform.ptx_gen import DEFAULT_HEADER
from conform.scalars import ScalarKind


@dataclass(frozen=True)
class Argument:
    """One buffer of the generated program."""
    name: str
    kind: ScalarKind


@dataclass(frozen=True)
class TestDefinition:
    """Immutable description of one opcode test."""
    name: str
    body: str
    inputs: Tuple[Argument, ...]
    output: Argument
    domain: object
    verifier: object
    header: str = DEFAULT_HEADER
    description: str = ""

    __test__ = False  # not a pytest test class

    @property
    def arguments(self) -> Tuple[Argument, ...]:
        """Binding order of the generated program: inputs, then the output."""
        return self.inputs + (self.output,)


def inputs_of(*specs) -> Tuple[Argument, ...]:
    """inputs_of(("input_a", ScalarKind.U16), ...) -> tuple of Arguments."""
    return tuple(Argument(name, kind) for name, kind in specs)


OUTPUT_NAME = "output"


def output_of(kind: ScalarKind) -> Argument:
    return Argument(OUTPUT_NAME, kind)


def _collect() -> List[TestDefinition]:
    from conform.testcases import (
        bfe, bfi, brev, cos, cvt, lg2, minmax, rcp, rsqrt, shift, sin, sqrt,
    )

    tests = []
    for module in (bfe, bfi, brev, cvt, rcp, shift, minmax, sqrt, rsqrt, sin, cos, lg2):
        tests.extend(module.all_tests())
    return tests


def validate(test: TestDefinition):
    """Check the pieces of a definition agree with each other."""
    kinds = tuple(arg.kind for arg in test.inputs)
    if tuple(test.domain.kinds) != kinds:
        raise ValueError(f"{test.name}: domain yields {test.domain.kinds}, inputs are {kinds}")
    if test.verifier.kind is not test.output.kind:
        raise ValueError(f"{test.name}: verifier checks {test.verifier.kind}, output is {test.output.kind}")
    if tuple(test.verifier.input_kinds) != kinds:
        raise ValueError(f"{test.name}: verifier inputs do not match test inputs")


_REGISTRY: Optional[List[TestDefinition]] = None


def all_tests() -> List[TestDefinition]:
    """Every registered test, sorted by name."""
    global _REGISTRY
    if _REGISTRY is None:
        tests = _collect()
        names = [t.name for t in tests]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate test names: {', '.join(duplicates)}")
        for t in tests:
            validate(t)
        _REGISTRY = sorted(tests, key=lambda t: t.name)
    return list(_REGISTRY)


def select(tests: List[TestDefinition], pattern: Optional[str]) -> List[TestDefinition]:
    """Tests whose name matches `pattern` anywhere (re.search)."""
    if pattern is None:
        return list(tests)
    try:
        regex = re.compile(pattern)
    except re.error as e:
        raise ArgumentFault(f"invalid --filter expression {pattern!r}: {e}")
    return [t for t in tests if regex.search(t.name)]


def find(name: str) -> TestDefinition:
    for t in all_tests():
        if t.name == name:
            return t
    raise KeyError(name)
