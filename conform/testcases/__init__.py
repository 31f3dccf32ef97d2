"""Opcode test definitions, one module per instruction family."""
