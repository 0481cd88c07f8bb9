"""
Notebook-style echo for step code.

A script run with ``python -`` prints nothing for a trailing bare
expression the way an interactive cell would. When enabled, the last
top-level expression of a step is wrapped in ``print()`` before the step
enters the session script.
"""

from __future__ import annotations

import ast


def _should_echo(node: ast.stmt) -> bool:
    if not isinstance(node, ast.Expr):
        return False
    value = node.value
    # Calls are usually made for side effects (plt.show(), df.info())
    if isinstance(value, (ast.Call, ast.Await, ast.Yield, ast.YieldFrom)):
        return False
    if isinstance(value, ast.Constant) and isinstance(value.value, str):
        return False  # docstring or comment-like literal
    return True


def echo_last_expression(code: str) -> str:
    """Return ``code`` with its final bare expression printed, if it has one."""
    try:
        tree = ast.parse(code)
    except SyntaxError:
        return code  # let the interpreter report it
    if not tree.body or not _should_echo(tree.body[-1]):
        return code

    last = tree.body[-1]
    segment = ast.get_source_segment(code, last)
    if segment is None or last.end_lineno is None:
        return code

    lines = code.splitlines()
    first, end = last.lineno - 1, last.end_lineno
    # Only rewrite when the expression owns its lines outright
    if lines[first][:last.col_offset].strip() or lines[end - 1][last.end_col_offset:].strip():
        return code

    return "\n".join(lines[:first] + [f"print({segment})"] + lines[end:])
