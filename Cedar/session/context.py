"""
Notebook context: which names the accumulated script defines.

Populated from the code of successful steps so prompts and write-ups can
refer to the session's variables without re-running anything.
"""

from __future__ import annotations

import ast
from typing import Optional

from pydantic import BaseModel, Field


class VariableInfo(BaseModel):
    name: str
    type_name: str  # best static guess, e.g. "int", "list", "pd.read_csv()"
    defined_in: int  # step index of first definition
    updated_in: int  # step index of latest assignment

    model_config = {"extra": "forbid"}


def _describe(value: Optional[ast.expr]) -> str:
    if value is None:
        return "unknown"
    if isinstance(value, ast.Constant):
        return type(value.value).__name__
    if isinstance(value, (ast.List, ast.ListComp)):
        return "list"
    if isinstance(value, (ast.Dict, ast.DictComp)):
        return "dict"
    if isinstance(value, (ast.Set, ast.SetComp)):
        return "set"
    if isinstance(value, ast.Tuple):
        return "tuple"
    if isinstance(value, ast.Lambda):
        return "function"
    if isinstance(value, ast.Call):
        try:
            return f"{ast.unparse(value.func)}()"
        except (ValueError, AttributeError):
            return "call"
    if isinstance(value, ast.BinOp):
        return "expression"
    return type(value).__name__.lower()


def _targets(node: ast.stmt) -> list[tuple[str, Optional[ast.expr]]]:
    if isinstance(node, ast.Assign):
        pairs = []
        for target in node.targets:
            if isinstance(target, ast.Name):
                pairs.append((target.id, node.value))
            elif isinstance(target, (ast.Tuple, ast.List)):
                pairs.extend((elt.id, None) for elt in target.elts if isinstance(elt, ast.Name))
        return pairs
    if isinstance(node, (ast.AnnAssign, ast.AugAssign)) and isinstance(node.target, ast.Name):
        return [(node.target.id, node.value)]
    if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
        return [(node.name, None)]
    if isinstance(node, ast.ClassDef):
        return [(node.name, None)]
    return []


class NotebookContext(BaseModel):
    """Names bound at module level by the session script."""

    variables: dict[str, VariableInfo] = Field(default_factory=dict)

    model_config = {"extra": "forbid"}

    def update_from_code(self, code: str, step_index: int) -> list[str]:
        """Record top-level bindings made by a step. Returns the names touched."""
        try:
            tree = ast.parse(code)
        except SyntaxError:
            return []

        touched = []
        for node in tree.body:
            for name, value in _targets(node):
                if isinstance(node, ast.ClassDef):
                    type_name = "class"
                elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                    type_name = "function"
                else:
                    type_name = _describe(value)
                existing = self.variables.get(name)
                if existing is None:
                    self.variables[name] = VariableInfo(
                        name=name, type_name=type_name,
                        defined_in=step_index, updated_in=step_index,
                    )
                else:
                    if isinstance(node, ast.AugAssign):
                        type_name = existing.type_name
                    self.variables[name] = existing.model_copy(
                        update={"type_name": type_name, "updated_in": step_index}
                    )
                if name not in touched:
                    touched.append(name)
        return touched

    def summary(self, limit: int = 30) -> str:
        """One line per variable, for prompts."""
        if not self.variables:
            return "(no variables defined yet)"
        lines = [
            f"- {v.name}: {v.type_name} (step {v.updated_in})"
            for v in list(self.variables.values())[:limit]
        ]
        if len(self.variables) > limit:
            lines.append(f"- ... and {len(self.variables) - limit} more")
        return "\n".join(lines)
