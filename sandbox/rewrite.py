"""
Entry-point rewriting.

``main`` must not take caller-supplied arguments. Declared parameters are
removed and rebound inside the body to the injected context view, so code
written as ``def main(context): context["sql"]`` keeps working while the
function itself is called with no arguments.
"""

from __future__ import annotations

import ast
from dataclasses import dataclass, field
from types import CodeType

ENTRY_POINT = "main"
CONTEXT_BINDING = "__context__"


@dataclass
class RewriteResult:
    code: CodeType
    has_entry_point: bool = False
    removed_params: list[str] = field(default_factory=list)


def _name_store(name: str) -> ast.Name:
    return ast.Name(id=name, ctx=ast.Store())


def _assign(name: str, value: ast.expr) -> ast.Assign:
    return ast.Assign(targets=[_name_store(name)], value=value)


def _is_docstring(stmt: ast.stmt) -> bool:
    return (
        isinstance(stmt, ast.Expr)
        and isinstance(stmt.value, ast.Constant)
        and isinstance(stmt.value.value, str)
    )


class EntryPointRewriter(ast.NodeTransformer):
    def __init__(self, entry_point: str = ENTRY_POINT) -> None:
        self.entry_point = entry_point
        self.found = False
        self.removed: list[str] = []

    def visit_Module(self, node: ast.Module) -> ast.Module:
        # Only top-level definitions are entry points; nested functions stay untouched.
        node.body = [self._rewrite(stmt) for stmt in node.body]
        return node

    def _rewrite(self, stmt: ast.stmt) -> ast.stmt:
        if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)) and stmt.name == self.entry_point:
            self.found = True
            self._strip_arguments(stmt)
        return stmt

    def _strip_arguments(self, func: ast.FunctionDef | ast.AsyncFunctionDef) -> None:
        args = func.args
        prologue: list[ast.stmt] = []
        for arg in [*args.posonlyargs, *args.args, *args.kwonlyargs]:
            prologue.append(_assign(arg.arg, ast.Name(id=CONTEXT_BINDING, ctx=ast.Load())))
            self.removed.append(arg.arg)
        if args.vararg is not None:
            prologue.append(_assign(args.vararg.arg, ast.Tuple(elts=[], ctx=ast.Load())))
            self.removed.append(f"*{args.vararg.arg}")
        if args.kwarg is not None:
            prologue.append(_assign(args.kwarg.arg, ast.Dict(keys=[], values=[])))
            self.removed.append(f"**{args.kwarg.arg}")

        func.args = ast.arguments(
            posonlyargs=[],
            args=[],
            vararg=None,
            kwonlyargs=[],
            kw_defaults=[],
            kwarg=None,
            defaults=[],
        )
        if prologue:
            body = list(func.body)
            # Keep the docstring first.
            docstring: list[ast.stmt] = []
            if body and _is_docstring(body[0]):
                docstring = [body.pop(0)]
            func.body = docstring + prologue + body


def rewrite_entry_point(source: str, filename: str = "<target>", entry_point: str = ENTRY_POINT) -> RewriteResult:
    """Parse ``source``, strip the entry point's parameters and compile it.

    Raises SyntaxError for invalid source.
    """
    tree = ast.parse(source, filename=filename, mode="exec")
    rewriter = EntryPointRewriter(entry_point)
    tree = rewriter.visit(tree)
    ast.fix_missing_locations(tree)
    code = compile(tree, filename, "exec")
    return RewriteResult(code=code, has_entry_point=rewriter.found, removed_params=rewriter.removed)
