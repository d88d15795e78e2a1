"""
Restricted evaluator for hook and constraint sources.

Model specifications carry small pieces of Python which derive values
(``onCreateExpression``), gate acceptance (``constraintExpression``) or
rewrite whole documents (``_onUpdateExecution``). They are evaluated against
a fixed scope of variables and a whitelist of pure builtins; the syntax tree
is checked before compilation so imports, definitions, dunder names and
private attributes never reach the interpreter.

Two flavours exist:

- expressions are a single Python expression whose value is the result:

      evaluator.evaluate("len(newValue) > 2", {"newValue": "abc"})

- executions are a statement block whose ``return`` value is the result:

      evaluator.evaluate(
          "if newValue is None:\\n    return 0\\nreturn newValue + 1",
          {"newValue": 1},
          is_expression=False,
      )
"""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, Mapping

from modelguard.errors import CompilationError, RuntimeEvaluationError

logger = logging.getLogger(__name__)

HOOK_FUNCTION_NAME = "__modelguard_hook__"

SAFE_BUILTINS: Dict[str, Any] = {
    "abs": abs,
    "all": all,
    "any": any,
    "bool": bool,
    "dict": dict,
    "divmod": divmod,
    "enumerate": enumerate,
    "filter": filter,
    "float": float,
    "int": int,
    "isinstance": isinstance,
    "len": len,
    "list": list,
    "map": map,
    "max": max,
    "min": min,
    "range": range,
    "repr": repr,
    "reversed": reversed,
    "round": round,
    "set": set,
    "sorted": sorted,
    "str": str,
    "sum": sum,
    "tuple": tuple,
    "zip": zip,
    "Exception": Exception,
    "KeyError": KeyError,
    "TypeError": TypeError,
    "ValueError": ValueError,
}

_FORBIDDEN_NODES = (
    ast.AsyncFor,
    ast.AsyncFunctionDef,
    ast.AsyncWith,
    ast.Await,
    ast.ClassDef,
    ast.FunctionDef,
    ast.Global,
    ast.Import,
    ast.ImportFrom,
    ast.Nonlocal,
    ast.With,
    ast.Yield,
    ast.YieldFrom,
)

# Introspection attributes which lead back to frames, code or globals.
_FORBIDDEN_ATTRIBUTES = frozenset({
    "ag_frame",
    "cr_frame",
    "f_back",
    "f_builtins",
    "f_code",
    "f_globals",
    "f_locals",
    "format",
    "format_map",
    "gi_code",
    "gi_frame",
    "mro",
    "tb_frame",
    "tb_next",
})


@dataclass
class EvaluationResult:
    """Outcome of one evaluation together with what produced it."""
    code: str
    result: Any = None
    scope: Dict[str, Any] = field(default_factory=dict)


def _check_tree(tree: ast.AST, code: str) -> None:
    """Reject constructs which could escape the given scope."""
    for node in ast.walk(tree):
        if isinstance(node, _FORBIDDEN_NODES):
            raise CompilationError(
                code, f"{type(node).__name__} statements are not allowed"
            )
        if isinstance(node, ast.Name) and node.id.startswith("__"):
            raise CompilationError(code, f'Name "{node.id}" is not allowed')
        if isinstance(node, ast.Attribute) and (
            node.attr.startswith("_") or node.attr in _FORBIDDEN_ATTRIBUTES
        ):
            raise CompilationError(
                code, f'Attribute "{node.attr}" is not allowed'
            )


@lru_cache(maxsize=1024)
def _compile(code: str, is_expression: bool):
    try:
        if is_expression:
            tree = ast.parse(code, mode="eval")
            _check_tree(tree, code)
            return compile(tree, "<expression>", "eval")

        tree = ast.parse(code, mode="exec")
        _check_tree(tree, code)
        module = ast.parse(f"def {HOOK_FUNCTION_NAME}():\n    pass\n")
        module.body[0].body = tree.body or [ast.Pass()]
        ast.fix_missing_locations(module)
        return compile(module, "<execution>", "exec")
    except SyntaxError as error:
        raise CompilationError(code, f"{type(error).__name__}: {error}") from error


class ExpressionEvaluator:
    """
    Compiles and runs hook sources against an explicit scope.

    Compiled code objects are shared between evaluator instances; every
    evaluation runs in fresh globals built from the scope so nothing leaks
    from one evaluation into the next.
    """

    def __init__(self, builtins: Mapping[str, Any] = SAFE_BUILTINS):
        self.builtins = dict(builtins)

    def check(self, source: str, is_expression: bool = True) -> None:
        """Raise CompilationError if given source can not be compiled."""
        _compile(source.strip(), is_expression)

    def evaluate(
        self,
        source: str,
        scope: Mapping[str, Any],
        is_expression: bool = True,
    ) -> EvaluationResult:
        """
        Evaluate given source.

        Raises:
            CompilationError: The source does not parse or is not allowed
            RuntimeEvaluationError: The source raised while running
        """
        code = source.strip() if isinstance(source, str) else ""
        if not code:
            raise CompilationError(code, "No expression to evaluate provided.")

        compiled = _compile(code, is_expression)
        environment: Dict[str, Any] = {"__builtins__": self.builtins}
        environment.update(scope)

        try:
            if is_expression:
                value = eval(compiled, environment)
            else:
                exec(compiled, environment)
                value = environment[HOOK_FUNCTION_NAME]()
        except Exception as error:
            logger.debug("Evaluation of %r failed: %s", code, error)
            raise RuntimeEvaluationError(
                code, f"{type(error).__name__}: {error}"
            ) from error

        return EvaluationResult(code=code, result=value, scope=dict(scope))
