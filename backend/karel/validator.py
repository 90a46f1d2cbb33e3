"""Static validator for student Karel programs.

Programs are ordinary Python source restricted to a tiny subset: calls to
Karel primitives and to the student's own zero-argument functions, ``if`` /
``while`` / ``for ... in range(...)``, ``and`` / ``or`` / ``not``, ``pass``,
``break``, ``continue`` and bare ``return``.

The check is allowlist based. `ProgramValidator` is an `ast.NodeVisitor`
whose `generic_visit` rejects: a node kind is only accepted when this module
defines a ``visit_<Kind>`` method for it. Node kinds added by future Python
versions therefore fail closed. Some rejected kinds get a tailored message
from `REJECTED_NODES`; everything else gets a generic one.

The source is parsed and compiled (to surface compile-time errors such as
block nesting limits) but never executed here.
"""

import ast
import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

from pydantic import BaseModel

from .executor import PRIMITIVE_NAMES
from .faults import SyntaxFault, ValidationFault

logger = logging.getLogger(__name__)

PROGRAM_FILENAME = "<karel>"
COUNTING_PRIMITIVE = "range"

# Constructs a lesson can switch off via `python_features`
PYTHON_FEATURES = ("functions", "if", "while", "for")


def _rejections() -> Dict[type, Tuple[str, str]]:
    table = {
        ("Import", "ImportFrom"): ("import", "Import statements are not allowed."),
        ("ClassDef",): ("class", "Class definitions are not allowed."),
        ("Assign", "AugAssign", "AnnAssign", "NamedExpr"): (
            "assignment",
            "Variable assignments are not allowed.",
        ),
        ("List", "Tuple", "Set", "Dict", "ListComp", "SetComp", "DictComp", "GeneratorExp"): (
            "collection",
            "Lists, tuples, sets, dictionaries and comprehensions are not allowed.",
        ),
        ("Subscript", "Slice"): ("subscript", "Indexing and slicing are not allowed."),
        ("Lambda",): ("lambda", "Lambda expressions are not allowed."),
        ("Try", "TryStar", "ExceptHandler", "Raise"): (
            "exception",
            "Exception handling is not allowed.",
        ),
        ("With", "AsyncWith"): ("with", "'with' blocks are not allowed."),
        ("AsyncFunctionDef", "AsyncFor", "Await"): (
            "async",
            "Asynchronous code (async/await) is not allowed.",
        ),
        ("Global", "Nonlocal"): ("scope", "'global' and 'nonlocal' declarations are not allowed."),
        ("Yield", "YieldFrom"): ("yield", "'yield' is not allowed."),
        ("Delete",): ("delete", "'del' statements are not allowed."),
        ("Attribute",): ("attribute", "Attribute access (the '.' operator) is not allowed."),
    }
    rejections: Dict[type, Tuple[str, str]] = {}
    for names, verdict in table.items():
        for name in names:
            # some node kinds only exist on newer interpreters
            node_type = getattr(ast, name, None)
            if node_type is not None:
                rejections[node_type] = verdict
    return rejections


REJECTED_NODES = _rejections()


class ValidationResult(BaseModel):
    valid: bool
    error: Optional[str] = None
    line: Optional[int] = None
    rule: Optional[str] = None
    hint: Optional[str] = None

    @classmethod
    def from_fault(cls, fault: Union[SyntaxFault, ValidationFault]) -> "ValidationResult":
        return cls(valid=False, error=fault.message, line=fault.line, rule=fault.rule, hint=fault.hint)

    def to_error(self) -> Optional[Dict[str, Any]]:
        """Structured error dict for a failing result, None when valid."""
        if self.valid:
            return None
        err: Dict[str, Any] = {
            "code": "SYNTAX_ERROR" if self.rule == "syntax" else "VALIDATION_ERROR",
            "message": self.error,
            "line": self.line,
            "rule": self.rule,
        }
        if self.hint:
            err["hint"] = self.hint
        return err


def _line_of(node: ast.AST) -> Optional[int]:
    return getattr(node, "lineno", None)


def _too_deep() -> ValidationResult:
    return ValidationResult(
        valid=False,
        error="Program is nested too deeply.",
        line=1,
        rule="nesting",
        hint="Move some of the inner blocks into functions of their own.",
    )


def collect_user_functions(tree: ast.AST) -> Set[str]:
    """Names of every ``def`` in the tree, at any nesting depth."""
    return {n.name for n in ast.walk(tree) if isinstance(n, ast.FunctionDef)}


class ProgramValidator(ast.NodeVisitor):
    """Walks a parsed program and raises `ValidationFault` on the first violation.

    One instance validates one tree; `validate()` builds a fresh instance per
    call so concurrent validations never share state.
    """

    def __init__(
        self,
        user_functions: Set[str],
        karel_commands: Optional[Iterable[str]] = None,
        python_features: Optional[Iterable[str]] = None,
    ):
        self.user_functions = user_functions
        self.karel_commands = set(PRIMITIVE_NAMES if karel_commands is None else karel_commands)
        self.python_features = None if python_features is None else set(python_features)
        self._defined: Set[str] = set()
        self._range_allowed = False
        self._in_range_args = False
        self._loop_depth = 0
        self._function_depth = 0
        # targets of the enclosing for loops, innermost last
        self._loop_counters: List[str] = []

    # --- helpers -----------------------------------------------------------
    def _reject(self, node: ast.AST, rule: str, message: str, hint: Optional[str] = None):
        raise ValidationFault(message, rule=rule, line=_line_of(node), hint=hint)

    def _require_feature(self, node: ast.AST, feature: str, label: str):
        if self.python_features is not None and feature not in self.python_features:
            self._reject(node, "feature", f"{label} are not allowed in this exercise.")

    def _visit_all(self, nodes: Iterable[ast.AST]):
        for child in nodes:
            self.visit(child)

    def _visit_loop_body(self, body: Iterable[ast.AST]):
        self._loop_depth += 1
        try:
            self._visit_all(body)
        finally:
            self._loop_depth -= 1

    # --- default: reject ---------------------------------------------------
    def generic_visit(self, node: ast.AST):
        verdict = REJECTED_NODES.get(type(node))
        if verdict is not None:
            rule, message = verdict
            self._reject(node, rule, message)
        self._reject(
            node,
            "unsupported",
            f"'{type(node).__name__}' syntax is not allowed in Karel programs.",
        )

    # --- permitted structure -----------------------------------------------
    def visit_Module(self, node: ast.Module):
        self._visit_all(node.body)

    def visit_Expr(self, node: ast.Expr):
        # a bare string statement is a docstring/comment, a bare ... a placeholder
        if isinstance(node.value, ast.Constant) and (
            isinstance(node.value.value, str) or node.value.value is Ellipsis
        ):
            return
        self.visit(node.value)

    def visit_FunctionDef(self, node: ast.FunctionDef):
        self._require_feature(node, "functions", "Function definitions")
        args = node.args
        if args.posonlyargs or args.args or args.vararg or args.kwonlyargs or args.kwarg:
            self._reject(
                node,
                "parameters",
                f"Function '{node.name}' cannot have parameters; Karel functions take no arguments.",
                hint=f"Write: def {node.name}():",
            )
        if node.decorator_list:
            self._reject(node.decorator_list[0], "decorator", "Decorators are not allowed.")
        if node.returns is not None:
            self._reject(node, "annotation", "Return annotations are not allowed.")
        if getattr(node, "type_params", None):
            self._reject(node, "unsupported", "Type parameters are not allowed.")
        if node.name in PRIMITIVE_NAMES or node.name == COUNTING_PRIMITIVE:
            self._reject(
                node,
                "shadowing",
                f"Function '{node.name}' would replace a built-in Karel command.",
                hint="Pick a different name for your function.",
            )
        if node.name in self._defined:
            self._reject(
                node,
                "duplicate",
                f"Function '{node.name}' is defined more than once.",
            )
        self._defined.add(node.name)
        # break/continue cannot reach a loop outside the def
        outer_loops = self._loop_depth
        self._loop_depth = 0
        self._function_depth += 1
        try:
            self._visit_all(node.body)
        finally:
            self._function_depth -= 1
            self._loop_depth = outer_loops

    def visit_Return(self, node: ast.Return):
        if not self._function_depth:
            self._reject(node, "return", "'return' can only be used inside a function.")
        if node.value is not None:
            self._reject(node, "return", "Functions cannot return a value; use a bare 'return'.")

    def visit_If(self, node: ast.If):
        self._require_feature(node, "if", "'if' statements")
        self.visit(node.test)
        self._visit_all(node.body)
        self._visit_all(node.orelse)

    def visit_While(self, node: ast.While):
        self._require_feature(node, "while", "'while' loops")
        if node.orelse:
            self._reject(node.orelse[0], "loop_else", "'else' clauses on loops are not allowed.")
        self.visit(node.test)
        self._visit_loop_body(node.body)

    def visit_For(self, node: ast.For):
        self._require_feature(node, "for", "'for' loops")
        if not isinstance(node.target, ast.Name):
            self._reject(node, "for", "A for loop must use a single loop variable.")
        iterable = node.iter
        if not (
            isinstance(iterable, ast.Call)
            and isinstance(iterable.func, ast.Name)
            and iterable.func.id == COUNTING_PRIMITIVE
        ):
            self._reject(
                node,
                "for",
                "for loops may only repeat over range(...).",
                hint="Write: for i in range(4):",
            )
        if node.orelse:
            self._reject(node.orelse[0], "loop_else", "'else' clauses on loops are not allowed.")
        self.visit(node.target)
        self._range_allowed = True
        try:
            self.visit(iterable)
        finally:
            self._range_allowed = False
        self._loop_counters.append(node.target.id)
        try:
            self._visit_loop_body(node.body)
        finally:
            self._loop_counters.pop()

    def visit_Pass(self, node: ast.Pass):
        pass

    def visit_Break(self, node: ast.Break):
        if not self._loop_depth:
            self._reject(node, "loop_control", "'break' can only be used inside a loop.")

    def visit_Continue(self, node: ast.Continue):
        if not self._loop_depth:
            self._reject(node, "loop_control", "'continue' can only be used inside a loop.")

    # --- permitted expressions ---------------------------------------------
    def visit_Call(self, node: ast.Call):
        if not isinstance(node.func, ast.Name):
            # routes obj.method(), f()() etc. to their own rejection
            self.visit(node.func)
            self._reject(node, "call", "Only simple function calls are allowed.")
        name = node.func.id
        if node.keywords:
            self._reject(node, "arguments", f"'{name}()' does not accept keyword arguments.")
        if name == COUNTING_PRIMITIVE:
            if not self._range_allowed:
                self._reject(
                    node,
                    "call",
                    "range() can only be used in a for loop header.",
                )
            if not 1 <= len(node.args) <= 3:
                self._reject(node, "arguments", "range() takes one to three arguments.")
            # nested range(...) inside the arguments is not a loop header
            self._range_allowed = False
            self._in_range_args = True
            try:
                self._visit_all(node.args)
            finally:
                self._in_range_args = False
            return
        if name in PRIMITIVE_NAMES:
            if name not in self.karel_commands:
                self._reject(
                    node,
                    "command",
                    f"'{name}()' is not available in this exercise.",
                )
        elif name not in self.user_functions:
            self._reject(
                node,
                "call",
                f"Function '{name}()' is not allowed.",
                hint="Only Karel commands and functions you define can be called.",
            )
        if node.args:
            self._reject(node, "arguments", f"'{name}()' takes no arguments.")

    def visit_BoolOp(self, node: ast.BoolOp):
        self._visit_all(node.values)

    def visit_And(self, node: ast.And):
        pass

    def visit_Or(self, node: ast.Or):
        pass

    def visit_UnaryOp(self, node: ast.UnaryOp):
        if not isinstance(node.op, ast.Not):
            self._reject(node, "operator", "Only the 'not' operator is allowed.")
        self.visit(node.operand)

    def visit_Not(self, node: ast.Not):
        pass

    def visit_Name(self, node: ast.Name):
        if isinstance(node.ctx, ast.Load) and not (self._in_range_args and node.id in self._loop_counters):
            # only an enclosing loop counter may feed range(), e.g. range(i)
            hint = f"Write: {node.id}()" if node.id in self.karel_commands or node.id in self.user_functions else None
            self._reject(node, "name", f"'{node.id}' cannot be used on its own here.", hint=hint)
        self.visit(node.ctx)

    def visit_Load(self, node: ast.Load):
        pass

    def visit_Store(self, node: ast.Store):
        # only reachable through a for-loop target
        pass

    def visit_Constant(self, node: ast.Constant):
        if node.value is Ellipsis:
            self._reject(node, "literal", "'...' can only stand on a line of its own, like 'pass'.")
        if not isinstance(node.value, int):
            self._reject(node, "literal", "Only whole numbers and True/False are allowed here.")


def validate(
    code: str,
    *,
    karel_commands: Optional[Iterable[str]] = None,
    python_features: Optional[Iterable[str]] = None,
) -> ValidationResult:
    """Check `code` against the Karel allowlist without running it.

    Args:
        code: student source text
        karel_commands: primitive names this exercise permits (None = all 22)
        python_features: subset of `PYTHON_FEATURES` permitted (None = all)

    Returns:
        ``ValidationResult(valid=True)`` or a failing result carrying the
        message, the 1-based line and the rule that rejected the program.
    """
    try:
        tree = ast.parse(code, filename=PROGRAM_FILENAME, mode="exec")
    except SyntaxError as e:
        return ValidationResult.from_fault(SyntaxFault(f"Syntax error: {e.msg}", line=e.lineno or 1))
    except ValueError as e:
        # e.g. source containing null bytes on older interpreters
        return ValidationResult.from_fault(SyntaxFault(f"Syntax error: {e}", line=1))
    except (RecursionError, MemoryError):
        return _too_deep()

    validator = ProgramValidator(
        collect_user_functions(tree),
        karel_commands=karel_commands,
        python_features=python_features,
    )
    try:
        validator.visit(tree)
        # compile-time checks the visitor does not repeat (e.g. block nesting limits)
        compile(tree, PROGRAM_FILENAME, "exec")
    except ValidationFault as fault:
        logger.debug("rejected program at line %s: %s", fault.line, fault.message)
        return ValidationResult.from_fault(fault)
    except SyntaxError as e:
        return ValidationResult.from_fault(SyntaxFault(f"Syntax error: {e.msg}", line=e.lineno or 1))
    except (RecursionError, MemoryError):
        return _too_deep()
    return ValidationResult(valid=True)
