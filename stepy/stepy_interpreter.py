"""
The core Stepy interpreter: a tree-walking Evaluator built from generators.

Every statement and expression evaluation is a generator. Values come
back through `yield from` (the generator's return value) and anything
yielded travels up to the step driver:

  * ``None``          -- a step boundary (the driver applies its step delay)
  * ``Wait(seconds)`` -- a host wait instruction
  * a generator       -- a nested operation the driver pumps to completion
  * an awaitable      -- a host coroutine the driver awaits

The driver sends the nested operation's result back in, so host commands
can return values.
"""
import inspect
import math
import os
import sys
from dataclasses import fields
from typing import Any, Dict, List, Optional, Set

from stepy.stepy_datatypes import (
    TokenType, ArgumentError, ReturnValue, is_return, unwrap_return,
    Node, Expr, Stmt, NumberLiteral, StringLiteral, BooleanLiteral, Name, ListLiteral,
    BinaryOp, UnaryOp, Call, Attribute, Index, Slice,
    ExpressionStmt, Assign, If, While, For, FunctionDef, Return, Pass, Global,
)
from stepy.stepy_printer import Printer, OPERATOR_TEXT
from stepy.stepy_tracker import ExecutionTracker


# =================================================================
# Value helpers
# =================================================================

def is_number(x) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool)


def type_name(x) -> str:
    match x:
        case None:
            return "NoneType"
        case bool():
            return "bool"
        case int() | float():
            return "number"
        case str():
            return "str"
        case list():
            return "list"
    return type(x).__name__


def is_truthy(x) -> bool:
    match x:
        case None:
            return False
        case bool():
            return x
        case int() | float():
            return x != 0
        case str() | list():
            return len(x) > 0
    return True


def values_equal(a, b) -> bool:
    """Value equality across the runtime union; different kinds never compare equal."""
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if is_number(a) or is_number(b):
        return is_number(a) and is_number(b) and float(a) == float(b)
    if isinstance(a, list) or isinstance(b, list):
        if not (isinstance(a, list) and isinstance(b, list)) or len(a) != len(b):
            return False
        return all(values_equal(x, y) for x, y in zip(a, b))
    if a is None or b is None:
        return a is None and b is None
    return a == b


def to_number(x, op: str = "+") -> float:
    if isinstance(x, bool):
        return 1.0 if x else 0.0
    if is_number(x):
        return float(x)
    if isinstance(x, str):
        try:
            return float(x.strip())
        except ValueError:
            raise TypeError(f"could not convert string to number: '{x}'") from None
    raise TypeError(f"unsupported operand type for {op}: '{type_name(x)}'")


def to_index(x, what: str = "list indices") -> int:
    if is_number(x):
        if math.isnan(x) or math.isinf(x):
            raise ValueError(f"cannot convert {x} to an integer")
        return int(x)
    raise TypeError(f"{what} must be numbers, not {type_name(x)}")


def nesting_depth(node: Node) -> int:
    """Length of the deepest chain of nodes starting at `node`."""
    children = []
    for f in fields(node):
        value = getattr(node, f.name)
        if isinstance(value, Node):
            children.append(value)
        elif isinstance(value, list):
            children.extend(v for v in value if isinstance(v, Node))
    return 1 + max((nesting_depth(c) for c in children), default=0)


# Python generator frames one AST level can add to the evaluation chain
# (a call argument: _eval -> _call -> _eval_args), and the fixed cost of
# entering a user function (call_function -> _call_user_function).
FRAMES_PER_NODE = 3
FRAMES_PER_CALL = 4


def compare_values(a, b, op: str) -> int:
    if is_number(a) and is_number(b):
        a, b = float(a), float(b)
    elif not (isinstance(a, str) and isinstance(b, str)):
        raise TypeError(f"'{op}' not supported between instances of '{type_name(a)}' and '{type_name(b)}'")
    return (a > b) - (a < b)


class Evaluator:
    """Executes statement lists produced by the parser.

    Owns all per-run state: globals, the function table, the stack of local
    frames and the parallel stack of names declared `global` in each frame.
    """

    def __init__(self, bridge=None, tracker: Optional[ExecutionTracker] = None,
                 printer: Optional[Printer] = None, max_call_depth: int = 100):
        self.globals: Dict[str, Any] = {}
        self.functions: Dict[str, FunctionDef] = {}
        self.locals_stack: List[Dict[str, Any]] = []
        self.global_decls_stack: List[Set[str]] = []
        # Name -> callable; populated by StdLib
        self.builtins: Dict[str, Any] = {}
        self.bridge = bridge
        self.tracker = tracker or ExecutionTracker()
        self.printer = printer or Printer()
        self.max_call_depth = max_call_depth
        self.side_effects: List[Dict] = []
        self.log_sink = None
        # Active user-function calls, for stacktraces
        self.call_stack: List[Dict[str, Any]] = []
        self.current_node: Optional[Stmt] = None

    def _dbg(self, *parts):
        if os.environ.get("STEPY_DEBUG"):
            print("[DBG]", *parts, file=sys.stderr)

    def emit(self, topic: str, message: str):
        """Record a side effect and forward it to the live sink, if any."""
        effect = {'topics': [topic], 'message': message}
        self.side_effects.append(effect)
        if self.log_sink is not None:
            self.log_sink(effect)

    # ---------------------------------------------------------------
    # Entry point
    # ---------------------------------------------------------------

    def execute(self, statements: List[Stmt]):
        """Run top-level statements, yielding a step boundary after each one.

        Python's recursion limit is raised for the duration of the run so
        that `max_call_depth` script calls fit however deeply each call
        site is nested.
        """
        depth = max((nesting_depth(s) for s in statements), default=0)
        previous = sys.getrecursionlimit()
        raised = previous + (self.max_call_depth + 1) * (FRAMES_PER_NODE * depth + FRAMES_PER_CALL)
        sys.setrecursionlimit(raised)
        try:
            for stmt in statements:
                outcome = yield from self._exec(stmt)
                if is_return(outcome):
                    err = SyntaxError("'return' outside function")
                    err.lineno = stmt.line
                    raise err
                yield None
        finally:
            # Leave the limit alone if something else changed it meanwhile
            if sys.getrecursionlimit() == raised:
                sys.setrecursionlimit(previous)

    # ---------------------------------------------------------------
    # Variables
    # ---------------------------------------------------------------

    def get_variable(self, name: str):
        if self.locals_stack:
            frame = self.locals_stack[-1]
            if name in frame:
                return frame[name]
        if name in self.globals:
            return self.globals[name]
        raise NameError(f"name '{name}' is not defined")

    def set_variable(self, name: str, value):
        if self.locals_stack:
            if name in self.global_decls_stack[-1]:
                self.globals[name] = value
            else:
                self.locals_stack[-1][name] = value
        else:
            self.globals[name] = value

    # ---------------------------------------------------------------
    # Statements
    # ---------------------------------------------------------------

    def _exec_block(self, statements: List[Stmt]):
        for stmt in statements:
            outcome = yield from self._exec(stmt)
            if is_return(outcome):
                return outcome
        return None

    def _exec(self, stmt: Stmt):
        self.current_node = stmt
        self.tracker.notify_line_execution(stmt.line)

        match stmt:
            case ExpressionStmt(expr=expr):
                yield from self._eval(expr)

            case Assign(target=target, value=value_expr):
                value = yield from self._eval(value_expr)
                self.set_variable(target, value)

            case If(condition=cond, then_branch=then, else_branch=other):
                test = yield from self._eval(cond)
                if is_truthy(test):
                    return (yield from self._exec_block(then))
                if other is not None:
                    return (yield from self._exec_block(other))

            case While(condition=cond, body=body):
                while True:
                    test = yield from self._eval(cond)
                    if not is_truthy(test):
                        break
                    outcome = yield from self._exec_block(body)
                    if is_return(outcome):
                        return outcome
                    yield None

            case For(variable=var, iterable=iter_expr, body=body):
                iterable = yield from self._eval(iter_expr)
                if isinstance(iterable, str):
                    items = list(iterable)
                elif isinstance(iterable, list):
                    # Iterate the live list; mutation during the loop is visible
                    items = iterable
                else:
                    raise TypeError(f"'{type_name(iterable)}' object is not iterable")
                for item in items:
                    self.set_variable(var, item)
                    outcome = yield from self._exec_block(body)
                    if is_return(outcome):
                        return outcome
                    yield None

            case FunctionDef(name=name):
                self.functions[name] = stmt

            case Return(value=value_expr):
                value = None
                if value_expr is not None:
                    value = yield from self._eval(value_expr)
                return ReturnValue(value)

            case Pass():
                pass

            case Global(names=names):
                if self.global_decls_stack:
                    self.global_decls_stack[-1].update(names)

            case _:
                raise TypeError(f"Unknown statement type {type(stmt).__name__} at line {stmt.line}")
        return None

    # ---------------------------------------------------------------
    # Expressions
    # ---------------------------------------------------------------

    def _eval(self, expr: Expr):
        match expr:
            case NumberLiteral(value=v) | StringLiteral(value=v) | BooleanLiteral(value=v):
                return v

            case Name(name=name):
                return self.get_variable(name)

            case ListLiteral(elements=elements):
                items = []
                for element in elements:
                    items.append((yield from self._eval(element)))
                return items

            case BinaryOp(left=left, op=op, right=right):
                lhs = yield from self._eval(left)
                rhs = yield from self._eval(right)
                return self._binary(op, lhs, rhs)

            case UnaryOp(op=TokenType.MINUS, operand=operand):
                value = yield from self._eval(operand)
                return -to_number(value, "unary -")

            case UnaryOp(op=TokenType.NOT, operand=operand):
                value = yield from self._eval(operand)
                return not is_truthy(value)

            case Call():
                return (yield from self._call(expr))

            case Attribute(name=name):
                raise AttributeError(f"attribute '{name}' can only be called as a method")

            case Index(target=target_expr, index=index_expr):
                target = yield from self._eval(target_expr)
                index = yield from self._eval(index_expr)
                if not isinstance(target, list):
                    raise TypeError(f"'{type_name(target)}' object is not subscriptable")
                i = to_index(index)
                if i < 0:
                    i += len(target)
                if i < 0 or i >= len(target):
                    raise IndexError("list index out of range")
                return target[i]

            case Slice(target=target_expr, start=start_expr, end=end_expr):
                target = yield from self._eval(target_expr)
                if not isinstance(target, list):
                    raise TypeError(f"'{type_name(target)}' object does not support slicing")
                n = len(target)
                start, end = 0, n
                if start_expr is not None:
                    start = self._clamp(to_index((yield from self._eval(start_expr)), "slice indices"), n)
                if end_expr is not None:
                    end = self._clamp(to_index((yield from self._eval(end_expr)), "slice indices"), n)
                return target[start:end] if start < end else []

        raise TypeError(f"Unknown expression type {type(expr).__name__} at line {expr.line}")

    @staticmethod
    def _clamp(i: int, n: int) -> int:
        if i < 0:
            i += n
        return max(0, min(i, n))

    def _binary(self, op: TokenType, a, b):
        sym = OPERATOR_TEXT.get(op, op.name)
        match op:
            case TokenType.PLUS:
                if isinstance(a, str) or isinstance(b, str):
                    return self.printer.pformat(a) + self.printer.pformat(b)
                return to_number(a, sym) + to_number(b, sym)
            case TokenType.MINUS:
                return to_number(a, sym) - to_number(b, sym)
            case TokenType.STAR:
                return to_number(a, sym) * to_number(b, sym)
            case TokenType.SLASH:
                divisor = to_number(b, sym)
                if divisor == 0:
                    raise ZeroDivisionError("division by zero")
                return to_number(a, sym) / divisor
            case TokenType.PERCENT:
                divisor = to_number(b, sym)
                if divisor == 0:
                    raise ZeroDivisionError("modulo by zero")
                return math.fmod(to_number(a, sym), divisor)
            case TokenType.EQ:
                return values_equal(a, b)
            case TokenType.NEQ:
                return not values_equal(a, b)
            case TokenType.LT:
                return compare_values(a, b, sym) < 0
            case TokenType.GT:
                return compare_values(a, b, sym) > 0
            case TokenType.LTE:
                return compare_values(a, b, sym) <= 0
            case TokenType.GTE:
                return compare_values(a, b, sym) >= 0
            # Both sides are already evaluated: no short-circuit
            case TokenType.AND:
                return is_truthy(a) and is_truthy(b)
            case TokenType.OR:
                return is_truthy(a) or is_truthy(b)
        raise TypeError(f"Unsupported binary operator {sym}")

    # ---------------------------------------------------------------
    # Calls
    # ---------------------------------------------------------------

    def _eval_args(self, arg_exprs: List[Expr]):
        args = []
        for arg in arg_exprs:
            args.append((yield from self._eval(arg)))
        return args

    def _call(self, call: Call):
        match call.callee:
            case Name(name=name):
                args = yield from self._eval_args(call.args)
                return (yield from self.call_function(name, args, call.line))
            case Attribute(target=target_expr, name=method):
                target = yield from self._eval(target_expr)
                args = yield from self._eval_args(call.args)
                return self._call_method(target, method, args)
        raise TypeError("invalid function call target")

    def call_function(self, name: str, args: list, line: int = 0):
        """Resolve `name`: built-ins, then host commands, then user functions."""
        self._dbg("call", name, "argc", len(args))
        if name in self.builtins:
            result = self.builtins[name](*args)
            if inspect.isgenerator(result):
                result = yield from result
            return result
        if self.bridge is not None and self.bridge.has_command(name):
            return (yield from self.bridge.invoke(name, args))
        if name in self.functions:
            return (yield from self._call_user_function(self.functions[name], args))
        raise NameError(f"Unknown function '{name}'")

    def _call_user_function(self, fdef: FunctionDef, args: list):
        if len(args) != len(fdef.params):
            raise ArgumentError(
                f"{fdef.name}() takes {len(fdef.params)} positional argument"
                f"{'' if len(fdef.params) == 1 else 's'} but {len(args)} were given")
        if len(self.locals_stack) >= self.max_call_depth:
            raise RecursionError("maximum recursion depth exceeded")

        caller_node = self.current_node
        self.locals_stack.append(dict(zip(fdef.params, args)))
        self.global_decls_stack.append(set())
        self.call_stack.append({'name': fdef.name, 'args': list(args), 'line': fdef.line})
        try:
            for stmt in fdef.body:
                outcome = yield from self._exec(stmt)
                if is_return(outcome):
                    return unwrap_return(outcome)
                yield None
            return None
        except Exception as e:
            # Snapshot the innermost location before the frames unwind
            if getattr(e, 'stepy_stack', None) is None:
                e.stepy_stack = [dict(f) for f in self.call_stack]
                e.stepy_line = self.current_node.line if self.current_node is not None else None
            raise
        finally:
            self.call_stack.pop()
            self.global_decls_stack.pop()
            self.locals_stack.pop()
            self.current_node = caller_node

    def _call_method(self, target, method: str, args: list):
        if not isinstance(target, list):
            raise AttributeError(f"'{type_name(target)}' object has no attribute '{method}'")
        match method:
            case "append":
                if len(args) != 1:
                    raise ArgumentError(f"append() takes exactly one argument ({len(args)} given)")
                target.append(args[0])
                return None
            case "remove":
                if len(args) != 1:
                    raise ArgumentError(f"remove() takes exactly one argument ({len(args)} given)")
                for i, item in enumerate(target):
                    if values_equal(item, args[0]):
                        del target[i]
                        return None
                raise ValueError("list.remove(x): x not in list")
            case "pop":
                if len(args) > 1:
                    raise ArgumentError(f"pop expected at most 1 argument, got {len(args)}")
                if not target:
                    raise IndexError("pop from empty list")
                i = to_index(args[0]) if args else len(target) - 1
                if i < 0:
                    i += len(target)
                if i < 0 or i >= len(target):
                    raise IndexError("pop index out of range")
                return target.pop(i)
        raise AttributeError(f"'list' object has no attribute '{method}'")
