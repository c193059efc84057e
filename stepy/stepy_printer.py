"""
A pretty-printer for Stepy runtime values and AST nodes.
"""
import math

from stepy.stepy_datatypes import (
    TokenType,
    NumberLiteral, StringLiteral, BooleanLiteral, Name, ListLiteral,
    BinaryOp, UnaryOp, Call, Attribute, Index, Slice,
    ExpressionStmt, Assign, If, While, For, FunctionDef, Return, Pass, Global,
)

OPERATOR_TEXT = {
    TokenType.PLUS: "+",
    TokenType.MINUS: "-",
    TokenType.STAR: "*",
    TokenType.SLASH: "/",
    TokenType.PERCENT: "%",
    TokenType.EQ: "==",
    TokenType.NEQ: "!=",
    TokenType.LT: "<",
    TokenType.GT: ">",
    TokenType.LTE: "<=",
    TokenType.GTE: ">=",
    TokenType.AND: "and",
    TokenType.OR: "or",
    TokenType.NOT: "not",
}


def format_number(x: float) -> str:
    """Integral values print without a fractional part: 1.0 -> '1', 2.5 -> '2.5'."""
    if math.isnan(x):
        return "nan"
    if math.isinf(x):
        return "inf" if x > 0 else "-inf"
    if x == int(x):
        return str(int(x))
    return repr(float(x))


class Printer:
    """Formats Stepy values the way `print` shows them, and AST nodes as source."""

    def __init__(self, indent_width=4):
        self._indent_char = " " * indent_width

    # --- Runtime values ---

    def pformat(self, value) -> str:
        """The `str()` of a runtime value: strings are shown bare."""
        if isinstance(value, str):
            return value
        return self.repr_value(value)

    def repr_value(self, value, _active=None) -> str:
        """The `repr()` of a runtime value: strings are quoted (used inside lists).

        A list that contains itself renders the inner occurrence as `[...]`.
        """
        match value:
            case None:
                return "None"
            case bool():
                return "True" if value else "False"
            case int() | float():
                return format_number(float(value))
            case str():
                return repr(value)
            case list():
                active = _active or frozenset()
                if id(value) in active:
                    return "[...]"
                active = active | {id(value)}
                return "[" + ", ".join(self.repr_value(v, active) for v in value) + "]"
        return str(value)

    # --- AST nodes ---

    def format_node(self, node, level=0) -> str:
        """Render an expression or statement back to source.

        Binary and unary operations are fully parenthesised so the tree shape
        is visible in the output.
        """
        pad = self._indent_char * level
        match node:
            case list():
                return "\n".join(self.format_node(s, level) for s in node)
            case NumberLiteral(value=v):
                return format_number(v)
            case StringLiteral(value=v):
                return f'"{v}"'
            case BooleanLiteral(value=v):
                return "True" if v else "False"
            case Name(name=n):
                return n
            case ListLiteral(elements=elts):
                return "[" + ", ".join(self.format_node(e) for e in elts) + "]"
            case BinaryOp(left=l, op=op, right=r):
                return f"({self.format_node(l)} {OPERATOR_TEXT[op]} {self.format_node(r)})"
            case UnaryOp(op=TokenType.NOT, operand=o):
                return f"(not {self.format_node(o)})"
            case UnaryOp(operand=o):
                return f"(-{self.format_node(o)})"
            case Call(callee=c, args=args):
                return f"{self.format_node(c)}(" + ", ".join(self.format_node(a) for a in args) + ")"
            case Attribute(target=t, name=n):
                return f"{self.format_node(t)}.{n}"
            case Index(target=t, index=i):
                return f"{self.format_node(t)}[{self.format_node(i)}]"
            case Slice(target=t, start=s, end=e):
                start = self.format_node(s) if s is not None else ""
                end = self.format_node(e) if e is not None else ""
                return f"{self.format_node(t)}[{start}:{end}]"
            case ExpressionStmt(expr=e):
                return pad + self.format_node(e)
            case Assign(target=t, value=v):
                return f"{pad}{t} = {self.format_node(v)}"
            case If(condition=c, then_branch=then, else_branch=other):
                out = f"{pad}if {self.format_node(c)}:\n{self.format_node(then, level + 1)}"
                if other is not None:
                    out += f"\n{pad}else:\n{self.format_node(other, level + 1)}"
                return out
            case While(condition=c, body=body):
                return f"{pad}while {self.format_node(c)}:\n{self.format_node(body, level + 1)}"
            case For(variable=v, iterable=it, body=body):
                return f"{pad}for {v} in {self.format_node(it)}:\n{self.format_node(body, level + 1)}"
            case FunctionDef(name=n, params=params, body=body):
                return f"{pad}def {n}({', '.join(params)}):\n{self.format_node(body, level + 1)}"
            case Return(value=None):
                return f"{pad}return"
            case Return(value=v):
                return f"{pad}return {self.format_node(v)}"
            case Pass():
                return f"{pad}pass"
            case Global(names=names):
                return f"{pad}global {', '.join(names)}"
        return repr(node)
