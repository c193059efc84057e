"""
Defines the core data types for the Stepy language runtime.

This module provides the token type, the closed set of AST node classes
the parser produces, and the small signal objects the interpreter hands
to the step driver.
"""

from abc import ABC
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import List, Optional, Any


class LexError(Exception):
    """Raised by the lexer for bad indentation or an unknown character."""
    def __init__(self, message: str, line: int):
        super().__init__(f"{message} at line {line}")
        self.line = line


class ArgumentError(TypeError):
    """Wrong number of arguments for a user function, built-in or command."""
    pass


# =================================================================
# Tokens
# =================================================================

class TokenType(Enum):
    NUMBER = auto()
    STRING = auto()
    BOOLEAN = auto()
    NAME = auto()
    # Keywords
    IF = auto()
    ELSE = auto()
    WHILE = auto()
    FOR = auto()
    IN = auto()
    DEF = auto()
    RETURN = auto()
    PASS = auto()
    NOT = auto()
    AND = auto()
    OR = auto()
    GLOBAL = auto()
    # Operators
    PLUS = auto()
    MINUS = auto()
    STAR = auto()
    SLASH = auto()
    PERCENT = auto()
    EQ = auto()
    NEQ = auto()
    LT = auto()
    GT = auto()
    LTE = auto()
    GTE = auto()
    ASSIGN = auto()
    # Punctuation
    LPAREN = auto()
    RPAREN = auto()
    LBRACKET = auto()
    RBRACKET = auto()
    COLON = auto()
    COMMA = auto()
    DOT = auto()
    # Layout
    NEWLINE = auto()
    INDENT = auto()
    DEDENT = auto()
    EOF = auto()


KEYWORDS = {
    "if": TokenType.IF,
    "else": TokenType.ELSE,
    "while": TokenType.WHILE,
    "for": TokenType.FOR,
    "in": TokenType.IN,
    "def": TokenType.DEF,
    "return": TokenType.RETURN,
    "pass": TokenType.PASS,
    "not": TokenType.NOT,
    "and": TokenType.AND,
    "or": TokenType.OR,
    "global": TokenType.GLOBAL,
}


@dataclass
class Token:
    type: TokenType
    text: str
    line: int

    def __repr__(self):
        if self.type in (TokenType.NUMBER, TokenType.STRING, TokenType.BOOLEAN, TokenType.NAME):
            return f"{self.type.name}({self.text})"
        return self.type.name


# =================================================================
# Abstract Base Classes
# =================================================================

class Node(ABC):
    """Base class for every AST node. Every node carries a 1-based `line`."""
    line: int


class Expr(Node):
    pass


class Stmt(Node):
    pass


# =================================================================
# Expressions
# =================================================================

@dataclass
class NumberLiteral(Expr):
    value: float
    line: int = 0


@dataclass
class StringLiteral(Expr):
    value: str
    line: int = 0


@dataclass
class BooleanLiteral(Expr):
    value: bool
    line: int = 0


@dataclass
class Name(Expr):
    name: str
    line: int = 0


@dataclass
class ListLiteral(Expr):
    elements: List[Expr]
    line: int = 0


@dataclass
class BinaryOp(Expr):
    left: Expr
    op: TokenType
    right: Expr
    line: int = 0


@dataclass
class UnaryOp(Expr):
    op: TokenType
    operand: Expr
    line: int = 0


@dataclass
class Call(Expr):
    callee: Expr
    args: List[Expr]
    line: int = 0


@dataclass
class Attribute(Expr):
    """`target.name`; only meaningful as the callee of a method call."""
    target: Expr
    name: str
    line: int = 0


@dataclass
class Index(Expr):
    target: Expr
    index: Expr
    line: int = 0


@dataclass
class Slice(Expr):
    target: Expr
    start: Optional[Expr] = None
    end: Optional[Expr] = None
    line: int = 0


# =================================================================
# Statements
# =================================================================

@dataclass
class ExpressionStmt(Stmt):
    expr: Expr
    line: int = 0


@dataclass
class Assign(Stmt):
    target: str
    value: Expr
    line: int = 0


@dataclass
class If(Stmt):
    condition: Expr
    then_branch: List[Stmt]
    else_branch: Optional[List[Stmt]] = None
    line: int = 0


@dataclass
class While(Stmt):
    condition: Expr
    body: List[Stmt]
    line: int = 0


@dataclass
class For(Stmt):
    variable: str
    iterable: Expr
    body: List[Stmt]
    line: int = 0


@dataclass
class FunctionDef(Stmt):
    name: str
    params: List[str]
    body: List[Stmt]
    line: int = 0


@dataclass
class Return(Stmt):
    value: Optional[Expr] = None
    line: int = 0


@dataclass
class Pass(Stmt):
    line: int = 0


@dataclass
class Global(Stmt):
    names: List[str] = field(default_factory=list)
    line: int = 0


# =================================================================
# Execution signals
# =================================================================

@dataclass
class ReturnValue:
    """Control-flow outcome of a `return` statement.

    Statement execution hands this back up through enclosing blocks; the
    function-call boundary unwraps it. It never travels through the
    exception channel.
    """
    value: Any = None


def is_return(x) -> bool:
    return isinstance(x, ReturnValue)


def unwrap_return(x):
    return x.value if is_return(x) else x


@dataclass
class Wait:
    """A host wait instruction yielded to the step driver (e.g. by `sleep`)."""
    seconds: float
