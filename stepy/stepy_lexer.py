"""
Line-oriented tokenizer for Stepy source with significant indentation.
"""
from typing import List

from stepy.stepy_datatypes import Token, TokenType, KEYWORDS, LexError

TWO_CHAR_OPERATORS = {
    "==": TokenType.EQ,
    "!=": TokenType.NEQ,
    "<=": TokenType.LTE,
    ">=": TokenType.GTE,
}

SINGLE_CHAR_TOKENS = {
    "+": TokenType.PLUS,
    "-": TokenType.MINUS,
    "*": TokenType.STAR,
    "/": TokenType.SLASH,
    "%": TokenType.PERCENT,
    "<": TokenType.LT,
    ">": TokenType.GT,
    "=": TokenType.ASSIGN,
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    "[": TokenType.LBRACKET,
    "]": TokenType.RBRACKET,
    ":": TokenType.COLON,
    ",": TokenType.COMMA,
    ".": TokenType.DOT,
}

TAB_WIDTH = 4


def _is_ident_start(c: str) -> bool:
    return c.isalpha() or c == "_"


def _is_ident_char(c: str) -> bool:
    return c.isalnum() or c == "_"


class Lexer:
    """Converts source text into a flat token list.

    Leading whitespace is turned into INDENT/DEDENT tokens using an
    indent-level stack that starts at 0. Blank and comment-only lines are
    skipped without touching the stack.
    """

    def __init__(self, source: str):
        self.source = source
        self.tokens: List[Token] = []

    def tokenize(self) -> List[Token]:
        self.tokens = []
        indent_stack = [0]
        text = self.source.replace("\r\n", "\n").replace("\r", "\n")
        line_no = 0

        for line_no, line in enumerate(text.split("\n"), start=1):
            width, pos = self._measure_indent(line)
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue

            if width > indent_stack[-1]:
                indent_stack.append(width)
                self._emit(TokenType.INDENT, "", line_no)
            while width < indent_stack[-1]:
                indent_stack.pop()
                self._emit(TokenType.DEDENT, "", line_no)
            if width != indent_stack[-1]:
                raise LexError("Indentation error", line_no)

            self._scan_line(line, pos, line_no)
            self._emit(TokenType.NEWLINE, "\\n", line_no)

        # Unwind whatever is still open
        while len(indent_stack) > 1:
            indent_stack.pop()
            self._emit(TokenType.DEDENT, "", line_no)
        self._emit(TokenType.EOF, "", line_no)
        return self.tokens

    def _emit(self, ttype: TokenType, text: str, line: int):
        self.tokens.append(Token(ttype, text, line))

    @staticmethod
    def _measure_indent(line: str):
        width = 0
        pos = 0
        while pos < len(line) and line[pos] in " \t":
            width += 1 if line[pos] == " " else TAB_WIDTH
            pos += 1
        return width, pos

    def _scan_line(self, line: str, pos: int, line_no: int):
        n = len(line)
        while pos < n:
            c = line[pos]

            if c in " \t":
                pos += 1
                continue

            if c == "#":
                break

            if c.isdigit():
                start = pos
                while pos < n and line[pos].isdigit():
                    pos += 1
                if pos + 1 < n and line[pos] == "." and line[pos + 1].isdigit():
                    pos += 1
                    while pos < n and line[pos].isdigit():
                        pos += 1
                self._emit(TokenType.NUMBER, line[start:pos], line_no)
                continue

            if c in "\"'":
                quote = c
                start = pos
                pos += 1
                while pos < n and line[pos] != quote:
                    # A backslash swallows the next character, whatever it is
                    if line[pos] == "\\" and pos + 1 < n:
                        pos += 2
                    else:
                        pos += 1
                pos += 1  # closing quote (may run past end of line)
                self._emit(TokenType.STRING, line[start:pos], line_no)
                continue

            if _is_ident_start(c):
                start = pos
                while pos < n and _is_ident_char(line[pos]):
                    pos += 1
                word = line[start:pos]
                if word in ("True", "False"):
                    ttype = TokenType.BOOLEAN
                else:
                    ttype = KEYWORDS.get(word, TokenType.NAME)
                self._emit(ttype, word, line_no)
                continue

            two = line[pos:pos + 2]
            if two in TWO_CHAR_OPERATORS:
                self._emit(TWO_CHAR_OPERATORS[two], two, line_no)
                pos += 2
                continue

            ttype = SINGLE_CHAR_TOKENS.get(c)
            if ttype is None:
                raise LexError(f"Unknown token '{c}'", line_no)
            self._emit(ttype, c, line_no)
            pos += 1


def tokenize(source: str) -> List[Token]:
    """Tokenize `source`; raises LexError on bad indentation or characters."""
    return Lexer(source).tokenize()
