"""
Recursive-descent parser turning a Stepy token list into statements.
"""
from typing import List, Optional

from stepy.stepy_datatypes import (
    Token, TokenType,
    Expr, Stmt, NumberLiteral, StringLiteral, BooleanLiteral, Name, ListLiteral,
    BinaryOp, UnaryOp, Call, Attribute, Index, Slice,
    ExpressionStmt, Assign, If, While, For, FunctionDef, Return, Pass, Global,
)

COMPARISON_OPS = (
    TokenType.EQ, TokenType.NEQ,
    TokenType.LT, TokenType.GT,
    TokenType.LTE, TokenType.GTE,
)

TOKEN_LABELS = {
    TokenType.NEWLINE: "newline",
    TokenType.INDENT: "indent",
    TokenType.DEDENT: "dedent",
    TokenType.EOF: "end of input",
}


def _syntax_error(message: str, line: int) -> SyntaxError:
    err = SyntaxError(message)
    err.lineno = line
    return err


class Parser:
    """Builds an AST from tokens.

    One dispatch for statements by leading token, and one method per
    precedence level for expressions (lowest first):
    or, and, not, comparison, additive, multiplicative, unary minus,
    postfix chain over primaries.
    """

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0

    # --- Token helpers ---

    @property
    def current(self) -> Token:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        last_line = self.tokens[-1].line if self.tokens else 1
        return Token(TokenType.EOF, "", last_line)

    def _peek_type(self, offset: int = 1) -> TokenType:
        idx = self.pos + offset
        if idx < len(self.tokens):
            return self.tokens[idx].type
        return TokenType.EOF

    def _advance(self) -> Token:
        tok = self.current
        self.pos += 1
        return tok

    def _check(self, ttype: TokenType) -> bool:
        return self.current.type == ttype

    def _match(self, ttype: TokenType) -> bool:
        if self._check(ttype):
            self._advance()
            return True
        return False

    def _expect(self, ttype: TokenType, what: str) -> Token:
        if self._check(ttype):
            return self._advance()
        tok = self.current
        found = TOKEN_LABELS.get(tok.type) or f"'{tok.text}'"
        raise _syntax_error(f"Expected {what} but found {found}", tok.line)

    # --- Statements ---

    def parse(self) -> List[Stmt]:
        statements: List[Stmt] = []
        while not self._check(TokenType.EOF):
            # Stray layout tokens at the top level carry no meaning
            if self._check(TokenType.NEWLINE) or self._check(TokenType.DEDENT):
                self._advance()
                continue
            statements.append(self._statement())
        return statements

    def _statement(self) -> Stmt:
        match self.current.type:
            case TokenType.IF:
                return self._if()
            case TokenType.WHILE:
                return self._while()
            case TokenType.FOR:
                return self._for()
            case TokenType.DEF:
                return self._function_def()
            case TokenType.RETURN:
                return self._return()
            case TokenType.PASS:
                tok = self._advance()
                self._expect(TokenType.NEWLINE, "newline")
                return Pass(line=tok.line)
            case TokenType.GLOBAL:
                return self._global()
            case TokenType.NAME if self._peek_type() == TokenType.ASSIGN:
                return self._assignment()
            case TokenType.INDENT:
                tok = self.current
                raise _syntax_error("Unexpected indent", tok.line)
        tok = self.current
        expr = self._expression()
        self._expect(TokenType.NEWLINE, "newline")
        return ExpressionStmt(expr, line=tok.line)

    def _block(self) -> List[Stmt]:
        self._expect(TokenType.COLON, "':'")
        self._expect(TokenType.NEWLINE, "newline")
        self._expect(TokenType.INDENT, "indent")
        body: List[Stmt] = []
        while not self._check(TokenType.DEDENT) and not self._check(TokenType.EOF):
            body.append(self._statement())
        self._expect(TokenType.DEDENT, "dedent")
        return body

    def _assignment(self) -> Stmt:
        name_tok = self._expect(TokenType.NAME, "identifier")
        self._expect(TokenType.ASSIGN, "'='")
        value = self._expression()
        self._expect(TokenType.NEWLINE, "newline")
        return Assign(name_tok.text, value, line=name_tok.line)

    def _if(self) -> Stmt:
        tok = self._expect(TokenType.IF, "'if'")
        condition = self._expression()
        then_branch = self._block()
        else_branch = None
        if self._match(TokenType.ELSE):
            else_branch = self._block()
        return If(condition, then_branch, else_branch, line=tok.line)

    def _while(self) -> Stmt:
        tok = self._expect(TokenType.WHILE, "'while'")
        condition = self._expression()
        body = self._block()
        return While(condition, body, line=tok.line)

    def _for(self) -> Stmt:
        tok = self._expect(TokenType.FOR, "'for'")
        var_tok = self._expect(TokenType.NAME, "loop variable name")
        self._expect(TokenType.IN, "'in'")
        iterable = self._expression()
        body = self._block()
        return For(var_tok.text, iterable, body, line=tok.line)

    def _function_def(self) -> Stmt:
        tok = self._expect(TokenType.DEF, "'def'")
        name_tok = self._expect(TokenType.NAME, "function name")
        self._expect(TokenType.LPAREN, "'('")
        params: List[str] = []
        if not self._check(TokenType.RPAREN):
            while True:
                params.append(self._expect(TokenType.NAME, "parameter name").text)
                if not self._match(TokenType.COMMA):
                    break
        self._expect(TokenType.RPAREN, "')'")
        body = self._block()
        return FunctionDef(name_tok.text, params, body, line=tok.line)

    def _return(self) -> Stmt:
        tok = self._expect(TokenType.RETURN, "'return'")
        value = None
        if not self._check(TokenType.NEWLINE):
            value = self._expression()
        self._expect(TokenType.NEWLINE, "newline")
        return Return(value, line=tok.line)

    def _global(self) -> Stmt:
        tok = self._expect(TokenType.GLOBAL, "'global'")
        names = [self._expect(TokenType.NAME, "variable name").text]
        while self._match(TokenType.COMMA):
            names.append(self._expect(TokenType.NAME, "variable name").text)
        self._expect(TokenType.NEWLINE, "newline")
        return Global(names, line=tok.line)

    # --- Expressions ---

    def _expression(self) -> Expr:
        return self._or()

    def _or(self) -> Expr:
        expr = self._and()
        while self._check(TokenType.OR):
            op = self._advance()
            expr = BinaryOp(expr, TokenType.OR, self._and(), line=op.line)
        return expr

    def _and(self) -> Expr:
        expr = self._not()
        while self._check(TokenType.AND):
            op = self._advance()
            expr = BinaryOp(expr, TokenType.AND, self._not(), line=op.line)
        return expr

    def _not(self) -> Expr:
        if self._check(TokenType.NOT):
            op = self._advance()
            return UnaryOp(TokenType.NOT, self._not(), line=op.line)
        return self._comparison()

    def _comparison(self) -> Expr:
        expr = self._additive()
        if self.current.type in COMPARISON_OPS:
            op = self._advance()
            expr = BinaryOp(expr, op.type, self._additive(), line=op.line)
        return expr

    def _additive(self) -> Expr:
        expr = self._term()
        while self.current.type in (TokenType.PLUS, TokenType.MINUS):
            op = self._advance()
            expr = BinaryOp(expr, op.type, self._term(), line=op.line)
        return expr

    def _term(self) -> Expr:
        expr = self._factor()
        while self.current.type in (TokenType.STAR, TokenType.SLASH, TokenType.PERCENT):
            op = self._advance()
            expr = BinaryOp(expr, op.type, self._factor(), line=op.line)
        return expr

    def _factor(self) -> Expr:
        if self._check(TokenType.MINUS):
            op = self._advance()
            return UnaryOp(TokenType.MINUS, self._factor(), line=op.line)
        return self._postfix(self._primary())

    def _primary(self) -> Expr:
        tok = self.current
        match tok.type:
            case TokenType.NUMBER:
                self._advance()
                try:
                    return NumberLiteral(float(tok.text), line=tok.line)
                except ValueError:
                    raise _syntax_error(f"Invalid number '{tok.text}'", tok.line) from None
            case TokenType.STRING:
                self._advance()
                return StringLiteral(self._strip_quotes(tok.text), line=tok.line)
            case TokenType.BOOLEAN:
                self._advance()
                return BooleanLiteral(tok.text == "True", line=tok.line)
            case TokenType.NAME:
                self._advance()
                return Name(tok.text, line=tok.line)
            case TokenType.LPAREN:
                self._advance()
                expr = self._expression()
                self._expect(TokenType.RPAREN, "')'")
                return expr
            case TokenType.LBRACKET:
                self._advance()
                elements = self._comma_list(TokenType.RBRACKET)
                self._expect(TokenType.RBRACKET, "']'")
                return ListLiteral(elements, line=tok.line)
        found = TOKEN_LABELS.get(tok.type) or f"'{tok.text}'"
        raise _syntax_error(f"Unexpected token {found}", tok.line)

    def _comma_list(self, closer: TokenType) -> List[Expr]:
        items: List[Expr] = []
        if self._check(closer):
            return items
        items.append(self._expression())
        while self._match(TokenType.COMMA):
            items.append(self._expression())
        return items

    def _postfix(self, node: Expr) -> Expr:
        while True:
            if self._match(TokenType.LPAREN):
                args = self._comma_list(TokenType.RPAREN)
                self._expect(TokenType.RPAREN, "')'")
                node = Call(node, args, line=node.line)
            elif self._match(TokenType.DOT):
                name_tok = self._expect(TokenType.NAME, "attribute name")
                node = Attribute(node, name_tok.text, line=node.line)
            elif self._match(TokenType.LBRACKET):
                node = self._subscript(node)
            else:
                return node

    def _subscript(self, target: Expr) -> Expr:
        start: Optional[Expr] = None
        if not self._check(TokenType.COLON):
            start = self._expression()
        if self._match(TokenType.COLON):
            end: Optional[Expr] = None
            if not self._check(TokenType.RBRACKET):
                end = self._expression()
            self._expect(TokenType.RBRACKET, "']'")
            return Slice(target, start, end, line=target.line)
        self._expect(TokenType.RBRACKET, "']'")
        return Index(target, start, line=target.line)

    @staticmethod
    def _strip_quotes(text: str) -> str:
        if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
            return text[1:-1]
        # Unterminated: the string ran to the end of the line
        return text[1:]


def parse(tokens: List[Token]) -> List[Stmt]:
    return Parser(tokens).parse()
