"""Boolean selection expressions.

Grammar:

    expression := expr? EOF
    expr       := and_expr ("or" and_expr)*
    and_expr   := not_expr ("and" not_expr)*
    not_expr   := "not" not_expr | "(" expr ")" | ident
    ident      := [A-Za-z0-9_.:+\\-\\[\\]\\\\/]+

An empty expression matches everything. Identifiers are resolved by a
caller-supplied matcher, so the same grammar serves mark selection (exact
mark names) and keyword selection (substring matches).

Malformed input raises `ParseError` at compile time with the offending token
and its column, before any test runs.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import NoReturn

from vigil.domain.errors import ParseError

Matcher = Callable[[str], bool]
_Node = Callable[[Matcher], bool]

_IDENT_RE = re.compile(r"[\w.:+\-\[\]\\/]+")


class TokenType(Enum):
    """Lexical categories of the expression language."""

    LPAREN = "left parenthesis"
    RPAREN = "right parenthesis"
    OR = "or"
    AND = "and"
    NOT = "not"
    IDENT = "identifier"
    EOF = "end of input"


@dataclass(frozen=True)
class Token:
    """A lexed token; `pos` is the 0-based offset in the input."""

    type: TokenType
    value: str
    pos: int


class Scanner:
    """Tokenizer with one token of lookahead."""

    def __init__(self, text: str) -> None:
        self.text = text
        self._tokens = self._lex(text)
        self.current = next(self._tokens)

    def _lex(self, text: str) -> Iterator[Token]:
        pos = 0
        while True:
            while pos < len(text) and text[pos].isspace():
                pos += 1
            if pos >= len(text):
                yield Token(TokenType.EOF, "", pos)
                return
            char = text[pos]
            if char == "(":
                yield Token(TokenType.LPAREN, char, pos)
                pos += 1
                continue
            if char == ")":
                yield Token(TokenType.RPAREN, char, pos)
                pos += 1
                continue
            if match := _IDENT_RE.match(text, pos):
                value = match.group(0)
                keyword = {"or": TokenType.OR, "and": TokenType.AND, "not": TokenType.NOT}
                yield Token(keyword.get(value, TokenType.IDENT), value, pos)
                pos += len(value)
                continue
            raise ParseError(
                text, pos + 1, char, f"unexpected character {char!r}"
            )

    def accept(self, type_: TokenType) -> Token | None:
        """Consume and return the current token if it has the given type."""
        if self.current.type is type_:
            token = self.current
            if token.type is not TokenType.EOF:
                self.current = next(self._tokens)
            return token
        return None

    def expect(self, *types: TokenType) -> Token:
        """Consume a token of one of `types`, or raise ParseError."""
        for type_ in types:
            if token := self.accept(type_):
                return token
        self.reject(types)

    def reject(self, expected: tuple[TokenType, ...]) -> NoReturn:
        """Raise a ParseError describing the unexpected current token."""
        got = self.current
        raise ParseError(
            self.text,
            got.pos + 1,
            got.value,
            "expected {}; got {}".format(
                " OR ".join(t.value for t in expected),
                got.type.value if got.type is TokenType.EOF else repr(got.value),
            ),
        )


# ============================================================================
#                               Parser
# ============================================================================


def _expression(scanner: Scanner) -> _Node:
    if scanner.accept(TokenType.EOF):
        return lambda matcher: True
    node = _expr(scanner)
    scanner.expect(TokenType.EOF)
    return node


def _expr(scanner: Scanner) -> _Node:
    operands = [_and_expr(scanner)]
    while scanner.accept(TokenType.OR):
        operands.append(_and_expr(scanner))
    if len(operands) == 1:
        return operands[0]
    return lambda matcher: any(op(matcher) for op in operands)


def _and_expr(scanner: Scanner) -> _Node:
    operands = [_not_expr(scanner)]
    while scanner.accept(TokenType.AND):
        operands.append(_not_expr(scanner))
    if len(operands) == 1:
        return operands[0]
    return lambda matcher: all(op(matcher) for op in operands)


def _not_expr(scanner: Scanner) -> _Node:
    if scanner.accept(TokenType.NOT):
        operand = _not_expr(scanner)
        return lambda matcher: not operand(matcher)
    if scanner.accept(TokenType.LPAREN):
        inner = _expr(scanner)
        scanner.expect(TokenType.RPAREN)
        return inner
    if ident := scanner.accept(TokenType.IDENT):
        name = ident.value
        return lambda matcher: matcher(name)
    scanner.reject((TokenType.NOT, TokenType.LPAREN, TokenType.IDENT))


class Expression:
    """A compiled selection expression.

    Example:
        ```py
        expr = Expression.compile("smoke and not slow")
        expr.evaluate(lambda name: name in {"smoke"})  # True
        ```
    """

    __slots__ = ("source", "_node")

    def __init__(self, source: str, node: _Node) -> None:
        self.source = source
        self._node = node

    @classmethod
    def compile(cls, source: str) -> Expression:
        """Parse `source` into an Expression.

        Raises:
            ParseError: If the expression is malformed.
        """
        return cls(source, _expression(Scanner(source)))

    def evaluate(self, matcher: Matcher) -> bool:
        """Evaluate the expression, resolving identifiers with `matcher`."""
        return self._node(matcher)

    def __repr__(self) -> str:
        return f"Expression({self.source!r})"
