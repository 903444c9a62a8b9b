"""Unit tests for selection expressions."""

import pytest

from vigil.domain.errors import ParseError
from vigil.service_layer.expression import Expression, Scanner, TokenType

# pylint: disable=magic-value-comparison


def matcher_for(*names: str):
    """Return a matcher that accepts exactly `names`."""
    return lambda name: name in names


# --- Tests ---


def test_empty_expression_matches_everything() -> None:
    """An empty (or blank) expression selects every item."""
    assert Expression.compile("").evaluate(matcher_for())
    assert Expression.compile("   ").evaluate(matcher_for())


@pytest.mark.parametrize(
    ("names", "expected"),
    [
        ({"a"}, True),
        ({"a", "b"}, False),
        ({"b"}, False),
        (set(), False),
    ],
)
def test_a_and_not_b(names: set[str], expected: bool) -> None:
    """`a and not b` selects only items marked a and not b."""
    assert Expression.compile("a and not b").evaluate(matcher_for(*names)) is expected


@pytest.mark.parametrize(
    ("source", "names", "expected"),
    [
        ("a or b and c", {"a"}, True),
        ("(a or b) and c", {"a"}, False),
        ("not not a", {"a"}, True),
        ("not (a or b)", {"c"}, True),
        ("a and b or c", {"c"}, True),
    ],
)
def test_precedence(source: str, names: set[str], expected: bool) -> None:
    """`not` binds tighter than `and`, which binds tighter than `or`."""
    assert Expression.compile(source).evaluate(matcher_for(*names)) is expected


def test_identifiers_allow_path_characters() -> None:
    """Identifiers may contain dots, colons, brackets, slashes and dashes."""
    seen: list[str] = []
    Expression.compile("test_x.py::test_a[1-2] or a/b+c").evaluate(
        lambda name: seen.append(name) or False
    )
    assert seen == ["test_x.py::test_a[1-2]", "a/b+c"]


def test_keywords_are_tokens() -> None:
    """The scanner recognizes the keywords and parentheses."""
    scanner = Scanner("not (a)")
    types = []
    while scanner.current.type is not TokenType.EOF:
        types.append(scanner.current.type)
        scanner.accept(scanner.current.type)
    assert types == [TokenType.NOT, TokenType.LPAREN, TokenType.IDENT, TokenType.RPAREN]


@pytest.mark.parametrize(
    ("source", "column", "token"),
    [
        ("a and", 6, ""),
        ("a b", 3, "b"),
        ("(a", 3, ""),
        ("a )", 3, ")"),
        ("and", 1, "and"),
        ("a @ b", 3, "@"),
        ("not", 4, ""),
    ],
)
def test_malformed_expressions(source: str, column: int, token: str) -> None:
    """Malformed input reports the offending token and its 1-based column."""
    with pytest.raises(ParseError) as excinfo:
        Expression.compile(source)
    assert excinfo.value.column == column
    assert excinfo.value.token == token
    assert excinfo.value.expression == source


def test_error_message_lists_expectations() -> None:
    """The message says what was expected and what was found."""
    with pytest.raises(ParseError, match="expected not OR left parenthesis OR identifier; got end of input"):
        Expression.compile("a or")
