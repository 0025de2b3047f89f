"""Tokenizer for the boolean note query language.

Tokens are matched in priority order at each offset: quoted phrase, field
term (``name:value``), operator keyword, bare word, whitespace. Operator
keywords are matched case-insensitively and longest first, so ``AND NOT``
and ``AND MAYBE`` are never split into ``AND`` and a stray word. An unquoted
word or field value may end in ``*`` to ask for every term it prefixes.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Tuple

from .errors import QuerySyntaxError


class TokenKind(Enum):
    OPERATOR = "operator"
    FIELD_TERM = "field"
    PHRASE = "phrase"
    WORD = "word"
    WHITESPACE = "whitespace"


class Operator(Enum):
    """Boolean combinators understood by the search engine."""

    AND_NOT = "AND NOT"
    AND_MAYBE = "AND MAYBE"
    AND = "AND"
    XOR = "XOR"
    OR = "OR"
    FILTER = "FILTER"
    NEAR = "NEAR"
    PHRASE = "PHRASE"
    RANGE = "RANGE"
    SCALED = "SCALED"
    ELITE = "ELITE"
    VALUE_GE = ">"
    VALUE_LE = "<"
    SYNONYM = "SYNONYM"

    def __str__(self) -> str:
        return self.name


def _keyword_pattern(keyword: str) -> str:
    if not keyword.isalpha() and " " not in keyword:
        return re.escape(keyword)
    words = [re.escape(word) for word in keyword.split()]
    return r"\s+".join(words) + r"(?!\w)"


# Longest keywords first so a prefix never shadows a longer operator
OPERATOR_PATTERNS: List[Tuple[Operator, re.Pattern]] = [
    (op, re.compile(_keyword_pattern(op.value), re.IGNORECASE))
    for op in sorted(Operator, key=lambda op: len(op.value), reverse=True)
]

# A trailing * marks a word as a prefix wildcard
WILDCARD = "*"
WORD_PATTERN = re.compile(r"\w+(?:[-./']\w+)*\*?")
WHITESPACE_PATTERN = re.compile(r"\s+")
QUOTES = "\"'"


@dataclass(frozen=True)
class Position:
    offset: int
    line: int
    column: int

    @classmethod
    def at(cls, text: str, offset: int) -> "Position":
        """Line and column (both 1-based) of an offset into text."""
        line = text.count("\n", 0, offset) + 1
        line_start = text.rfind("\n", 0, offset) + 1
        return cls(offset, line, offset - line_start + 1)


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    position: Position
    value: str = ""
    field_name: str = ""
    operator: Optional[Operator] = None
    quoted: bool = False

    def __str__(self) -> str:
        if self.kind is TokenKind.OPERATOR:
            return f"<{self.operator}>"
        if self.kind is TokenKind.FIELD_TERM:
            return f"{self.field_name}:{self.value!r}"
        return f"{self.kind.value}({self.text!r})"


def _syntax_error(message: str, query: str, offset: int, end: Optional[int] = None) -> QuerySyntaxError:
    position = Position.at(query, offset)
    fragment = query[offset:end] if end is not None else query[offset:]
    return QuerySyntaxError(message, fragment, offset, position.line, position.column)


def _match_quoted(query: str, offset: int) -> Optional[Tuple[str, int]]:
    """Match a quoted phrase at offset, returning (contents, end)."""
    if offset >= len(query) or query[offset] not in QUOTES:
        return None
    quote = query[offset]
    close = query.find(quote, offset + 1)
    if close == -1:
        raise _syntax_error("Unterminated quote", query, offset)
    contents = query[offset + 1 : close]
    if not contents.strip():
        raise _syntax_error("Empty phrase", query, offset, close + 1)
    return contents, close + 1


def _match_field_term(query: str, offset: int) -> Optional[Token]:
    name = WORD_PATTERN.match(query, offset)
    if not name or "'" in name.group(0) or name.group(0).endswith(WILDCARD):
        return None
    colon = name.end()
    if colon >= len(query) or query[colon] != ":":
        return None

    value_start = colon + 1
    quoted = _match_quoted(query, value_start)
    if quoted:
        value, end = quoted
    else:
        word = WORD_PATTERN.match(query, value_start)
        if not word:
            raise _syntax_error("Field term without a value", query, offset, value_start)
        value, end = word.group(0), word.end()

    return Token(
        TokenKind.FIELD_TERM,
        query[offset:end],
        Position.at(query, offset),
        value=value,
        field_name=name.group(0),
        quoted=quoted is not None,
    )


def _match_operator(query: str, offset: int) -> Optional[Token]:
    for op, pattern in OPERATOR_PATTERNS:
        match = pattern.match(query, offset)
        if match:
            return Token(
                TokenKind.OPERATOR,
                match.group(0),
                Position.at(query, offset),
                operator=op,
            )
    return None


def iter_tokens(query: str) -> Iterator[Token]:
    offset = 0
    while offset < len(query):
        quoted = _match_quoted(query, offset)
        if quoted:
            value, end = quoted
            yield Token(
                TokenKind.PHRASE, query[offset:end], Position.at(query, offset), value=value, quoted=True
            )
            offset = end
            continue

        token = _match_field_term(query, offset) or _match_operator(query, offset)
        if token is None:
            match = WORD_PATTERN.match(query, offset)
            if match:
                token = Token(TokenKind.WORD, match.group(0), Position.at(query, offset), value=match.group(0))
            else:
                # Whitespace, or a stray character acting as a separator
                match = WHITESPACE_PATTERN.match(query, offset)
                end = match.end() if match else offset + 1
                token = Token(TokenKind.WHITESPACE, query[offset:end], Position.at(query, offset))

        yield token
        offset += len(token.text)


def tokenize(query: str) -> List[Token]:
    """Split a query string into tokens, raising QuerySyntaxError if malformed."""
    return list(iter_tokens(query))
