"""Query builder: folds lexer tokens into a boolean query tree.

The fold is strictly left-associative and has no operator precedence:
``a OR b AND c`` means ``(a OR b) AND c``. Two operands with no operator
between them are combined with OR.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union

from .config import MAX_QUERY_DEPTH
from .document import date_bound
from .errors import QuerySyntaxError, QueryTooComplexError
from .fields import Field, analyze, make_terms, stemmed_term
from .lexer import WILDCARD, Operator, Token, TokenKind, tokenize

logger = logging.getLogger(__name__)

DEFAULT_OPERATOR = Operator.OR

POSITIONAL_OPERATORS = (Operator.NEAR, Operator.PHRASE)
VALUE_OPERATORS = (Operator.VALUE_GE, Operator.VALUE_LE, Operator.RANGE)


@dataclass(frozen=True)
class Leaf:
    """A single term or phrase, optionally scoped to a field.

    A prefix leaf matches every indexed term its last word starts with.
    """

    field: Optional[Field]
    text: str
    prefix: bool = False

    @classmethod
    def match_all(cls) -> "Leaf":
        return cls(None, "")

    @property
    def is_match_all(self) -> bool:
        return self.field is None and not self.text

    @property
    def depth(self) -> int:
        return 0

    def stemmed(self) -> Optional[str]:
        """Stemmed term for a single word in a stemmed field."""
        words = analyze(self.text)
        if len(words) != 1:
            return None
        return stemmed_term(self.field, words[0])

    def terms(self) -> List[str]:
        if not self.prefix:
            stemmed = self.stemmed()
            if stemmed is not None:
                return [stemmed]
        return make_terms(self.field, self.text)

    def describe(self) -> str:
        if self.is_match_all:
            return "<alldocuments>"
        terms = self.terms()
        if self.prefix and terms:
            terms[-1] += WILDCARD
        if len(terms) == 1:
            return terms[0]
        return "(" + " PHRASE ".join(terms) + ")"

    def __str__(self) -> str:
        return self.describe()


@dataclass(frozen=True)
class Composite:
    """Two sub-queries joined by an operator."""

    left: "QueryNode"
    operator: Operator
    right: "QueryNode"

    @property
    def depth(self) -> int:
        # Only the left spine grows; right operands are always leaves
        return self.left.depth + 1

    def describe(self) -> str:
        return f"({self.left.describe()} {self.operator} {self.right.describe()})"

    def __str__(self) -> str:
        return self.describe()


QueryNode = Union[Leaf, Composite]


def is_positional(node: QueryNode) -> bool:
    """Whether term positions can be computed for a node (NEAR / PHRASE operands)."""
    if isinstance(node, Leaf):
        return bool(node.terms())
    return node.operator in POSITIONAL_OPERATORS


def scale_factor(node: QueryNode) -> Optional[float]:
    if not isinstance(node, Leaf) or node.field is not None:
        return None
    try:
        factor = float(node.text)
    except ValueError:
        return None
    return factor if factor >= 0 else None


def _operand(text: str, quoted: bool, partial: bool) -> Tuple[str, bool]:
    if quoted:
        return text, False
    if text.endswith(WILDCARD):
        return text[: -len(WILDCARD)], True
    return text, partial


def leaf_for_token(token: Token, partial: bool = False) -> Leaf:
    """Resolve an operand token into a leaf.

    ``partial`` marks the word being typed, which then matches as a prefix.
    """
    if token.kind is TokenKind.FIELD_TERM:
        field = Field.lookup(token.field_name)
        if field is None:
            logger.debug("Unknown field '%s', searching full text", token.field_name)
            return Leaf(None, *_operand(token.text, token.quoted, partial))
        return Leaf(field, *_operand(token.value, token.quoted, partial))
    return Leaf(None, *_operand(token.value, token.quoted, partial))


def _error(message: str, token: Token) -> QuerySyntaxError:
    pos = token.position
    return QuerySyntaxError(message, token.text, pos.offset, pos.line, pos.column)


def combine(left: QueryNode, operator: Operator, right: Leaf, token: Token) -> Composite:
    """Join two operands, checking the operator's operand requirements."""
    if operator in POSITIONAL_OPERATORS:
        if not is_positional(left) or not is_positional(right):
            raise _error(f"{operator} needs term or phrase operands", token)

    elif operator is Operator.SCALED:
        if scale_factor(right) is None:
            raise _error("SCALED needs a non-negative number", token)

    elif operator in VALUE_OPERATORS:
        if right.field is None or right.field.slot is None:
            raise _error(f"{operator} needs a bound on a field with values, e.g. date:2021-06-01", token)
        if operator is Operator.RANGE:
            if not isinstance(left, Leaf) or left.field is not right.field:
                raise _error(f"RANGE needs two {right.field.field_name}: bounds", token)
        bounds = (left, right) if operator is Operator.RANGE else (right,)
        for bound in bounds:
            _, value = date_bound(bound.text)
            if not value:
                raise _error(f"'{bound.text}' is not a date bound, e.g. date:2021-06-01", token)

    composite = Composite(left, operator, right)
    if composite.depth > MAX_QUERY_DEPTH:
        raise QueryTooComplexError(composite.depth, MAX_QUERY_DEPTH)
    return composite


def build_query(tokens: Iterable[Token], partial: bool = False) -> QueryNode:
    """Fold a token stream into a single query tree.

    With ``partial`` set, a word or unquoted field value at the very end of
    the stream is still being typed and matches as a prefix.
    """
    tokens = list(tokens)
    last = tokens[-1] if tokens else None
    query: Optional[QueryNode] = None
    pending: Optional[Operator] = None
    pending_token: Optional[Token] = None

    for token in tokens:
        if token.kind is TokenKind.WHITESPACE:
            continue

        if token.kind is TokenKind.OPERATOR:
            if query is None:
                raise _error("Operator with no left-hand operand", token)
            pending, pending_token = token.operator, token
            continue

        leaf = leaf_for_token(token, partial and token is last)
        if query is None:
            query = leaf
            continue

        operator = pending or DEFAULT_OPERATOR
        query = combine(query, operator, leaf, token)
        pending, pending_token = None, None

    if pending_token is not None:
        logger.debug("Ignoring trailing operator %s", pending_token.text)

    if query is None:
        return Leaf.match_all()
    return query


def parse_query(text: str, partial: bool = False) -> QueryNode:
    """Parse a user query string; an empty string matches everything."""
    return build_query(tokenize(text), partial)
