"""Field prefix scheme shared by indexing and query parsing.

Every semantic field maps to a short uppercase term prefix. Terms generated
for a field at index time carry the prefix, and a ``field:value`` query term
is resolved through the same table, so ``author:jane`` can only ever match
``jane`` indexed as an author.

Words are indexed twice: as typed, for phrases and prefix matching, and as
English stems under ``Z`` so ``meetings`` finds ``meeting``. Tags, file
names, paths and dates are matched exactly and never stemmed.
"""

import re
from enum import Enum
from typing import List, Optional

from nltk.stem.snowball import SnowballStemmer

# Unique boolean term identifying a document
ID_PREFIX = "Q"

# Marks a stemmed term, in front of the field prefix
STEM_PREFIX = "Z"

# Value slots holding sortable timestamps of the note, in UTC and in the
# offset the note was written with
DATE_SLOT = 0
LOCAL_DATE_SLOT = 1


class Field(Enum):
    AUTHOR = ("author", "A", True)
    DATE = ("date", "D", False)
    FILENAME = ("filename", "F", False)
    FULLPATH = ("fullpath", "F", False)
    TITLE = ("title", "S", True)
    SUBTITLE = ("subtitle", "XS", True)
    TAG = ("tag", "K", False)

    def __init__(self, field_name: str, prefix: str, stemmed: bool):
        self.field_name = field_name
        self.prefix = prefix
        self.stemmed = stemmed

    @property
    def slot(self) -> Optional[int]:
        """Value slot for fields that support range comparisons."""
        if self is Field.DATE:
            return DATE_SLOT
        return None

    @classmethod
    def lookup(cls, name: str) -> Optional["Field"]:
        """Case-insensitive lookup; unknown names return None."""
        name = name.lower()
        for field in cls:
            if field.field_name == name:
                return field
        return None

    def __str__(self) -> str:
        return f"<{self.prefix}>"


def prefix_for(field: Optional[Field]) -> str:
    """Term prefix for a field, the empty string for full text."""
    return field.prefix if field is not None else ""


def is_stemmed(field: Optional[Field]) -> bool:
    return field is None or field.stemmed


WORD_PATTERN = re.compile(r"\w+")

_stemmer = SnowballStemmer("english")


def analyze(text: str) -> List[str]:
    """Split free text into lowercase index words."""
    return [match.group(0).lower() for match in WORD_PATTERN.finditer(text)]


def stem(word: str) -> str:
    return _stemmer.stem(word)


def make_terms(field: Optional[Field], text: str) -> List[str]:
    """Analyze text and tag every word with the field's prefix."""
    prefix = prefix_for(field)
    return [prefix + word for word in analyze(text)]


def stemmed_term(field: Optional[Field], word: str) -> Optional[str]:
    """The stemmed term for an analyzed word, None for exact-match fields."""
    if not is_stemmed(field):
        return None
    return STEM_PREFIX + prefix_for(field) + stem(word)
