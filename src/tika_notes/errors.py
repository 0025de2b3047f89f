"""Error types for the note indexing and search application."""

from typing import Optional


class TikaError(Exception):
    """Base class for all application errors."""


class ConfigError(TikaError):
    """Configuration file missing or malformed."""


class DocumentError(TikaError):
    """A note could not be turned into a document."""

    def __init__(self, message: str, filename: str = ""):
        super().__init__(message)
        self.message = message
        self.filename = filename

    def __str__(self) -> str:
        if self.filename:
            return f"{self.filename}: {self.message}"
        return self.message


class FrontMatterError(DocumentError):
    """Missing or invalid front matter block."""


class TimestampError(DocumentError):
    """The front matter date could not be parsed."""


class QueryError(TikaError):
    """Base class for query parsing errors."""


class QuerySyntaxError(QueryError):
    """The query string is malformed.

    Carries the offending fragment and where it was found, so the
    interactive loop can point at it.
    """

    def __init__(
        self,
        message: str,
        fragment: str = "",
        offset: int = 0,
        line: int = 1,
        column: int = 1,
    ):
        super().__init__(message)
        self.message = message
        self.fragment = fragment
        self.offset = offset
        self.line = line
        self.column = column

    def __str__(self) -> str:
        location = f"line {self.line}, column {self.column}"
        if self.fragment:
            return f"{self.message} at {location}: {self.fragment!r}"
        return f"{self.message} at {location}"


class QueryTooComplexError(QueryError):
    """The query nests deeper than the builder allows."""

    def __init__(self, depth: int, limit: int):
        super().__init__(f"Query too complex: {depth} operators (limit {limit})")
        self.depth = depth
        self.limit = limit


class SearchEngineError(TikaError):
    """The search engine could not be opened, written or queried."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.path = path
