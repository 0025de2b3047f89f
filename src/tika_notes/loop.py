"""State machine behind the interactive search screen.

The loop owns the query buffer, the current result list and the selection
cursor. Every character-level edit re-parses the buffer and re-queries the
index synchronously; navigation only moves the cursor. The index connection
is opened once when the loop is entered and closed when it exits.
"""

import logging
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import List, Optional

from .config import PAGE_SIZE
from .document import NoteDocument
from .engine import SearchEngine
from .errors import QueryError, SearchEngineError
from .query import QueryNode, parse_query

logger = logging.getLogger(__name__)


class LoopState(Enum):
    EDITING = auto()
    EXITING = auto()


class EventKind(Enum):
    CHARACTER = auto()
    BACKSPACE = auto()
    NAVIGATE_UP = auto()
    NAVIGATE_DOWN = auto()
    ACCEPT = auto()
    CANCEL = auto()
    TICK = auto()


@dataclass(frozen=True)
class LoopEvent:
    kind: EventKind
    char: str = ""


class SearchLoop:
    def __init__(
        self,
        database: Path,
        page_size: int = PAGE_SIZE,
        engine: Optional[SearchEngine] = None,
    ):
        self.database = database
        self.page_size = page_size
        self.engine = engine
        self._owns_engine = engine is None

        self.state = LoopState.EDITING
        self.buffer = ""
        self.matches: List[NoteDocument] = []
        self.total = 0
        self.selected: Optional[int] = None
        self.query: Optional[QueryNode] = None
        self.message: Optional[str] = None
        self.result: Optional[str] = None
        self.ticks = 0

    def __enter__(self) -> "SearchLoop":
        if self.engine is None:
            self.engine = SearchEngine.open(self.database)
        self.refresh()
        return self

    def __exit__(self, *exc_info) -> None:
        if self._owns_engine and self.engine is not None:
            self.engine.close()
            self.engine = None

    @property
    def exiting(self) -> bool:
        return self.state is LoopState.EXITING

    @property
    def selection(self) -> Optional[NoteDocument]:
        if self.selected is None or not self.matches:
            return None
        return self.matches[self.selected]

    def handle(self, event: LoopEvent) -> bool:
        """Apply one input event; returns True when the screen needs a redraw."""
        if self.exiting:
            return False

        kind = event.kind
        if kind is EventKind.CHARACTER:
            self.buffer += event.char
            self.refresh()
        elif kind is EventKind.BACKSPACE:
            if not self.buffer:
                return False
            self.buffer = self.buffer[:-1]
            self.refresh()
        elif kind is EventKind.NAVIGATE_DOWN:
            self.next()
        elif kind is EventKind.NAVIGATE_UP:
            self.previous()
        elif kind is EventKind.ACCEPT:
            selection = self.selection
            self.result = selection.full_path if selection else ""
            self.state = LoopState.EXITING
        elif kind is EventKind.CANCEL:
            self.buffer = ""
            self.result = None
            self.state = LoopState.EXITING
        elif kind is EventKind.TICK:
            self.ticks += 1
            return False
        return True

    def refresh(self) -> None:
        """Re-parse the buffer and replace the result list.

        The word under the cursor matches as a prefix until it is followed
        by whitespace.
        """
        try:
            query = parse_query(self.buffer, partial=True)
        except QueryError as e:
            # Keep the buffer and the previous results so the user can fix the query
            self.message = str(e)
            logger.debug("Query not submitted: %s", e)
            return

        self.query = query
        try:
            match_set = self.engine.search(query, limit=self.page_size)
        except SearchEngineError as e:
            logger.warning("Search failed: %s", e)
            self.message = f"Search failed: {e.message}"
            self.matches, self.total, self.selected = [], 0, None
            return

        self.message = None
        self.matches = [match.document for match in match_set]
        self.total = match_set.total
        self.selected = 0 if self.matches else None

    def next(self) -> None:
        if not self.matches:
            return
        if self.selected is None or self.selected >= len(self.matches) - 1:
            self.selected = 0
        else:
            self.selected += 1

    def previous(self) -> None:
        if not self.matches:
            return
        if self.selected is None:
            self.selected = 0
        elif self.selected == 0:
            self.selected = len(self.matches) - 1
        else:
            self.selected -= 1
