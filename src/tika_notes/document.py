"""Note documents: front matter parsing, normalization and index terms.

Example note::

    ---
    author: Steve Sosik
    date: 2021-06-22T12:48:16-0400
    tags:
    - tika
    title: This is an example note
    ---

    Some note here formatted with Markdown syntax
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import date as date_type, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import frontmatter
import yaml

from .errors import FrontMatterError, TimestampError
from .fields import DATE_SLOT, ID_PREFIX, LOCAL_DATE_SLOT, Field, analyze, prefix_for, stemmed_term

logger = logging.getLogger(__name__)

# Fallback for offsets written without a colon, e.g. -0400
FALLBACK_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"
SORTABLE_DATE_FORMAT = "%Y%m%d%H%M%S"
# Words indexed under the date prefix, in the note's own offset
INDEXED_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Gap between fields so phrases never match across them
FIELD_GAP = 100


def document_id(filename: str) -> str:
    """Stable identifier derived from the note's filename."""
    return hashlib.sha1(filename.encode("utf-8")).hexdigest()


def parse_date(value: Any, filename: str = "") -> datetime:
    """Parse a front matter date into an offset-aware datetime."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            raise TimestampError(f"Date '{value}' has no UTC offset", filename)
        return value
    if isinstance(value, date_type):
        raise TimestampError(f"Date '{value}' has no time or UTC offset", filename)
    if not isinstance(value, str) or not value.strip():
        raise TimestampError(f"Invalid date {value!r}", filename)

    text = value.strip()
    parsed = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = datetime.strptime(text, FALLBACK_DATE_FORMAT)
        except ValueError:
            pass

    if parsed is None:
        raise TimestampError(f"Cannot parse date '{text}'", filename)
    if parsed.tzinfo is None:
        raise TimestampError(f"Date '{text}' has no UTC offset", filename)
    return parsed


def date_bound(text: str) -> Tuple[int, str]:
    """Value slot and sortable form of a date bound typed in a query.

    Full timestamps are converted to UTC and compared with the UTC slot.
    Partial dates such as ``2021-06`` keep their digits and compare as
    prefixes of the note's own local time, which is how ``D`` words read.
    The value is empty when the bound has no digits at all.
    """
    try:
        return DATE_SLOT, parse_date(text).astimezone(timezone.utc).strftime(SORTABLE_DATE_FORMAT)
    except TimestampError:
        return LOCAL_DATE_SLOT, "".join(ch for ch in text if ch.isdigit())


def normalize_tags(value: Any, filename: str = "") -> List[str]:
    """Accept tags as a single scalar or a list and always return a list."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        tags = []
        for item in value:
            if isinstance(item, (dict, list, tuple)) or item is None:
                raise FrontMatterError(f"Invalid tag {item!r}", filename)
            tags.append(str(item))
        return tags
    if isinstance(value, dict):
        raise FrontMatterError("'tags' must be a string or a list of strings", filename)
    return [str(value)]


def _text_field(metadata: Dict[str, Any], key: str, filename: str) -> str:
    value = metadata.get(key)
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        raise FrontMatterError(f"'{key}' must be a string", filename)
    return str(value)


@dataclass
class TermSet:
    """Terms, positions and values generated for one document."""

    positions: Dict[str, List[int]] = field(default_factory=dict)
    boolean_terms: Set[str] = field(default_factory=set)
    values: Dict[int, str] = field(default_factory=dict)
    length: int = 0
    termpos: int = 0

    def index_text(self, text: str, field: Optional[Field] = None) -> None:
        prefix = prefix_for(field)
        for word in analyze(text):
            self.termpos += 1
            self.add_posting(prefix + word)
            stemmed = stemmed_term(field, word)
            if stemmed is not None:
                self.add_posting(stemmed)
            self.length += 1

    def add_posting(self, term: str) -> None:
        self.positions.setdefault(term, []).append(self.termpos)

    def increase_termpos(self, delta: int = FIELD_GAP) -> None:
        self.termpos += delta

    def add_boolean_term(self, term: str) -> None:
        self.boolean_terms.add(term)

    def add_value(self, slot: int, value: str) -> None:
        self.values[slot] = value


@dataclass(frozen=True)
class NoteDocument:
    id: str
    filename: str
    full_path: str
    date: str
    timestamp: datetime
    author: str = ""
    title: str = ""
    subtitle: str = ""
    tags: List[str] = field(default_factory=list)
    body: str = ""

    @property
    def id_term(self) -> str:
        return ID_PREFIX + self.id

    @property
    def sortable_date(self) -> str:
        return self.timestamp.astimezone(timezone.utc).strftime(SORTABLE_DATE_FORMAT)

    @property
    def local_sortable_date(self) -> str:
        return self.timestamp.strftime(SORTABLE_DATE_FORMAT)

    @property
    def display_title(self) -> str:
        return self.title or Path(self.filename).stem

    def front_matter(self) -> Dict[str, Any]:
        """Metadata as authored; never includes the path or the body."""
        metadata: Dict[str, Any] = {
            "author": self.author,
            "date": self.date,
            "filename": self.filename,
            "tags": list(self.tags),
            "title": self.title,
        }
        if self.subtitle:
            metadata["subtitle"] = self.subtitle
        return metadata

    def to_markdown(self) -> str:
        post = frontmatter.Post(self.body, **self.front_matter())
        return frontmatter.dumps(post)

    def to_payload(self) -> str:
        """Serialize to the JSON payload stored with the index entry."""
        data = self.front_matter()
        data["subtitle"] = self.subtitle
        data["full_path"] = self.full_path
        data["body"] = self.body
        return json.dumps(data, ensure_ascii=False)

    @classmethod
    def from_payload(cls, payload: str) -> "NoteDocument":
        data = json.loads(payload)
        filename = data["filename"]
        return cls(
            id=document_id(filename),
            filename=filename,
            full_path=data.get("full_path", ""),
            date=data["date"],
            timestamp=parse_date(data["date"], filename),
            author=data.get("author", ""),
            title=data.get("title", ""),
            subtitle=data.get("subtitle", ""),
            tags=normalize_tags(data.get("tags"), filename),
            body=data.get("body", ""),
        )

    def index_terms(self) -> TermSet:
        """Generate the field-prefixed and full-text terms for this note."""
        terms = TermSet()

        for text, field_ in (
            (self.title, Field.TITLE),
            (self.subtitle, Field.SUBTITLE),
            (self.author, Field.AUTHOR),
        ):
            if text:
                terms.index_text(text, field_)
                terms.increase_termpos()
                terms.index_text(text)
                terms.increase_termpos()

        for tag in self.tags:
            terms.index_text(tag, Field.TAG)
            terms.increase_termpos()
            terms.index_text(tag)
            terms.increase_termpos()

        terms.index_text(self.filename, Field.FILENAME)
        terms.increase_termpos()
        terms.index_text(self.full_path, Field.FULLPATH)
        terms.increase_termpos()

        terms.index_text(self.timestamp.strftime(INDEXED_DATE_FORMAT), Field.DATE)
        terms.increase_termpos()
        terms.add_value(DATE_SLOT, self.sortable_date)
        terms.add_value(LOCAL_DATE_SLOT, self.local_sortable_date)

        terms.index_text(self.body)
        terms.add_boolean_term(self.id_term)
        return terms


def parse_text(text: str, path: Path) -> NoteDocument:
    """Build a document from note contents; ``path`` is where it was read from."""
    filename = path.name
    if not frontmatter.checks(text):
        raise FrontMatterError("Missing front matter block", filename)

    try:
        post = frontmatter.loads(text)
    except yaml.YAMLError as e:
        raise FrontMatterError(f"Invalid front matter: {e}", filename) from e
    except (TypeError, ValueError) as e:
        raise FrontMatterError(f"Front matter must be a mapping: {e}", filename) from e

    metadata = post.metadata
    declared = _text_field(metadata, "filename", filename)
    if declared and declared != filename:
        logger.debug("%s declares filename %s", path, declared)
        filename = declared

    if "date" not in metadata:
        raise TimestampError("Missing 'date'", filename)
    raw_date = metadata["date"]
    timestamp = parse_date(raw_date, filename)
    date = raw_date.isoformat() if isinstance(raw_date, datetime) else str(raw_date).strip()

    return NoteDocument(
        id=document_id(filename),
        filename=filename,
        full_path=str(path.resolve()),
        date=date,
        timestamp=timestamp,
        author=_text_field(metadata, "author", filename),
        title=_text_field(metadata, "title", filename),
        subtitle=_text_field(metadata, "subtitle", filename),
        tags=normalize_tags(metadata.get("tags"), filename),
        body=post.content,
    )


def parse_file(path: Path) -> NoteDocument:
    """Read and parse a note; I/O errors propagate as OSError."""
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()
    return parse_text(text, Path(path))
