"""Indexing runs: find notes, parse them and upsert them into the index."""

import glob
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional, Tuple

from .document import parse_file
from .engine import SearchEngine
from .errors import DocumentError

logger = logging.getLogger(__name__)


@dataclass
class IndexReport:
    indexed: List[Path] = field(default_factory=list)
    failed: List[Tuple[Path, Exception]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.indexed) + len(self.failed)

    def summary(self) -> str:
        return f"Indexed {len(self.indexed)}/{self.total} notes, {len(self.failed)} failed"


def glob_files(pattern: str) -> Iterator[Path]:
    """Yield regular files matching a glob pattern; ``~`` and ``**`` are supported."""
    expanded = os.path.expanduser(pattern)
    logger.info("Sourcing Markdown documents matching: %s", expanded)
    for match in sorted(glob.iglob(expanded, recursive=True)):
        path = Path(match)
        if path.is_file():
            yield path


def index_files(
    engine: SearchEngine,
    paths: Iterable[Path],
    progress_callback: Optional[Any] = None,
) -> IndexReport:
    """Upsert every readable note and commit once at the end.

    Unreadable files and notes with bad front matter are reported and
    skipped; search engine errors propagate.
    """
    paths = list(paths)
    report = IndexReport()

    for processed, path in enumerate(paths, start=1):
        try:
            doc = parse_file(path)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Cannot read %s: %s", path, e)
            report.failed.append((path, e))
        except DocumentError as e:
            logger.warning("Skipping %s: %s", path, e)
            report.failed.append((path, e))
        else:
            engine.replace_document(doc.id_term, doc.to_payload(), doc.index_terms())
            report.indexed.append(path)
            logger.debug("Indexed %s as %s", path, doc.id)

        if progress_callback:
            progress = int((processed / len(paths)) * 100)
            progress_callback(progress, f"Processed {processed}/{len(paths)} notes")

    engine.commit()
    logger.info(report.summary())
    return report


def index_glob(database: Path, pattern: str, progress_callback: Optional[Any] = None) -> IndexReport:
    """Index every note matching pattern into the database at ``database``."""
    with SearchEngine.open(database, writable=True) as engine:
        return index_files(engine, glob_files(pattern), progress_callback)
