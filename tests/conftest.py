"""Shared fixtures: a small notes directory and an index built from it."""

from pathlib import Path

import pytest

from tika_notes.engine import SearchEngine
from tika_notes.indexer import glob_files, index_files

ALPHA_NOTE = """---
author: Jane Doe
date: 2021-06-22T12:48:16-0400
tags: work
title: Alpha
---

Notes about the quarterly planning meeting.
"""

BETA_NOTE = """---
author: John Smith
date: 2021-07-01T09:00:00+00:00
tags:
- personal
- reading
title: Beta
---

Reading list and book notes.
"""


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Never read the per-user config file during tests."""
    monkeypatch.setenv("TIKA_CONFIG", str(tmp_path / "no-such-config.toml"))


@pytest.fixture
def write_note(tmp_path):
    """Write a note into the notes directory and return its path."""
    notes_dir = tmp_path / "notes"
    notes_dir.mkdir(exist_ok=True)

    def _write(name: str, text: str) -> Path:
        path = notes_dir / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def notes_dir(tmp_path, write_note):
    write_note("alpha.md", ALPHA_NOTE)
    write_note("beta.md", BETA_NOTE)
    return tmp_path / "notes"


@pytest.fixture
def index_path(tmp_path):
    return tmp_path / "index" / "db.sqlite3"


@pytest.fixture
def engine(index_path, notes_dir):
    """A writable engine with the alpha and beta notes indexed."""
    with SearchEngine.open(index_path, writable=True) as engine:
        index_files(engine, glob_files(str(notes_dir / "*.md")))
        yield engine