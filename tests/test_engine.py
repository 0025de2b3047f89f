#!/usr/bin/env python3
"""End-to-end tests: notes indexed into SQLite and searched with parsed queries."""

import pytest

from tika_notes.document import date_bound, parse_text
from tika_notes.engine import SearchEngine
from tika_notes.errors import SearchEngineError
from tika_notes.fields import DATE_SLOT, LOCAL_DATE_SLOT
from tika_notes.query import Leaf, parse_query

from conftest import ALPHA_NOTE

LATE_NOTE = """---
date: 2021-06-30T22:00:00-04:00
title: Late
---

Written late in the evening.
"""


def search_titles(engine, query_string):
    return sorted(match.document.title for match in engine.search(parse_query(query_string)))


def weight_of(engine, query_string, title):
    for match in engine.search(parse_query(query_string)):
        if match.document.title == title:
            return match.weight
    raise AssertionError(f"{title} did not match {query_string!r}")


class TestSearch:
    """Test the boolean operators against a two note index."""

    def test_match_all(self, engine):
        """The empty query returns every note in index order."""
        match_set = engine.search(parse_query(""))
        assert match_set.total == 2
        assert [m.document.title for m in match_set] == ["Alpha", "Beta"]

    def test_tag(self, engine):
        assert search_titles(engine, "tag:work") == ["Alpha"]

    def test_or(self, engine):
        assert search_titles(engine, "Alpha OR Beta") == ["Alpha", "Beta"]

    def test_and_not(self, engine):
        assert search_titles(engine, "Alpha AND NOT tag:work") == []

    def test_title_round_trip(self, engine):
        """A title written in front matter is found through title:."""
        assert search_titles(engine, 'title:"Alpha"') == ["Alpha"]

    def test_fields_are_scoped(self, engine):
        """Author words only match author terms under author:."""
        assert search_titles(engine, "author:jane") == ["Alpha"]
        assert search_titles(engine, "author:alpha") == []

    def test_unprefixed_metadata(self, engine):
        """Titles, authors and tags are also plain full-text words."""
        assert search_titles(engine, "jane") == ["Alpha"]
        assert search_titles(engine, "personal") == ["Beta"]

    def test_filename(self, engine):
        assert search_titles(engine, "filename:beta") == ["Beta"]

    def test_implicit_or(self, engine):
        assert search_titles(engine, "quarterly book") == ["Alpha", "Beta"]

    def test_and(self, engine):
        assert search_titles(engine, "reading AND book") == ["Beta"]
        assert search_titles(engine, "reading AND quarterly") == []

    def test_xor(self, engine):
        assert search_titles(engine, "alpha XOR tag:work") == []
        assert search_titles(engine, "alpha XOR beta") == ["Alpha", "Beta"]

    def test_and_maybe(self, engine):
        """The right side only adds weight, never matches."""
        assert search_titles(engine, "beta AND MAYBE quarterly") == ["Beta"]
        assert weight_of(engine, "beta AND MAYBE reading", "Beta") > weight_of(engine, "beta", "Beta")

    def test_filter(self, engine):
        """The right side restricts matches without adding weight."""
        assert search_titles(engine, "notes FILTER tag:work") == ["Alpha"]
        assert weight_of(engine, "notes FILTER tag:work", "Alpha") == pytest.approx(
            weight_of(engine, "notes", "Alpha")
        )

    def test_phrase(self, engine):
        assert search_titles(engine, '"quarterly planning"') == ["Alpha"]
        assert search_titles(engine, '"planning quarterly"') == []

    def test_phrase_operator(self, engine):
        assert search_titles(engine, "quarterly PHRASE planning") == ["Alpha"]
        assert search_titles(engine, "planning PHRASE quarterly") == []

    def test_near(self, engine):
        """NEAR matches in either order within the window."""
        assert search_titles(engine, "quarterly NEAR meeting") == ["Alpha"]
        assert search_titles(engine, "meeting NEAR quarterly") == ["Alpha"]
        assert search_titles(engine, "quarterly NEAR book") == []

    def test_phrase_does_not_span_fields(self, engine):
        """Adjacent fields are separated by a position gap."""
        assert search_titles(engine, '"alpha jane"') == []

    def test_scaled(self, engine):
        assert weight_of(engine, "alpha SCALED 2", "Alpha") == pytest.approx(
            2 * weight_of(engine, "alpha", "Alpha")
        )

    def test_synonym(self, engine):
        assert search_titles(engine, "alpha SYNONYM beta") == ["Alpha", "Beta"]

    def test_elite(self, engine):
        assert search_titles(engine, "alpha ELITE beta ELITE nothing") == ["Alpha", "Beta"]

    def test_unknown_field_searches_text(self, engine):
        assert search_titles(engine, "quarterly:planning") == ["Alpha"]

    def test_stemmed_words(self, engine):
        """Other forms of a word find the note."""
        assert search_titles(engine, "meetings") == ["Alpha"]
        assert search_titles(engine, "title:alphas") == ["Alpha"]
        assert search_titles(engine, "read") == ["Beta"]

    def test_tags_match_exactly(self, engine):
        assert search_titles(engine, "tag:personal") == ["Beta"]
        assert search_titles(engine, "tag:persons") == []

    def test_wildcard(self, engine):
        assert search_titles(engine, "quart*") == ["Alpha"]
        assert search_titles(engine, "title:b*") == ["Beta"]
        assert search_titles(engine, "zzz*") == []

    def test_wildcard_in_phrase(self, engine):
        """Only the last word of a phrase is a prefix."""
        assert search_titles(engine, "quarterly PHRASE plan*") == ["Alpha"]
        assert search_titles(engine, "date:2021-07*") == ["Beta"]

    def test_partial_word_keeps_its_stem(self, engine):
        """A finished word being typed still finds its other forms."""
        assert search_titles(engine, "meetings*") == ["Alpha"]
        query = parse_query("meetings", partial=True)
        assert [m.document.title for m in engine.search(query)] == ["Alpha"]

    def test_no_results(self, engine):
        match_set = engine.search(parse_query("nonexistent"))
        assert match_set.total == 0
        assert len(match_set) == 0


class TestDateQueries:
    """Test the date field terms and value slot."""

    def test_date_terms(self, engine):
        assert search_titles(engine, "date:2021") == ["Alpha", "Beta"]
        assert search_titles(engine, "date:2021-07-01") == ["Beta"]

    def test_on_or_after(self, engine):
        assert search_titles(engine, "alpha OR beta > date:2021-07-01") == ["Beta"]

    def test_on_or_before(self, engine):
        """Partial bounds include the whole month."""
        assert search_titles(engine, "alpha OR beta < date:2021-06") == ["Alpha"]

    def test_range(self, engine):
        assert search_titles(engine, "date:2021-06-01 RANGE date:2021-06-30") == ["Alpha"]

    def test_comparison_filters_without_weight(self, engine):
        assert weight_of(engine, "alpha > date:2021", "Alpha") == pytest.approx(
            weight_of(engine, "alpha", "Alpha")
        )

    def test_date_bound(self):
        """Full timestamps convert to UTC, partial dates keep their digits."""
        assert date_bound("2021-06-22T12:48:16-0400") == (DATE_SLOT, "20210622164816")
        assert date_bound("2021-06") == (LOCAL_DATE_SLOT, "202106")
        assert date_bound("abc") == (LOCAL_DATE_SLOT, "")

    def test_partial_bound_uses_the_notes_own_offset(self, engine, write_note):
        """A late evening note stays in its own month, as its date words do."""
        path = write_note("late.md", LATE_NOTE)
        doc = parse_text(path.read_text(), path)
        engine.replace_document(doc.id_term, doc.to_payload(), doc.index_terms())

        assert search_titles(engine, "date:2021-06-30") == ["Late"]
        assert search_titles(engine, "late < date:2021-06") == ["Late"]
        assert search_titles(engine, "late > date:2021-07") == []
        assert search_titles(engine, 'late > date:"2021-07-01T00:00:00+00:00"') == ["Late"]


class TestRanking:
    """Test ordering and paging."""

    def test_ranked_by_weight(self, engine):
        """Matches come back heaviest first."""
        match_set = engine.search(parse_query("reading OR alpha"))
        weights = [m.weight for m in match_set]
        assert weights == sorted(weights, reverse=True)
        assert [m.rank for m in match_set] == [0, 1]

    def test_paging(self, engine):
        first = engine.search(parse_query(""), limit=1)
        second = engine.search(parse_query(""), offset=1, limit=1)
        assert first.total == second.total == 2
        assert [m.document.title for m in first] == ["Alpha"]
        assert [m.document.title for m in second] == ["Beta"]
        assert second.matches[0].rank == 1


class TestStorage:
    """Test writing and reading the index."""

    def test_reindex_replaces(self, engine, write_note):
        """Indexing the same filename again replaces the stored note."""
        path = write_note("alpha.md", ALPHA_NOTE.replace("quarterly planning", "annual review"))
        doc = parse_text(path.read_text(), path)
        engine.replace_document(doc.id_term, doc.to_payload(), doc.index_terms())
        engine.commit()

        assert engine.doc_count == 2
        assert search_titles(engine, "quarterly") == []
        assert search_titles(engine, "annual") == ["Alpha"]

    def test_get_document(self, engine, notes_dir):
        doc = parse_text((notes_dir / "beta.md").read_text(), notes_dir / "beta.md")
        stored = engine.get_document(doc.id_term)
        assert stored == doc

    def test_get_missing_document(self, engine):
        assert engine.get_document("Qmissing") is None

    def test_read_only_sees_committed_notes(self, engine, index_path):
        with SearchEngine.open(index_path) as reader:
            assert reader.doc_count == 2
            assert len(reader.search(Leaf.match_all())) == 2

    def test_read_only_rejects_writes(self, engine, index_path, tmp_path):
        doc = parse_text(ALPHA_NOTE, tmp_path / "alpha.md")
        with SearchEngine.open(index_path) as reader:
            with pytest.raises(SearchEngineError):
                reader.replace_document(doc.id_term, doc.to_payload(), doc.index_terms())

    def test_missing_index(self, tmp_path):
        """Opening a missing index for reading fails with a hint."""
        with pytest.raises(SearchEngineError) as excinfo:
            SearchEngine.open(tmp_path / "missing.sqlite3")
        assert "--index" in excinfo.value.message

    def test_writable_creates_index(self, tmp_path):
        path = tmp_path / "nested" / "db.sqlite3"
        with SearchEngine.open(path, writable=True) as engine:
            assert engine.doc_count == 0
        assert path.is_file()
