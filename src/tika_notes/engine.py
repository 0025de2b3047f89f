"""SQLite-backed term index that evaluates boolean query trees.

Documents are stored under a unique identity term together with their JSON
payload, their positional terms and their value slots. Queries built by
``query.build_query`` are evaluated here and ranked with BM25.
"""

import json
import logging
import math
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .config import ELITE_SET_SIZE, MAX_PREFIX_EXPANSION, NEAR_WINDOW, PAGE_SIZE
from .document import NoteDocument, TermSet, date_bound
from .errors import DocumentError, SearchEngineError
from .lexer import Operator
from .query import Composite, Leaf, QueryNode, scale_factor

logger = logging.getLogger(__name__)

BM25_K1 = 1.2
BM25_B = 0.75

DDL_STATEMENTS: Tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS documents (
        docid INTEGER PRIMARY KEY AUTOINCREMENT,
        id_term TEXT NOT NULL UNIQUE,
        data TEXT NOT NULL,
        length INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS postings (
        term TEXT NOT NULL,
        docid INTEGER NOT NULL,
        wdf INTEGER NOT NULL,
        positions TEXT NOT NULL,
        PRIMARY KEY (term, docid)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_postings_docid ON postings(docid)",
    """
    CREATE TABLE IF NOT EXISTS doc_values (
        docid INTEGER NOT NULL,
        slot INTEGER NOT NULL,
        value TEXT NOT NULL,
        PRIMARY KEY (docid, slot)
    )
    """,
)

Span = Tuple[int, int]
Weights = Dict[int, float]
Postings = Dict[int, Tuple[int, List[int]]]


@dataclass
class Match:
    rank: int
    weight: float
    docid: int
    document: NoteDocument


@dataclass
class MatchSet:
    matches: List[Match]
    total: int

    def __len__(self) -> int:
        return len(self.matches)

    def __iter__(self):
        return iter(self.matches)


class SearchEngine:
    """A term index stored in a single SQLite database file."""

    def __init__(self, conn: sqlite3.Connection, path: Path, writable: bool):
        self.conn = conn
        self.path = path
        self.writable = writable

    @classmethod
    def open(cls, path: Path, writable: bool = False) -> "SearchEngine":
        path = Path(path).expanduser()
        try:
            if writable:
                path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(path)
                for ddl in DDL_STATEMENTS:
                    conn.execute(ddl)
                conn.commit()
            else:
                if not path.is_file():
                    raise SearchEngineError(
                        f"No index found at {path}, run 'tika --index' first", str(path)
                    )
                conn = sqlite3.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True)
        except (sqlite3.Error, OSError) as e:
            raise SearchEngineError(f"Cannot open index at {path}: {e}", str(path)) from e

        logger.debug("Opened index %s (writable=%s)", path, writable)
        return cls(conn, path, writable)

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "SearchEngine":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def doc_count(self) -> int:
        try:
            return self.conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
        except sqlite3.Error as e:
            raise SearchEngineError(f"Cannot read index: {e}", str(self.path)) from e

    def replace_document(self, id_term: str, payload: str, terms: TermSet) -> int:
        """Insert a document, or replace the one already stored under id_term."""
        if not self.writable:
            raise SearchEngineError("Index is open read-only", str(self.path))

        try:
            row = self.conn.execute(
                "SELECT docid FROM documents WHERE id_term = ?", (id_term,)
            ).fetchone()
            if row:
                docid = row[0]
                self.conn.execute("DELETE FROM postings WHERE docid = ?", (docid,))
                self.conn.execute("DELETE FROM doc_values WHERE docid = ?", (docid,))
                self.conn.execute(
                    "UPDATE documents SET data = ?, length = ? WHERE docid = ?",
                    (payload, terms.length, docid),
                )
            else:
                cursor = self.conn.execute(
                    "INSERT INTO documents (id_term, data, length) VALUES (?, ?, ?)",
                    (id_term, payload, terms.length),
                )
                docid = cursor.lastrowid

            self.conn.executemany(
                "INSERT INTO postings (term, docid, wdf, positions) VALUES (?, ?, ?, ?)",
                [
                    (term, docid, len(positions), json.dumps(positions))
                    for term, positions in terms.positions.items()
                ],
            )
            self.conn.executemany(
                "INSERT OR IGNORE INTO postings (term, docid, wdf, positions) VALUES (?, ?, 0, '[]')",
                [(term, docid) for term in sorted(terms.boolean_terms | {id_term})],
            )
            self.conn.executemany(
                "INSERT INTO doc_values (docid, slot, value) VALUES (?, ?, ?)",
                [(docid, slot, value) for slot, value in terms.values.items()],
            )
        except sqlite3.Error as e:
            raise SearchEngineError(f"Failed to store document {id_term}: {e}", str(self.path)) from e

        return docid

    def commit(self) -> None:
        try:
            self.conn.commit()
        except sqlite3.Error as e:
            raise SearchEngineError(f"Commit failed: {e}", str(self.path)) from e

    def get_document(self, id_term: str) -> Optional[NoteDocument]:
        try:
            row = self.conn.execute(
                "SELECT data FROM documents WHERE id_term = ?", (id_term,)
            ).fetchone()
        except sqlite3.Error as e:
            raise SearchEngineError(f"Cannot read index: {e}", str(self.path)) from e
        return self._decode(row[0], id_term) if row else None

    def _decode(self, payload: str, ref) -> NoteDocument:
        try:
            return NoteDocument.from_payload(payload)
        except (ValueError, KeyError, DocumentError) as e:
            raise SearchEngineError(f"Corrupt payload for document {ref}: {e}", str(self.path)) from e

    def search(self, query: QueryNode, offset: int = 0, limit: int = PAGE_SIZE) -> MatchSet:
        """Evaluate a query tree and return one page of ranked matches."""
        try:
            weights = _Evaluator(self.conn).evaluate(query)
            ranked = sorted(weights.items(), key=lambda item: (-item[1], item[0]))
            page = ranked[offset : offset + limit]

            payloads: Dict[int, str] = {}
            if page:
                placeholders = ",".join("?" * len(page))
                rows = self.conn.execute(
                    f"SELECT docid, data FROM documents WHERE docid IN ({placeholders})",
                    [docid for docid, _ in page],
                )
                payloads = dict(rows.fetchall())
        except sqlite3.Error as e:
            raise SearchEngineError(f"Query failed: {e}", str(self.path)) from e

        matches = [
            Match(offset + i, weight, docid, self._decode(payloads[docid], docid))
            for i, (docid, weight) in enumerate(page)
        ]
        logger.debug("Query %s matched %d documents", query, len(ranked))
        return MatchSet(matches, len(ranked))


class _Evaluator:
    """Evaluates one query tree against the index."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._postings: Dict[str, Postings] = {}
        self._expansions: Dict[str, List[str]] = {}
        self._lengths: Optional[Dict[int, int]] = None

    @property
    def lengths(self) -> Dict[int, int]:
        if self._lengths is None:
            self._lengths = dict(self.conn.execute("SELECT docid, length FROM documents"))
        return self._lengths

    @property
    def avg_length(self) -> float:
        if not self.lengths:
            return 0.0
        return sum(self.lengths.values()) / len(self.lengths)

    def postings(self, term: str) -> Postings:
        if term not in self._postings:
            rows = self.conn.execute(
                "SELECT docid, wdf, positions FROM postings WHERE term = ?", (term,)
            )
            self._postings[term] = {
                docid: (wdf, json.loads(positions)) for docid, wdf, positions in rows
            }
        return self._postings[term]

    def expand(self, prefix: str) -> List[str]:
        """Indexed terms starting with prefix, at most MAX_PREFIX_EXPANSION."""
        if prefix not in self._expansions:
            upper = prefix[:-1] + chr(ord(prefix[-1]) + 1)
            rows = self.conn.execute(
                "SELECT DISTINCT term FROM postings WHERE term >= ? AND term < ? ORDER BY term LIMIT ?",
                (prefix, upper, MAX_PREFIX_EXPANSION),
            )
            self._expansions[prefix] = [row[0] for row in rows]
            logger.debug("%s* expands to %d terms", prefix, len(self._expansions[prefix]))
        return self._expansions[prefix]

    def merged_postings(self, terms: List[str]) -> Postings:
        """Postings of several terms treated as one term."""
        merged: Dict[int, set] = {}
        for term in terms:
            for docid, (_, positions) in self.postings(term).items():
                merged.setdefault(docid, set()).update(positions)
        return {docid: (len(positions), sorted(positions)) for docid, positions in merged.items()}

    def leaf_postings(self, leaf: Leaf) -> List[Postings]:
        """One postings list per term of a leaf, in phrase order.

        The last word of a prefix leaf stands for every term it expands to,
        plus its stem so a finished word still finds its other forms.
        """
        terms = leaf.terms()
        if not leaf.prefix or not terms:
            return [self.postings(term) for term in terms]

        alternatives = list(self.expand(terms[-1]))
        stemmed = leaf.stemmed()
        if stemmed is not None:
            alternatives.append(stemmed)
        return [self.postings(term) for term in terms[:-1]] + [self.merged_postings(alternatives)]

    def values(self, slot: int) -> Dict[int, str]:
        return dict(self.conn.execute("SELECT docid, value FROM doc_values WHERE slot = ?", (slot,)))

    def bm25(self, postings: Postings) -> Weights:
        total = len(self.lengths)
        df = len(postings)
        if not df:
            return {}
        idf = math.log((total - df + 0.5) / (df + 0.5) + 1)
        avg_length = self.avg_length or 1.0
        weights = {}
        for docid, (wdf, _) in postings.items():
            norm = BM25_K1 * (1 - BM25_B + BM25_B * self.lengths.get(docid, 0) / avg_length)
            weights[docid] = idf * wdf * (BM25_K1 + 1) / (wdf + norm) if wdf else 0.0
        return weights

    def spans(self, node: QueryNode) -> Dict[int, List[Span]]:
        """Positions covered by a positional node, per document."""
        if isinstance(node, Leaf):
            postings = self.leaf_postings(node)
            docids = set(postings[0])
            for other in postings[1:]:
                docids &= set(other)
            spans = {}
            for docid in docids:
                position_sets = [set(p[docid][1]) for p in postings[1:]]
                found = [
                    (start, start + len(postings) - 1)
                    for start in postings[0][docid][1]
                    if all(start + i + 1 in positions for i, positions in enumerate(position_sets))
                ]
                if found:
                    spans[docid] = found
            return spans

        left, right = self.spans(node.left), self.spans(node.right)
        result = {}
        for docid in set(left) & set(right):
            found = []
            for a in left[docid]:
                for b in right[docid]:
                    if node.operator is Operator.PHRASE:
                        if b[0] == a[1] + 1:
                            found.append((a[0], b[1]))
                    elif a[1] < b[0] and b[0] - a[1] - 1 <= NEAR_WINDOW:
                        found.append((a[0], b[1]))
                    elif b[1] < a[0] and a[0] - b[1] - 1 <= NEAR_WINDOW:
                        found.append((b[0], a[1]))
            if found:
                result[docid] = found
        return result

    def evaluate(self, node: QueryNode) -> Weights:
        if isinstance(node, Leaf):
            return self.evaluate_leaf(node)
        return self.evaluate_composite(node)

    def evaluate_leaf(self, leaf: Leaf) -> Weights:
        if leaf.is_match_all:
            return {docid: 0.0 for docid in self.lengths}
        postings = self.leaf_postings(leaf)
        if not postings:
            return {}
        weights = [self.bm25(p) for p in postings]
        if len(weights) == 1:
            return weights[0]
        return self._sum_weights(self.spans(leaf), weights)

    def _sum_weights(self, docids, parts: List[Weights]) -> Weights:
        return {docid: sum(part.get(docid, 0.0) for part in parts) for docid in docids}

    def evaluate_composite(self, node: Composite) -> Weights:
        op = node.operator

        if op in (Operator.NEAR, Operator.PHRASE):
            parts = [self.evaluate(node.left), self.evaluate(node.right)]
            return self._sum_weights(self.spans(node), parts)

        if op is Operator.ELITE:
            return self.evaluate_elite(node)

        if op is Operator.RANGE:
            low_slot, low = date_bound(node.left.text)
            high_slot, high = date_bound(node.right.text)
            above = {docid for docid, value in self.values(low_slot).items() if value >= low}
            return {
                docid: 0.0
                for docid, value in self.values(high_slot).items()
                if docid in above and value[: len(high)] <= high
            }

        left = self.evaluate(node.left)

        if op is Operator.SCALED:
            factor = scale_factor(node.right)
            return {docid: weight * factor for docid, weight in left.items()}

        if op in (Operator.VALUE_GE, Operator.VALUE_LE):
            slot, bound = date_bound(node.right.text)
            values = self.values(slot)
            if op is Operator.VALUE_GE:
                keep = {docid for docid, value in values.items() if value >= bound}
            else:
                keep = {docid for docid, value in values.items() if value[: len(bound)] <= bound}
            return {docid: weight for docid, weight in left.items() if docid in keep}

        right = self.evaluate(node.right)

        if op is Operator.AND:
            return {d: w + right[d] for d, w in left.items() if d in right}
        if op is Operator.OR:
            return self._sum_weights(set(left) | set(right), [left, right])
        if op is Operator.AND_NOT:
            return {d: w for d, w in left.items() if d not in right}
        if op is Operator.XOR:
            merged = {d: w for d, w in left.items() if d not in right}
            merged.update({d: w for d, w in right.items() if d not in left})
            return merged
        if op is Operator.AND_MAYBE:
            return {d: w + right.get(d, 0.0) for d, w in left.items()}
        if op is Operator.FILTER:
            return {d: w for d, w in left.items() if d in right}
        if op is Operator.SYNONYM:
            return {d: max(left.get(d, 0.0), right.get(d, 0.0)) for d in set(left) | set(right)}

        raise SearchEngineError(f"Unsupported operator {op}")

    def evaluate_elite(self, node: Composite) -> Weights:
        operands = []
        while isinstance(node, Composite) and node.operator is Operator.ELITE:
            operands.append(node.right)
            node = node.left
        operands.append(node)

        evaluated = [self.evaluate(operand) for operand in reversed(operands)]
        evaluated.sort(key=lambda weights: max(weights.values(), default=0.0), reverse=True)
        elite = evaluated[:ELITE_SET_SIZE]
        return self._sum_weights(set().union(*elite), elite)
