"""Inverted full-text index over skill documents.

The index lives in memory as an immutable snapshot. Writers build a new
snapshot (copying only the posting lists they touch) under a writer lock
and swap it in with a single assignment, so a reader always sees either
the whole of an upsert or none of it and never takes a lock.

On disk the index is ``<index_dir>/index.json``: a format version, the
store generation it reflects, and the documents. Anything absent,
unreadable, from another format version or behind the store is treated as
corruption and rebuilt from the store.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Iterable, Protocol

from skillsearch.errors import IndexCorruption
from skillsearch.index.scoring import (
    FIELD_WEIGHTS,
    combine_score,
    field_weighted_tf,
    idf,
    term_score,
)
from skillsearch.index.text import tokenize
from skillsearch.registry.models import IndexDocument, Skill

logger = logging.getLogger(__name__)

FORMAT_VERSION = 2


@dataclass
class SearchFilters:
    """Post-filters applied to the ranked result list."""

    registry: str | None = None
    trusted: bool | None = None  # True keeps trusted only, False untrusted only
    limit: int | None = None

    def accepts(self, document: IndexDocument) -> bool:
        if self.registry is not None and document.registry_id != self.registry:
            return False
        if self.trusted is not None and document.trusted != self.trusted:
            return False
        return True


@dataclass(frozen=True)
class _Entry:
    document: IndexDocument
    lengths: dict[str, int]
    terms: dict[str, dict[str, int]]  # term -> field -> frequency


@dataclass(frozen=True)
class _Snapshot:
    entries: dict[str, _Entry] = field(default_factory=dict)
    postings: dict[str, frozenset[str]] = field(default_factory=dict)
    length_totals: dict[str, int] = field(default_factory=dict)


class SkillSource(Protocol):
    def generation(self) -> int: ...

    def list_skills(self) -> list[Skill]: ...


class IndexEngine:
    """Single-writer, many-reader inverted index with BM25F ranking."""

    INDEX_FILE = "index.json"

    def __init__(self, index_dir: str | Path):
        self.index_dir = Path(index_dir)
        self.index_path = self.index_dir / self.INDEX_FILE
        self.generation: int | None = None
        self.upsert_count = 0
        self.remove_count = 0
        self._snapshot = _Snapshot()
        self._write_lock = threading.Lock()

    @classmethod
    def open(cls, index_dir: str | Path, store: SkillSource) -> "IndexEngine":
        """Load the on-disk index, rebuilding it from the store when unusable."""
        engine = cls(index_dir)
        generation = store.generation()
        try:
            engine.load(expected_generation=generation)
        except IndexCorruption as e:
            logger.warning("Rebuilding search index: %s", e)
            engine.rebuild((s.to_document() for s in store.list_skills()), generation)
        return engine

    def __len__(self) -> int:
        return len(self._snapshot.entries)

    def __contains__(self, doc_id: str) -> bool:
        return doc_id in self._snapshot.entries

    def document(self, doc_id: str) -> IndexDocument | None:
        entry = self._snapshot.entries.get(doc_id)
        return entry.document if entry else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, doc: IndexDocument) -> None:
        self.apply([doc], [])

    def remove(self, doc_id: str) -> None:
        self.apply([], [doc_id])

    def apply(self, upserts: Iterable[IndexDocument], removals: Iterable[str]) -> None:
        """Apply a batch of upserts and removals as one snapshot swap."""
        upserts = list(upserts)
        removals = list(removals)
        if not upserts and not removals:
            return

        with self._write_lock:
            snap = self._snapshot
            entries = dict(snap.entries)
            postings = dict(snap.postings)
            totals = dict(snap.length_totals)
            touched: dict[str, set[str]] = {}

            def posting(term: str) -> set[str]:
                if term not in touched:
                    touched[term] = set(postings.get(term, ()))
                return touched[term]

            def drop(doc_id: str) -> bool:
                old = entries.pop(doc_id, None)
                if old is None:
                    return False
                for term in old.terms:
                    posting(term).discard(doc_id)
                for field_name, n in old.lengths.items():
                    totals[field_name] = totals.get(field_name, 0) - n
                return True

            removed = sum(1 for doc_id in removals if drop(doc_id))
            for doc in upserts:
                drop(doc.doc_id)
                entry = _analyze(doc)
                entries[doc.doc_id] = entry
                for term in entry.terms:
                    posting(term).add(doc.doc_id)
                for field_name, n in entry.lengths.items():
                    totals[field_name] = totals.get(field_name, 0) + n

            for term, doc_ids in touched.items():
                if doc_ids:
                    postings[term] = frozenset(doc_ids)
                else:
                    postings.pop(term, None)

            self._snapshot = _Snapshot(entries, postings, totals)
            self.upsert_count += len(upserts)
            self.remove_count += removed

    def rebuild(self, documents: Iterable[IndexDocument], generation: int) -> None:
        """Replace the whole index with ``documents`` and persist it."""
        self._swap_in(documents)
        logger.info("Indexed %d skills", len(self))
        try:
            self.save(generation)
        except OSError as e:
            logger.warning("Could not persist rebuilt index to %s: %s", self.index_path, e)

    def _swap_in(self, documents: Iterable[IndexDocument]) -> None:
        fresh = IndexEngine(self.index_dir)
        fresh.apply(documents, [])
        with self._write_lock:
            self._snapshot = fresh._snapshot

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, generation: int) -> None:
        """Atomically write the current snapshot, stamped with ``generation``."""
        with self._write_lock:
            snap = self._snapshot
            payload = {
                "format": FORMAT_VERSION,
                "generation": generation,
                "documents": [asdict(snap.entries[d].document) for d in sorted(snap.entries)],
            }
            self.index_dir.mkdir(parents=True, exist_ok=True)
            tmp_path = self.index_path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(payload), encoding="utf-8")
            os.replace(tmp_path, self.index_path)
            self.generation = generation

    def load(self, expected_generation: int | None = None) -> None:
        if not self.index_path.exists():
            raise IndexCorruption(f"no index at {self.index_path}")
        try:
            payload = json.loads(self.index_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise IndexCorruption(f"unreadable index {self.index_path}: {e}") from e

        if not isinstance(payload, dict) or payload.get("format") != FORMAT_VERSION:
            raise IndexCorruption(f"incompatible index format in {self.index_path}")
        generation = payload.get("generation")
        if expected_generation is not None and generation != expected_generation:
            raise IndexCorruption(
                f"index reflects generation {generation}, store is at {expected_generation}"
            )
        try:
            documents = [IndexDocument(**d) for d in payload.get("documents", [])]
        except TypeError as e:
            raise IndexCorruption(f"malformed document in {self.index_path}: {e}") from e

        self._swap_in(documents)
        self.generation = generation

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def search(self, query: str, filters: SearchFilters | None = None) -> list[tuple[str, float]]:
        """Rank documents for ``query``.

        Returns:
            ``(doc_id, score)`` pairs, best first, ties broken by doc_id.
        """
        filters = filters or SearchFilters()
        snap = self._snapshot
        terms = sorted(set(tokenize(query)))
        if not terms or not snap.entries:
            return []

        doc_count = len(snap.entries)
        avg_lengths = {f: snap.length_totals.get(f, 0) / doc_count for f in FIELD_WEIGHTS}

        relevance: dict[str, float] = {}
        for term in terms:
            doc_ids = snap.postings.get(term)
            if not doc_ids:
                continue
            term_idf = idf(doc_count, len(doc_ids))
            for doc_id in sorted(doc_ids):
                entry = snap.entries[doc_id]
                weighted = field_weighted_tf(entry.terms[term], entry.lengths, avg_lengths)
                relevance[doc_id] = relevance.get(doc_id, 0.0) + term_score(weighted, term_idf)

        ranked = []
        for doc_id, rel in relevance.items():
            doc = snap.entries[doc_id].document
            ranked.append((doc_id, combine_score(rel, doc.trusted, doc.star_count)))
        ranked.sort(key=lambda r: (-r[1], r[0]))

        results = [r for r in ranked if filters.accepts(snap.entries[r[0]].document)]
        if filters.limit is not None:
            results = results[: filters.limit]
        return results


def _analyze(doc: IndexDocument) -> _Entry:
    lengths: dict[str, int] = {}
    terms: dict[str, dict[str, int]] = {}
    for field_name in FIELD_WEIGHTS:
        tokens = tokenize(doc.text_fields.get(field_name, ""))
        lengths[field_name] = len(tokens)
        for token in tokens:
            per_field = terms.setdefault(token, {})
            per_field[field_name] = per_field.get(field_name, 0) + 1
    return _Entry(document=doc, lengths=lengths, terms=terms)
