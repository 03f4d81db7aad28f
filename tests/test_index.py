"""Tests for the inverted index and its ranking."""

import json
import tempfile
import threading
from pathlib import Path

import pytest

from skillsearch.errors import IndexCorruption
from skillsearch.index.engine import IndexEngine, SearchFilters
from skillsearch.index.text import tokenize
from skillsearch.registry.models import IndexDocument


def _doc(
    doc_id: str,
    name: str = "",
    description: str = "",
    metadata: str = "",
    body: str = "",
    trusted: bool = False,
    stars: int = 0,
) -> IndexDocument:
    return IndexDocument(
        doc_id=doc_id,
        registry_id=doc_id.split(":")[0],
        text_fields={"name": name, "description": description, "metadata": metadata, "body": body},
        trusted=trusted,
        star_count=stars,
    )


def _corpus() -> list[IndexDocument]:
    return [
        _doc("anthropic:pdf", "pdf", "Extract text from PDF documents", trusted=True),
        _doc("anthropic:docx", "docx", "Create and edit Word documents", trusted=True),
        _doc("clawdhub:pdf-tools", "pdf-tools", "Merge and split PDF files", stars=40),
        _doc("clawdhub:browser-use", "browser-use", "Automate a web browser", stars=120),
        _doc("openai:notes", "notes", "Keep notes", body="Mentions pdf once in the body"),
    ]


def _engine(tmpdir: str, docs=None) -> IndexEngine:
    engine = IndexEngine(Path(tmpdir) / "index")
    engine.apply(docs if docs is not None else _corpus(), [])
    return engine


def test_tokenize():
    assert tokenize("Browser-Use: automate the_web!") == ["browser", "use", "automate", "web"]
    assert tokenize("") == []


def test_search_ranks_name_matches_first():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir)
        ids = [doc_id for doc_id, _ in engine.search("pdf")]
        assert set(ids) == {"anthropic:pdf", "clawdhub:pdf-tools", "openai:notes"}
        # A body-only mention ranks below name and description matches
        assert ids[-1] == "openai:notes"


def test_search_is_deterministic():
    with tempfile.TemporaryDirectory() as tmpdir:
        first = _engine(tmpdir).search("pdf documents")
        second = _engine(tmpdir, list(reversed(_corpus()))).search("pdf documents")
        assert first == second


def test_ties_break_by_doc_id():
    with tempfile.TemporaryDirectory() as tmpdir:
        docs = [_doc(f"r:{slug}", "same", "identical text") for slug in ("c", "a", "b")]
        engine = _engine(tmpdir, docs)
        results = engine.search("identical")
        assert [doc_id for doc_id, _ in results] == ["r:a", "r:b", "r:c"]
        assert len({score for _, score in results}) == 1


def test_trust_and_stars_boost_equal_matches():
    with tempfile.TemporaryDirectory() as tmpdir:
        docs = [
            _doc("a:plain", "helper", "format code"),
            _doc("b:starred", "helper", "format code", stars=100),
            _doc("c:trusted", "helper", "format code", trusted=True),
        ]
        engine = _engine(tmpdir, docs)
        assert [d for d, _ in engine.search("format")] == ["c:trusted", "b:starred", "a:plain"]


def test_unmatched_query_returns_nothing():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir)
        assert engine.search("kubernetes") == []
        assert engine.search("the and of") == []


def test_filters():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir)
        ids = [d for d, _ in engine.search("pdf", SearchFilters(registry="clawdhub"))]
        assert ids == ["clawdhub:pdf-tools"]

        trusted = [d for d, _ in engine.search("pdf", SearchFilters(trusted=True))]
        assert trusted == ["anthropic:pdf"]

        assert len(engine.search("pdf", SearchFilters(limit=1))) == 1
        assert engine.search("pdf", SearchFilters(limit=0)) == []


def test_upsert_replaces_document():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir)
        engine.upsert(_doc("anthropic:pdf", "pdf", "Now about spreadsheets", trusted=True))

        assert len(engine) == 5
        assert "anthropic:pdf" not in [d for d, _ in engine.search("documents")]
        assert [d for d, _ in engine.search("spreadsheets")] == ["anthropic:pdf"]
        assert engine.upsert_count == 6


def test_remove():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir)
        engine.remove("clawdhub:browser-use")
        engine.remove("clawdhub:unknown")

        assert "clawdhub:browser-use" not in engine
        assert engine.search("browser") == []
        assert engine.remove_count == 1


def test_apply_is_one_batch():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir)
        engine.apply([_doc("openai:slides", "slides", "Build slide decks")], ["openai:notes"])
        assert "openai:slides" in engine
        assert "openai:notes" not in engine
        assert engine.document("openai:slides").text_fields["description"] == "Build slide decks"


def test_readers_never_see_partial_upserts():
    versions = [_doc("r:x", "alpha", "alpha"), _doc("r:x", "beta gamma", "beta")]
    with tempfile.TemporaryDirectory() as tmpdir:
        expected = {_engine(tmpdir, [doc]).search("alpha beta")[0][1] for doc in versions}
        engine = _engine(tmpdir, [versions[0]])
        stop = threading.Event()
        seen: list = []

        def reader():
            while not stop.is_set():
                seen.append(engine.search("alpha beta"))

        thread = threading.Thread(target=reader)
        thread.start()
        for i in range(200):
            engine.upsert(versions[i % 2])
        stop.set()
        thread.join()

        # Every result scores as exactly one of the two whole versions
        assert seen
        assert all(len(r) == 1 and r[0][1] in expected for r in seen)


def test_save_and_load():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir)
        engine.save(7)

        loaded = IndexEngine(Path(tmpdir) / "index")
        loaded.load(expected_generation=7)
        assert loaded.generation == 7
        assert len(loaded) == 5
        assert loaded.search("pdf") == engine.search("pdf")
        assert loaded.upsert_count == 0


def test_load_rejects_bad_indexes():
    with tempfile.TemporaryDirectory() as tmpdir:
        index_dir = Path(tmpdir) / "index"
        engine = IndexEngine(index_dir)
        with pytest.raises(IndexCorruption):
            engine.load()

        _engine(tmpdir).save(3)
        with pytest.raises(IndexCorruption):
            IndexEngine(index_dir).load(expected_generation=4)

        (index_dir / "index.json").write_text("{not json")
        with pytest.raises(IndexCorruption):
            IndexEngine(index_dir).load()

        (index_dir / "index.json").write_text(json.dumps({"format": 1, "generation": 3}))
        with pytest.raises(IndexCorruption):
            IndexEngine(index_dir).load()


class _FakeStore:
    def __init__(self, skills, generation):
        self.skills = skills
        self.gen = generation

    def generation(self):
        return self.gen

    def list_skills(self):
        return self.skills


def test_open_rebuilds_from_store():
    from skillsearch.registry.models import Skill

    with tempfile.TemporaryDirectory() as tmpdir:
        index_dir = Path(tmpdir) / "index"
        index_dir.mkdir()
        (index_dir / "index.json").write_text("garbage")
        store = _FakeStore(
            [Skill(slug="pdf", name="pdf", description="PDF tools", registry_id="anthropic")], 5
        )

        engine = IndexEngine.open(index_dir, store)

        assert [d for d, _ in engine.search("pdf")] == ["anthropic:pdf"]
        assert engine.generation == 5
        # The rebuilt index was persisted and is reused as is
        reopened = IndexEngine.open(index_dir, _FakeStore([], 5))
        assert len(reopened) == 1
