"""Unit tests for RetrievalEngine."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from unittest.mock import Mock
from models.chunk import IndexEntry, IndexSnapshot
from services.retrieval_engine import RetrievalEngine
from services.snapshot_store import IndexNotFoundError
from services.vector_store import VectorStore


def entry(entry_id, vector, content, file="Help"):
    return IndexEntry(id=entry_id, file=file, idx=int(entry_id.split("#")[1]), content=content, vector=vector)


class TestRetrievalEngine:
    """Test suite for RetrievalEngine class."""

    @pytest.fixture
    def entries(self):
        return [
            entry("billing#0", [1.0, 0.0], "How to pay membership fees"),
            entry("billing#1", [0.8, 0.6], "Refunds are processed monthly"),
            entry("login#0", [0.0, 1.0], "Reset your password from the login page"),
            entry("export#0", [0.6, 0.8], "Export the member list to Excel"),
        ]

    @pytest.fixture
    def mock_index_cache(self, entries):
        cache = Mock()
        cache.get.return_value = VectorStore(IndexSnapshot(partition="user", entries=entries))
        return cache

    @pytest.fixture
    def mock_embedding_model(self):
        return Mock()

    @pytest.fixture
    def retrieval_engine(self, mock_index_cache, mock_embedding_model):
        return RetrievalEngine(mock_index_cache, mock_embedding_model)

    def test_initialization(self, retrieval_engine, mock_index_cache, mock_embedding_model):
        assert retrieval_engine.index_cache == mock_index_cache
        assert retrieval_engine.embedding_model == mock_embedding_model

    def test_retrieve_ranks_by_dot_product(self, retrieval_engine):
        passages = retrieval_engine.retrieve([1.0, 0.0], "user", k=4)

        assert [p.id for p in passages] == ["billing#0", "billing#1", "export#0", "login#0"]
        assert [p.score for p in passages] == pytest.approx([1.0, 0.8, 0.6, 0.0])
        assert all(p.match == "vector" for p in passages)

    def test_retrieve_k_limits_results(self, retrieval_engine):
        passages = retrieval_engine.retrieve([1.0, 0.0], "user", k=2)

        assert [p.id for p in passages] == ["billing#0", "billing#1"]

    def test_passage_fields(self, retrieval_engine):
        passage = retrieval_engine.retrieve([0.0, 1.0], "user", k=1)[0]

        assert passage.id == "login#0"
        assert passage.display_name == "Help"
        assert passage.chunk_index == 0
        assert passage.content == "Reset your password from the login page"

    def test_default_k_is_six(self, mock_embedding_model):
        entries = [entry(f"doc#{i}", [1.0, 0.0], "text") for i in range(10)]
        cache = Mock()
        cache.get.return_value = VectorStore(IndexSnapshot(partition="user", entries=entries))

        passages = RetrievalEngine(cache, mock_embedding_model).retrieve([1.0, 0.0], "user")
        assert len(passages) == 6

    def test_hybrid_merge_keeps_vector_results_on_top(self, retrieval_engine):
        passages = retrieval_engine.retrieve([1.0, 0.0], "user", k=3, query_text="password reset")

        # login#0 is the only keyword hit but ranks below the cut, so truncation drops it
        assert [p.id for p in passages] == ["billing#0", "billing#1", "export#0"]
        assert all(p.match == "vector" for p in passages)

    def test_hybrid_merge_keyword_hit_below_vector_cut(self, mock_embedding_model):
        entries = [
            entry("a#0", [1.0, 0.0], "alpha"),
            entry("b#0", [0.9, 0.1], "beta"),
            entry("c#0", [0.0, 1.0], "contains keyword gamma"),
        ]
        cache = Mock()
        cache.get.return_value = VectorStore(IndexSnapshot(partition="user", entries=entries))
        engine = RetrievalEngine(cache, mock_embedding_model)

        vector_only = engine.retrieve([1.0, 0.0], "user", k=2)
        merged = engine.retrieve([1.0, 0.0], "user", k=2, query_text="gamma")

        assert [p.id for p in vector_only] == ["a#0", "b#0"]
        assert [p.id for p in merged] == ["a#0", "b#0"]

    def test_hybrid_merge_with_small_index(self, mock_embedding_model):
        entries = [entry("only#0", [1.0, 0.0], "gamma appears here"), entry("other#0", [0.0, 1.0], "gamma too")]
        cache = Mock()
        cache.get.return_value = VectorStore(IndexSnapshot(partition="user", entries=entries))
        engine = RetrievalEngine(cache, mock_embedding_model)

        passages = engine.retrieve([1.0, 0.0], "user", k=6, query_text="gamma")

        assert [p.id for p in passages] == ["only#0", "other#0"]
        assert [p.match for p in passages] == ["vector", "vector"]

    def test_hybrid_merge_has_no_duplicates(self, retrieval_engine):
        passages = retrieval_engine.retrieve([0.0, 1.0], "user", k=6, query_text="login password")
        ids = [p.id for p in passages]

        assert len(ids) == len(set(ids))
        assert len(ids) == 4
        # login#0 is both the best vector hit and the keyword hit: it keeps its vector rank
        assert ids[0] == "login#0"
        assert passages[0].match == "vector"

    def test_keyword_matches_never_displace_vector_matches(self, mock_embedding_model):
        entries = [entry(f"v#{i}", [1.0, 0.0], "filler") for i in range(3)]
        entries.append(entry("kw#0", [-1.0, 0.0], "unique keyword"))
        cache = Mock()
        cache.get.return_value = VectorStore(IndexSnapshot(partition="user", entries=entries))
        engine = RetrievalEngine(cache, mock_embedding_model)

        passages = engine.retrieve([1.0, 0.0], "user", k=3, query_text="unique")
        assert [p.id for p in passages] == ["v#0", "v#1", "v#2"]

    def test_empty_index_returns_empty(self, mock_embedding_model):
        cache = Mock()
        cache.get.return_value = VectorStore(IndexSnapshot(partition="user"))
        engine = RetrievalEngine(cache, mock_embedding_model)

        assert engine.retrieve([1.0, 0.0], "user", query_text="anything") == []

    def test_missing_index_propagates(self, mock_embedding_model):
        cache = Mock()
        cache.get.side_effect = IndexNotFoundError("admin")
        engine = RetrievalEngine(cache, mock_embedding_model)

        with pytest.raises(IndexNotFoundError):
            engine.retrieve([1.0, 0.0], "admin")

    def test_invalid_k(self, retrieval_engine):
        with pytest.raises(ValueError, match="k must be positive"):
            retrieval_engine.retrieve([1.0, 0.0], "user", k=0)

    def test_retrieve_text_embeds_query(self, retrieval_engine, mock_embedding_model, mock_index_cache):
        mock_embedding_model.embed_text.return_value = [0.0, 1.0]

        passages = retrieval_engine.retrieve_text("reset password", "user", k=2)

        mock_embedding_model.embed_text.assert_called_once_with("reset password")
        mock_index_cache.get.assert_called_with("user")
        assert passages[0].id == "login#0"

    def test_retrieve_text_empty_query(self, retrieval_engine, mock_embedding_model):
        assert retrieval_engine.retrieve_text("", "user") == []
        assert retrieval_engine.retrieve_text("   ", "user") == []
        mock_embedding_model.embed_text.assert_not_called()

    def test_retrieve_text_missing_index_skips_embedding(self, mock_embedding_model):
        cache = Mock()
        cache.get.side_effect = IndexNotFoundError("user")
        engine = RetrievalEngine(cache, mock_embedding_model)

        with pytest.raises(IndexNotFoundError):
            engine.retrieve_text("question", "user")
        mock_embedding_model.embed_text.assert_not_called()
