"""Unit tests for IndexBuilder."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import json
import pytest
from unittest.mock import Mock, MagicMock, patch
from services.chunking_engine import ChunkingEngine
from services.embedding_model import EmbeddingError, EmbeddingModel
from services.index_builder import IndexBuilder, IndexBuildError
from services.snapshot_store import SnapshotStore
from services.sync_engine import SyncCache


def help_record(record_id, name, questions=("Question?",)):
    return {
        "id": record_id,
        "id_type": 1,
        "module": {"id": record_id, "url": f"/{name.lower()}", "name": name},
        "data": [{
            "id_lang": "cs",
            "header": {"name": f"{name} help", "description": "<p>Intro &amp; overview</p>"},
            "items": [{"id_order": i, "header": q, "description": "<b>Answer</b>"} for i, q in enumerate(questions)],
        }],
    }


def fake_embed(texts):
    return [[1.0, 0.0] for _ in texts]


@pytest.fixture
def store(tmp_path):
    return SnapshotStore(str(tmp_path))


@pytest.fixture
def embedding_model():
    model = Mock()
    model.embed_batch.side_effect = fake_embed
    return model


@pytest.fixture
def builder(store, embedding_model):
    return IndexBuilder(
        store,
        ChunkingEngine(),
        embedding_model,
        index_cache=Mock(),
        api_partitions={"user": 1, "admin": 2},
        language="cs",
        batch_size=2
    )


class TestIndexBuilder:
    """Test suite for IndexBuilder."""

    def test_partitions(self, builder):
        assert builder.partitions == ["user", "admin", "docs"]

    def test_unsynced_partition_yields_empty_result(self, builder, store):
        result = builder.reindex("user")

        assert result.units_processed == 0
        assert result.chunk_count == 0
        assert not store.index_path("user").exists()

    def test_unknown_partition(self, builder):
        with pytest.raises(ValueError, match="Unknown partition"):
            builder.reindex("guests")

    def test_api_partition_ids_and_payload(self, builder, store):
        store.write_corpus("user", [help_record(1, "Členové klubu")])

        result = builder.reindex("user")

        assert result.units_processed == 1
        assert result.chunk_count >= 1
        data = json.loads(store.index_path("user").read_text(encoding="utf-8"))
        assert data["partition"] == "user"
        assert data["dimension"] == 2
        first = data["items"][0]
        assert first["id"] == "_lenov__klubu#0"
        assert first["file"] == "Členové klubu"
        assert first["partition"] == "user"
        assert "Modul: Členové klubu" in first["content"]
        content = "\n".join(item["content"] for item in data["items"])
        assert "Intro & overview" in content
        assert "<b>" not in content

    def test_chunk_ids_unique_within_unit(self, builder, store):
        questions = [f"Question {i}?" for i in range(5)]
        store.write_corpus("user", [help_record(1, "Members", questions)])

        builder.reindex("user")

        items = json.loads(store.index_path("user").read_text(encoding="utf-8"))["items"]
        ids = [item["id"] for item in items]
        assert len(ids) == len(set(ids))
        assert [item["idx"] for item in items] == list(range(len(items)))

    def test_duplicate_unit_names_get_record_suffix(self, builder, store):
        store.write_corpus("user", [help_record(1, "Members"), help_record(2, "Members")])

        builder.reindex("user")

        items = json.loads(store.index_path("user").read_text(encoding="utf-8"))["items"]
        prefixes = {item["id"].split("#")[0] for item in items}
        assert prefixes == {"Members", "Members_2"}

    def test_site_partition_uses_relative_paths(self, builder, store):
        (store.site_dir / "guide").mkdir(parents=True)
        (store.site_dir / "guide" / "start.md").write_text("# Start\nWelcome", encoding="utf-8")
        (store.site_dir / "faq.md").write_text("Plain answer.", encoding="utf-8")

        result = builder.reindex("docs")

        items = json.loads(store.index_path("docs").read_text(encoding="utf-8"))["items"]
        assert result.units_processed == 2
        assert [item["id"] for item in items] == ["faq.md#0", "guide/start.md#0"]
        assert items[1]["partition"] == "docs"

    def test_site_units_carry_change_tokens(self, builder, store):
        store.site_dir.mkdir(parents=True)
        for name in ("etag.md", "dated.md", "bare.md"):
            (store.site_dir / name).write_text(f"# {name}", encoding="utf-8")
        cache = SyncCache(store.cache_path)
        cache.record("https://docs.example.com/etag.md?v=2", last_sync="t", etag='"e1"', last_modified="Mon, 01 Jan 2024")
        cache.record("https://docs.example.com/dated.md", last_sync="t", last_modified="Tue, 02 Jan 2024")
        cache.record("user", last_sync="t")
        cache.save()

        units = {unit.unit_id: unit for unit in builder.load_units("docs")}

        assert units["etag.md"].change_token == '"e1"'
        assert units["dated.md"].change_token == "Tue, 02 Jan 2024"
        assert units["bare.md"].change_token is None

    def test_embedding_is_batched(self, builder, store, embedding_model):
        (store.site_dir).mkdir(parents=True)
        (store.site_dir / "doc.md").write_text("One.\n\nTwo.\n\nThree.", encoding="utf-8")

        result = builder.reindex("docs")

        assert result.chunk_count == 3
        batch_sizes = [len(call.args[0]) for call in embedding_model.embed_batch.call_args_list]
        assert batch_sizes == [2, 1]

    def test_failed_unit_is_skipped_and_counted(self, builder, store, embedding_model):
        store.write_corpus("user", [help_record(1, "Members"), help_record(2, "Payments")])

        def flaky(texts):
            if any("Payments" in text for text in texts):
                raise EmbeddingError("provider unavailable")
            return fake_embed(texts)

        embedding_model.embed_batch.side_effect = flaky

        result = builder.reindex("user")

        assert result.units_processed == 1
        assert result.failed_units == 1
        items = json.loads(store.index_path("user").read_text(encoding="utf-8"))["items"]
        assert all(item["id"].startswith("Members#") for item in items)

    def test_misaligned_batch_fails_unit(self, builder, store, embedding_model):
        store.write_corpus("user", [help_record(1, "Members")])
        embedding_model.embed_batch.side_effect = lambda texts: []

        with pytest.raises(IndexBuildError):
            builder.reindex("user")

    def test_all_units_failing_keeps_previous_snapshot(self, builder, store, embedding_model):
        store.write_corpus("user", [help_record(1, "Members")])
        builder.reindex("user")
        before = store.index_path("user").read_text(encoding="utf-8")

        embedding_model.embed_batch.side_effect = EmbeddingError("down")
        with pytest.raises(IndexBuildError, match="keeping previous index"):
            builder.reindex("user")

        assert store.index_path("user").read_text(encoding="utf-8") == before

    def test_corrupt_corpus_raises(self, builder, store):
        store.corpus_path("user").write_text("[{broken", encoding="utf-8")

        with pytest.raises(IndexBuildError, match="unreadable"):
            builder.reindex("user")

    def test_inconsistent_dimensions_rejected(self, builder, store, embedding_model):
        store.write_corpus("user", [help_record(1, "Members"), help_record(2, "Payments")])
        embedding_model.embed_batch.side_effect = lambda texts: [
            [1.0, 0.0, 0.0] if "Payments" in text else [1.0, 0.0] for text in texts
        ]

        with pytest.raises(IndexBuildError, match="Inconsistent embeddings"):
            builder.reindex("user")
        assert not store.index_path("user").exists()

    def test_cache_invalidated_after_write(self, builder, store):
        store.write_corpus("admin", [help_record(5, "Settings")])

        builder.reindex("admin")

        builder.index_cache.invalidate.assert_called_once_with("admin")

    def test_cache_untouched_on_failure(self, builder, store, embedding_model):
        store.write_corpus("user", [help_record(1, "Members")])
        embedding_model.embed_batch.side_effect = EmbeddingError("down")

        with pytest.raises(IndexBuildError):
            builder.reindex("user")

        builder.index_cache.invalidate.assert_not_called()

    def test_empty_corpus_writes_empty_snapshot(self, builder, store):
        store.write_corpus("user", [])

        result = builder.reindex("user")

        assert result.chunk_count == 0
        data = json.loads(store.index_path("user").read_text(encoding="utf-8"))
        assert data["items"] == []

    def test_reindex_all_isolates_failures(self, builder, store, embedding_model):
        store.write_corpus("user", [help_record(1, "Members")])
        store.write_corpus("admin", [help_record(2, "Payments")])

        def admin_down(texts):
            if any("Payments" in text for text in texts):
                raise EmbeddingError("down")
            return fake_embed(texts)

        embedding_model.embed_batch.side_effect = admin_down

        result = builder.reindex_all()

        assert not result.ok
        assert "admin" in result.errors
        assert result.results["user"].chunk_count >= 1
        assert result.results["docs"].chunk_count == 0

    @patch('httpx.Client')
    def test_reindex_all_isolates_undecodable_embedding_responses(self, mock_client_class, store):
        store.write_corpus("user", [help_record(1, "Members")])
        store.write_corpus("admin", [help_record(2, "Payments")])

        def post(url, headers=None, json=None):
            response = Mock()
            response.status_code = 200
            if any("Payments" in text for text in json["inputs"]):
                response.json.side_effect = ValueError("Expecting value")
            else:
                response.json.return_value = [[1.0, 0.0] for _ in json["inputs"]]
            return response

        mock_client = MagicMock()
        mock_client.__enter__.return_value.post.side_effect = post
        mock_client_class.return_value = mock_client
        builder = IndexBuilder(
            store,
            ChunkingEngine(),
            EmbeddingModel(api_key="test_key"),
            index_cache=Mock(),
            api_partitions={"user": 1, "admin": 2},
            language="cs"
        )

        result = builder.reindex_all()

        assert not result.ok
        assert "admin" in result.errors
        assert result.results["user"].chunk_count >= 1
        assert not store.index_path("admin").exists()
