"""Tests for the reindex command-line script."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from unittest.mock import patch
import reindex_docs
from models.results import IndexAllResult, IndexResult, SyncAllResult


class TestReindexScript:
    """Test suite for reindex_docs.main."""

    def test_parse_args(self):
        args = reindex_docs.parse_args(["--sync", "--partition", "admin"])

        assert args.sync is True
        assert args.partition == "admin"

    @patch("reindex_docs.EmbeddingModel")
    @patch("reindex_docs.IndexBuilder")
    @patch("reindex_docs.SyncEngine")
    def test_reindex_all_without_sync(self, mock_sync_engine, mock_builder, mock_model):
        mock_builder.return_value.reindex_all.return_value = IndexAllResult(
            results={"user": IndexResult(partition="user", units_processed=2, chunk_count=5)}
        )

        assert reindex_docs.main([]) == 0
        mock_sync_engine.assert_not_called()
        mock_model.return_value.warmup.assert_called_once()

    @patch("reindex_docs.EmbeddingModel")
    @patch("reindex_docs.IndexBuilder")
    @patch("reindex_docs.HelpApiClient")
    @patch("reindex_docs.SyncEngine")
    def test_sync_then_single_partition(self, mock_sync_engine, mock_client, mock_builder, mock_model):
        mock_builder.return_value.reindex.return_value = IndexResult(partition="admin", units_processed=1, chunk_count=3)

        assert reindex_docs.main(["--sync", "--partition", "admin"]) == 0
        mock_sync_engine.return_value.sync.assert_called_once_with("admin")
        mock_builder.return_value.reindex.assert_called_once_with("admin")

    @patch("reindex_docs.EmbeddingModel")
    @patch("reindex_docs.IndexBuilder")
    @patch("reindex_docs.HelpApiClient")
    @patch("reindex_docs.SyncEngine")
    def test_partition_errors_give_nonzero_exit(self, mock_sync_engine, mock_client, mock_builder, mock_model):
        mock_sync_engine.return_value.sync_all.return_value = SyncAllResult(errors={"admin": "401"})
        mock_builder.return_value.reindex_all.return_value = IndexAllResult(errors={"admin": "all units failed"})

        assert reindex_docs.main(["--sync"]) == 1

    @patch("reindex_docs.EmbeddingModel")
    def test_missing_api_key_fails_cleanly(self, mock_model):
        mock_model.side_effect = ValueError("HUGGINGFACE_API_KEY environment variable is required")

        assert reindex_docs.main([]) == 1
