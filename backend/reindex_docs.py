"""
Reindex script for the help-center retrieval index.

This script:
1. Optionally syncs the corpus (help API partitions and the markdown site)
2. Chunks every synced unit
3. Generates embeddings using the HuggingFace API
4. Writes one index snapshot per partition

Usage:
    python reindex_docs.py [--sync] [--partition user]
"""
import argparse
import sys
import logging
import time
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from services.chunking_engine import ChunkingEngine
from services.embedding_model import EmbeddingModel
from services.snapshot_store import SnapshotStore
from services.help_api_client import HelpApiClient, SourceFetchError
from services.markdown_crawler import MarkdownCrawler, CrawlError
from services.sync_engine import SyncEngine
from services.index_builder import IndexBuilder, IndexBuildError
from config import DOCS_DIR, DOCS_BASE_URL

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Rebuild the retrieval index")
    parser.add_argument("--sync", action="store_true", help="Sync the corpus before indexing")
    parser.add_argument("--partition", help="Only process this partition")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main reindex process."""
    args = parse_args(argv)
    start_time = time.time()

    try:
        logger.info("=" * 60)
        logger.info("Starting reindex")
        logger.info("=" * 60)

        store = SnapshotStore(DOCS_DIR)

        if args.sync:
            logger.info("Syncing corpus...")
            crawler = MarkdownCrawler(DOCS_BASE_URL) if DOCS_BASE_URL else None
            sync_engine = SyncEngine(store, help_client=HelpApiClient(), crawler=crawler)
            if args.partition:
                result = sync_engine.sync(args.partition)
                logger.info(f"  ✓ {result.partition}: {result.units_downloaded} downloaded")
            else:
                sync_result = sync_engine.sync_all()
                for name, result in sync_result.results.items():
                    logger.info(f"  ✓ {name}: {result.units_downloaded} downloaded")
                for name, error in sync_result.errors.items():
                    logger.error(f"  ✗ {name}: {error}")

        embedding_model = EmbeddingModel()
        embedding_model.warmup()
        builder = IndexBuilder(store, ChunkingEngine(), embedding_model)

        if args.partition:
            results = {args.partition: builder.reindex(args.partition)}
            errors = {}
        else:
            all_results = builder.reindex_all()
            results, errors = all_results.results, all_results.errors

        for name, result in results.items():
            logger.info(f"{name}:")
            logger.info(f"   Units: {result.units_processed} (failed: {result.failed_units})")
            logger.info(f"   Chunks: {result.chunk_count}")
            logger.info(f"   Index: {result.snapshot_path}")
        for name, error in errors.items():
            logger.error(f"{name}: {error}")

        logger.info(f"Total time: {time.time() - start_time:.2f}s")
        return 1 if errors else 0

    except KeyboardInterrupt:
        logger.warning("Reindex interrupted by user")
        return 1
    except (SourceFetchError, CrawlError, IndexBuildError, ValueError) as e:
        logger.error(f"Reindex failed: {str(e)}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
