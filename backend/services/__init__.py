"""Services for the help-center retrieval index."""
from .chunking_engine import ChunkingEngine, ChunkStream
from .embedding_model import EmbeddingModel, EmbeddingError
from .snapshot_store import SnapshotStore, IndexNotFoundError, SnapshotCorruptError
from .help_api_client import HelpApiClient, SourceFetchError
from .markdown_crawler import MarkdownCrawler, CrawlError
from .sync_engine import SyncEngine, SyncCache
from .index_builder import IndexBuilder, IndexBuildError
from .vector_store import VectorStore, IndexCache
from .retrieval_engine import RetrievalEngine
from .rate_limiter import RateLimiter, client_identifier

__all__ = ['ChunkingEngine', 'ChunkStream', 'EmbeddingModel', 'EmbeddingError', 'SnapshotStore', 'IndexNotFoundError', 'SnapshotCorruptError', 'HelpApiClient', 'SourceFetchError', 'MarkdownCrawler', 'CrawlError', 'SyncEngine', 'SyncCache', 'IndexBuilder', 'IndexBuildError', 'VectorStore', 'IndexCache', 'RetrievalEngine', 'RateLimiter', 'client_identifier']
