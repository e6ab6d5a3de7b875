"""Data models for the help-center retrieval service."""
from .corpus import CorpusUnit, HelpRecord, HelpModule, HelpHeader, HelpItem, HelpLocalization
from .chunk import Chunk, IndexEntry, IndexSnapshot
from .results import SyncResult, SyncAllResult, IndexResult, IndexAllResult, Passage, RateLimitResult
from .api import RetrieveRequest, RetrieveResponse, PassageOut, SyncResponse, SyncAllResponse, ReindexResponse

__all__ = [
    "CorpusUnit",
    "HelpRecord",
    "HelpModule",
    "HelpHeader",
    "HelpItem",
    "HelpLocalization",
    "Chunk",
    "IndexEntry",
    "IndexSnapshot",
    "SyncResult",
    "SyncAllResult",
    "IndexResult",
    "IndexAllResult",
    "Passage",
    "RateLimitResult",
    "RetrieveRequest",
    "RetrieveResponse",
    "PassageOut",
    "SyncResponse",
    "SyncAllResponse",
    "ReindexResponse",
]
