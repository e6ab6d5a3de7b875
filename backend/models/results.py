"""Result models returned by the sync, index, retrieval and rate-limit services."""
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class SyncResult:
    """Outcome of syncing one partition (or the crawled site)."""
    partition: str
    units_downloaded: int
    changed_unit_ids: List[str] = field(default_factory=list)
    skipped_unit_ids: List[str] = field(default_factory=list)
    snapshot_path: Optional[str] = None


@dataclass
class SyncAllResult:
    """Outcome of syncing every configured partition."""
    results: Dict[str, SyncResult] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class IndexResult:
    """Summary of one partition reindex."""
    partition: str
    units_processed: int
    chunk_count: int
    snapshot_path: Optional[str] = None
    failed_units: int = 0


@dataclass
class Passage:
    """A ranked passage returned by the retrieval engine."""
    id: str
    display_name: str
    chunk_index: int
    content: str
    score: float
    match: str = "vector"  # "vector" or "keyword"


@dataclass
class RateLimitResult:
    """Outcome of a rate-limit check; reset_at is epoch milliseconds."""
    allowed: bool
    remaining: int
    reset_at: int


@dataclass
class IndexAllResult:
    """Outcome of reindexing every configured partition."""
    results: Dict[str, IndexResult] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors
