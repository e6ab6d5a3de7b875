"""In-memory vector/lexical search over one index snapshot, plus the per-partition cache."""
import logging
import threading
import unicodedata
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from models.chunk import IndexEntry, IndexSnapshot
from services.snapshot_store import SnapshotStore
from config import DEFAULT_TOP_K, KEYWORD_TOP_N, MIN_KEYWORD_LENGTH

logger = logging.getLogger(__name__)


def normalize_text(text: str) -> str:
    """Lowercase and strip diacritics (NFD decomposition, combining marks removed)."""
    decomposed = unicodedata.normalize("NFD", text or "")
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()


def query_keywords(query: str, min_length: int = MIN_KEYWORD_LENGTH) -> List[str]:
    """Normalized whitespace-separated query tokens of at least `min_length` characters."""
    return [token for token in normalize_text(query).split() if len(token) >= min_length]


class VectorStore:
    """
    Search structure for one partition's snapshot.

    Built once per load and never mutated; a reindex produces a new instance.
    """

    def __init__(self, snapshot: IndexSnapshot):
        self.partition = snapshot.partition
        self.entries: List[IndexEntry] = list(snapshot.entries)
        if self.entries:
            self.matrix = np.asarray([entry.vector for entry in self.entries], dtype=np.float64)
        else:
            self.matrix = np.zeros((0, 0), dtype=np.float64)
        # Lexical search runs over display name + content
        self._search_text = [normalize_text(f"{entry.file} {entry.content}") for entry in self.entries]

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def dimension(self) -> int:
        return self.matrix.shape[1] if self.entries else 0

    def search(self, query_vector: Sequence[float], top_k: int = DEFAULT_TOP_K) -> List[Tuple[IndexEntry, float]]:
        """
        Rank entries by dot product with the query vector.

        Args:
            query_vector: L2-normalized query embedding
            top_k: Number of entries to return

        Returns:
            (entry, score) pairs, highest score first; ties keep snapshot order

        Raises:
            ValueError: If top_k is not positive or the dimensions differ
        """
        if top_k <= 0:
            raise ValueError("top_k must be positive")
        if not self.entries:
            return []

        query = np.asarray(query_vector, dtype=np.float64)
        if query.ndim != 1 or query.shape[0] != self.dimension:
            raise ValueError(
                f"Query vector has dimension {query.shape[-1] if query.ndim else 0}, "
                f"index {self.partition} has {self.dimension}"
            )

        scores = self.matrix @ query
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [(self.entries[i], float(scores[i])) for i in order]

    def keyword_search(self, query: str, top_n: int = KEYWORD_TOP_N) -> List[Tuple[IndexEntry, float]]:
        """
        Rank entries by the fraction of query keywords they contain.

        Returns:
            (entry, coverage) pairs with coverage > 0, highest first; ties keep
            snapshot order
        """
        keywords = query_keywords(query)
        if not keywords or not self.entries or top_n <= 0:
            return []

        scored = []
        for position, text in enumerate(self._search_text):
            hits = sum(1 for keyword in keywords if keyword in text)
            if hits:
                scored.append((position, hits / len(keywords)))

        scored.sort(key=lambda item: -item[1])
        return [(self.entries[position], coverage) for position, coverage in scored[:top_n]]


class IndexCache:
    """
    Lazily loaded VectorStore per partition.

    Loads run outside the lock. Every invalidation bumps a generation, and a
    load only enters the cache if no invalidation happened while it was
    reading, so a snapshot replaced mid-load is never cached. Entries are only
    ever replaced or dropped, never mutated.
    """

    def __init__(self, store: SnapshotStore):
        self.store = store
        self._stores: Dict[str, VectorStore] = {}
        self._generations: Dict[str, int] = {}
        self._epoch = 0
        self._lock = threading.Lock()

    def _generation(self, partition: str) -> Tuple[int, int]:
        return self._epoch, self._generations.get(partition, 0)

    def get(self, partition: str) -> VectorStore:
        """
        Return the cached store for a partition, loading it on a miss.

        Raises:
            IndexNotFoundError: If the partition has never been indexed
            SnapshotCorruptError: If the snapshot cannot be decoded
        """
        with self._lock:
            cached = self._stores.get(partition)
            generation = self._generation(partition)
        if cached is not None:
            return cached

        snapshot = self.store.read_index(partition)
        vector_store = VectorStore(snapshot)
        with self._lock:
            if self._generation(partition) != generation:
                logger.debug(f"Index for {partition} was invalidated during load; not caching it")
                return vector_store
            self._stores[partition] = vector_store
        logger.info(f"Loaded index for {partition} ({len(vector_store)} entries)")
        return vector_store

    def invalidate(self, partition: Optional[str] = None) -> None:
        """Drop one cached partition, or all of them when partition is None."""
        with self._lock:
            if partition is None:
                self._stores.clear()
                self._epoch += 1
            else:
                self._stores.pop(partition, None)
                self._generations[partition] = self._generations.get(partition, 0) + 1
        logger.debug(f"Invalidated index cache ({partition or 'all partitions'})")

    def cached_partitions(self) -> List[str]:
        with self._lock:
            return list(self._stores)
