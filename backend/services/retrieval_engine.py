"""Retrieval engine combining vector ranking with lexical coverage."""
import logging
from typing import List, Optional, Sequence

from models.results import Passage
from services.vector_store import IndexCache
from config import DEFAULT_TOP_K, KEYWORD_TOP_N

logger = logging.getLogger(__name__)


class RetrievalEngine:
    """Answer a query with a ranked passage list from one partition's index."""

    def __init__(self, index_cache: IndexCache, embedding_model=None, keyword_top_n: int = KEYWORD_TOP_N):
        """
        Initialize the retrieval engine.

        Args:
            index_cache: Per-partition cache of loaded indexes
            embedding_model: Used by retrieve_text to embed queries
            keyword_top_n: Number of lexical matches considered for the merge
        """
        self.index_cache = index_cache
        self.embedding_model = embedding_model
        self.keyword_top_n = keyword_top_n
        logger.info("Initialized RetrievalEngine")

    def retrieve(
        self,
        query_vector: Sequence[float],
        partition: str,
        k: int = DEFAULT_TOP_K,
        query_text: Optional[str] = None
    ) -> List[Passage]:
        """
        Retrieve the top passages for a query vector.

        Vector ranking is primary. When query_text is given, lexical matches
        not already ranked are appended, and the merged list is cut to k.

        Args:
            query_vector: L2-normalized query embedding
            partition: Index partition to search
            k: Maximum number of passages
            query_text: Raw query for lexical augmentation

        Returns:
            Ranked passages; empty if the index is empty or nothing matches

        Raises:
            IndexNotFoundError: If the partition has never been indexed
            ValueError: If k is not positive or the vector dimension is wrong
        """
        if k <= 0:
            raise ValueError("k must be positive")

        vector_store = self.index_cache.get(partition)
        if len(vector_store) == 0:
            logger.info(f"Index for {partition} is empty")
            return []

        passages = [
            Passage(
                id=entry.id,
                display_name=entry.file,
                chunk_index=entry.idx,
                content=entry.content,
                score=score,
                match="vector"
            )
            for entry, score in vector_store.search(query_vector, top_k=k)
        ]

        if query_text:
            seen = {passage.id for passage in passages}
            for entry, coverage in vector_store.keyword_search(query_text, top_n=self.keyword_top_n):
                if entry.id in seen:
                    continue
                seen.add(entry.id)
                passages.append(Passage(
                    id=entry.id,
                    display_name=entry.file,
                    chunk_index=entry.idx,
                    content=entry.content,
                    score=coverage,
                    match="keyword"
                ))

        passages = passages[:k]
        logger.debug(
            f"Retrieved {len(passages)} passages from {partition} "
            f"(top score: {passages[0].score:.3f})" if passages else f"No passages from {partition}"
        )
        return passages

    def retrieve_text(self, query: str, partition: str, k: int = DEFAULT_TOP_K) -> List[Passage]:
        """
        Embed a query string and retrieve passages with lexical augmentation.

        Returns:
            Ranked passages, empty for a blank query
        """
        if not query or not query.strip():
            logger.warning("Empty query string provided, returning empty results")
            return []
        if self.embedding_model is None:
            raise RuntimeError("RetrievalEngine has no embedding model for text queries")

        # Surface a missing index before paying for the embedding call
        self.index_cache.get(partition)
        query_vector = self.embedding_model.embed_text(query)
        return self.retrieve(query_vector, partition, k=k, query_text=query)
