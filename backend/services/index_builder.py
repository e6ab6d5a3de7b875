"""Builds the persisted index snapshot of each partition from the synced corpus."""
import logging
from typing import Iterator, List, Optional

from models.chunk import IndexEntry, IndexSnapshot
from models.corpus import CorpusUnit
from models.results import IndexResult, IndexAllResult
from services.chunking_engine import ChunkingEngine
from services.embedding_model import EmbeddingError
from services.help_api_client import parse_records, record_to_text, record_unit_name, record_display_name
from services.snapshot_store import SnapshotStore, SnapshotCorruptError
from services.sync_engine import SyncCache, site_unit_path
from config import API_PARTITIONS, SITE_PARTITION, EMBED_BATCH_SIZE, HELP_API_LANGUAGE

logger = logging.getLogger(__name__)


class IndexBuildError(RuntimeError):
    """Reindexing produced nothing usable; the previous snapshot was kept."""


class IndexBuilder:
    """Drives chunking and embedding over a partition and writes its snapshot."""

    def __init__(
        self,
        store: SnapshotStore,
        chunking_engine: ChunkingEngine,
        embedding_model,
        index_cache=None,
        api_partitions: Optional[dict] = None,
        language: str = HELP_API_LANGUAGE,
        batch_size: int = EMBED_BATCH_SIZE
    ):
        """
        Initialize the index builder.

        Args:
            store: Snapshot locations on disk
            chunking_engine: Splits unit text into chunks
            embedding_model: Anything with `embed_batch(texts) -> vectors`
            index_cache: Cache invalidated after each successful write
            api_partitions: Partition name -> API id_type mapping
            language: Language rendered from API records
            batch_size: Number of chunk texts per embedding call
        """
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        self.store = store
        self.chunking_engine = chunking_engine
        self.embedding_model = embedding_model
        self.index_cache = index_cache
        self.api_partitions = dict(api_partitions if api_partitions is not None else API_PARTITIONS)
        self.language = language
        self.batch_size = batch_size

    @property
    def partitions(self) -> List[str]:
        return list(self.api_partitions) + [SITE_PARTITION]

    def load_units(self, partition: str) -> Optional[List[CorpusUnit]]:
        """
        Enumerate the synced corpus units of a partition.

        Returns:
            Units in a stable order, or None if the partition was never synced
        """
        if partition == SITE_PARTITION:
            return self._load_site_units()
        if partition in self.api_partitions:
            return self._load_api_units(partition)
        raise ValueError(f"Unknown partition '{partition}'")

    def _load_api_units(self, partition: str) -> Optional[List[CorpusUnit]]:
        try:
            rows = self.store.read_corpus(partition)
        except SnapshotCorruptError as e:
            logger.error(f"Corpus snapshot for {partition} is unreadable: {e}")
            raise IndexBuildError(f"Corpus snapshot for {partition} is unreadable; resync first") from e
        if rows is None:
            return None

        units = []
        used_names = set()
        for record in parse_records(rows, partition):
            name = record_unit_name(record)
            if name in used_names:
                name = f"{name}_{record.id}"
            used_names.add(name)

            units.append(CorpusUnit(
                unit_id=name,
                display_name=record_display_name(record, self.language),
                text=record_to_text(record, self.language),
                partition=partition
            ))
        return units

    def _load_site_units(self) -> Optional[List[CorpusUnit]]:
        site_dir = self.store.site_dir
        if not site_dir.is_dir():
            return None

        cache = SyncCache(self.store.cache_path)
        tokens = {}
        for key in cache.keys():
            if "://" in key:
                tokens.setdefault(site_unit_path(key).as_posix(), cache.change_token(key))

        units = []
        for path in sorted(site_dir.rglob("*.md")):
            rel = path.relative_to(site_dir).as_posix()
            try:
                text = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Skipping unreadable document {rel}: {e}")
                continue
            units.append(CorpusUnit(
                unit_id=rel,
                display_name=rel,
                text=text,
                partition=SITE_PARTITION,
                change_token=tokens.get(rel)
            ))
        return units

    def _batches(self, texts: List[str]) -> Iterator[List[str]]:
        for start in range(0, len(texts), self.batch_size):
            yield texts[start:start + self.batch_size]

    def build_entries(self, unit: CorpusUnit) -> List[IndexEntry]:
        """
        Chunk and embed one unit.

        Raises:
            EmbeddingError: If any batch fails or comes back misaligned
        """
        chunks = self.chunking_engine.chunk_unit(unit.unit_id, unit.text)
        texts = [chunk.text for chunk in chunks]

        vectors: List[List[float]] = []
        for batch in self._batches(texts):
            batch_vectors = self.embedding_model.embed_batch(batch)
            if len(batch_vectors) != len(batch):
                raise EmbeddingError(
                    f"Embedding provider returned {len(batch_vectors)} vectors for {len(batch)} texts"
                )
            vectors.extend(batch_vectors)

        return [
            IndexEntry(
                id=f"{unit.unit_id}#{chunk.chunk_index}",
                file=unit.display_name,
                idx=chunk.chunk_index,
                content=chunk.text,
                vector=list(vector),
                partition=unit.partition
            )
            for chunk, vector in zip(chunks, vectors)
        ]

    def reindex(self, partition: str) -> IndexResult:
        """
        Rebuild the index snapshot of one partition.

        Units whose embedding fails are skipped and counted in `failed_units`.

        Returns:
            IndexResult with unit/chunk counts and the snapshot location

        Raises:
            ValueError: If the partition is unknown
            IndexBuildError: If every unit failed to embed
        """
        units = self.load_units(partition)
        if units is None:
            logger.warning(f"No synced corpus for {partition}; nothing to index")
            return IndexResult(partition=partition, units_processed=0, chunk_count=0)

        logger.info(f"Indexing {len(units)} units for {partition}")
        entries: List[IndexEntry] = []
        failed = 0

        for unit in units:
            try:
                unit_entries = self.build_entries(unit)
            except EmbeddingError as e:
                failed += 1
                logger.error(f"Embedding failed for {unit.unit_id} in {partition}: {e}")
                continue
            entries.extend(unit_entries)
            logger.debug(f"Indexed {unit.unit_id}: {len(unit_entries)} chunks")

        if units and failed == len(units):
            raise IndexBuildError(
                f"All {failed} units failed to embed for {partition}; keeping previous index"
            )

        try:
            path = self.store.write_index(IndexSnapshot(partition=partition, entries=entries))
        except ValueError as e:
            raise IndexBuildError(f"Inconsistent embeddings for {partition}: {e}") from e
        if self.index_cache is not None:
            self.index_cache.invalidate(partition)

        processed = len(units) - failed
        logger.info(f"Indexed {partition}: {processed} units, {len(entries)} chunks")
        return IndexResult(
            partition=partition,
            units_processed=processed,
            chunk_count=len(entries),
            snapshot_path=str(path),
            failed_units=failed,
        )

    def reindex_all(self) -> IndexAllResult:
        """Reindex every partition; a failing partition does not stop the others."""
        result = IndexAllResult()
        for partition in self.partitions:
            try:
                result.results[partition] = self.reindex(partition)
            except IndexBuildError as e:
                logger.error(f"Reindex failed for {partition}: {e}")
                result.errors[partition] = str(e)
        return result
