"""File-backed persistence for corpus and index snapshots.

Every write goes to a temporary file in the target directory and is moved
into place with `os.replace`, so readers see either the previous snapshot
or the complete new one.
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from models.chunk import IndexSnapshot
from config import DOCS_DIR

logger = logging.getLogger(__name__)


class IndexNotFoundError(LookupError):
    """The partition has no index snapshot yet and needs a reindex."""

    def __init__(self, partition: str, path: Optional[str] = None):
        self.partition = partition
        self.path = path
        super().__init__(f"No index for partition '{partition}'. Run a reindex first.")


class SnapshotCorruptError(RuntimeError):
    """A snapshot file exists but cannot be decoded."""


def atomic_write_text(path: Path, content: str) -> None:
    """Write text to path atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def atomic_write_json(path: Path, data: Any) -> None:
    """Serialize data as JSON and write it atomically."""
    atomic_write_text(path, json.dumps(data, ensure_ascii=False, indent=2))


def read_json(path: Path) -> Any:
    """
    Read and decode a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist
        SnapshotCorruptError: If the content is not valid JSON
    """
    with open(path, "r", encoding="utf-8") as handle:
        raw = handle.read()
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise SnapshotCorruptError(f"Invalid JSON in {path}: {e}") from e


class SnapshotStore:
    """Locates and reads/writes the persisted snapshots under one directory."""

    def __init__(self, docs_dir: str = DOCS_DIR):
        self.docs_dir = Path(docs_dir)

    @property
    def site_dir(self) -> Path:
        return self.docs_dir / "site"

    @property
    def cache_path(self) -> Path:
        return self.docs_dir / ".cache.json"

    def corpus_path(self, partition: str) -> Path:
        return self.docs_dir / f"help-data-{partition}.json"

    def index_path(self, partition: str) -> Path:
        return self.docs_dir / f"index-{partition}.json"

    def write_corpus(self, partition: str, records: list) -> Path:
        path = self.corpus_path(partition)
        atomic_write_json(path, records)
        logger.debug(f"Wrote {len(records)} records to {path}")
        return path

    def read_corpus(self, partition: str) -> Optional[list]:
        """Return the raw records for a partition, or None if never synced."""
        path = self.corpus_path(partition)
        try:
            data = read_json(path)
        except FileNotFoundError:
            return None
        return data if isinstance(data, list) else []

    def write_index(self, snapshot: IndexSnapshot) -> Path:
        """
        Persist an index snapshot in one atomic write.

        Raises:
            ValueError: If the snapshot's vectors disagree in dimensionality
        """
        snapshot.validate()
        path = self.index_path(snapshot.partition)
        atomic_write_text(path, json.dumps(snapshot.to_dict(), ensure_ascii=False))
        logger.info(f"Wrote index snapshot {path} ({len(snapshot.entries)} entries)")
        return path

    def read_index(self, partition: str) -> IndexSnapshot:
        """
        Load the index snapshot for a partition.

        Raises:
            IndexNotFoundError: If the partition was never indexed
            SnapshotCorruptError: If the file cannot be decoded
        """
        path = self.index_path(partition)
        try:
            data = read_json(path)
        except FileNotFoundError:
            raise IndexNotFoundError(partition, str(path))

        try:
            snapshot = IndexSnapshot.from_dict(data, partition)
            snapshot.validate()
        except (KeyError, TypeError, ValueError) as e:
            raise SnapshotCorruptError(f"Malformed index snapshot {path}: {e}") from e
        return snapshot
