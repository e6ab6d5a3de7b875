"""Chunk and index data models."""
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any


@dataclass
class Chunk:
    """A contiguous slice of one corpus unit's text."""
    unit_id: str
    chunk_index: int  # 0-based, stable within a unit
    text: str
    word_count: int = 0


@dataclass
class IndexEntry:
    """Represents an embedded chunk stored in an index snapshot."""
    id: str  # Format: "{sanitized_name}#{chunk_index}"
    file: str  # Display name used in citations
    idx: int
    content: str
    vector: List[float]
    partition: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "file": self.file,
            "idx": self.idx,
            "content": self.content,
            "vector": self.vector,
            "partition": self.partition,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndexEntry":
        return cls(
            id=data["id"],
            file=data["file"],
            idx=int(data["idx"]),
            content=data["content"],
            vector=[float(x) for x in data["vector"]],
            partition=data.get("partition"),
        )


@dataclass
class IndexSnapshot:
    """All index entries for one partition, persisted as a single file."""
    partition: str
    entries: List[IndexEntry] = field(default_factory=list)

    @property
    def dimension(self) -> int:
        """Vector dimensionality shared by every entry (0 when empty)."""
        return len(self.entries[0].vector) if self.entries else 0

    def validate(self) -> None:
        """
        Check that all vectors share one dimensionality.

        Raises:
            ValueError: If entry vectors disagree in length or are empty
        """
        dimension = self.dimension
        for entry in self.entries:
            if not entry.vector or len(entry.vector) != dimension:
                raise ValueError(
                    f"Entry {entry.id} has dimension {len(entry.vector)}, expected {dimension}"
                )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "partition": self.partition,
            "dimension": self.dimension,
            "items": [entry.to_dict() for entry in self.entries],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], partition: str) -> "IndexSnapshot":
        if not isinstance(data, dict):
            raise TypeError(f"Index snapshot must be an object, got {type(data).__name__}")
        return cls(
            partition=data.get("partition") or partition,
            entries=[IndexEntry.from_dict(item) for item in data.get("items", [])],
        )
