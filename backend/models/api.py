"""API request/response models."""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from config import DEFAULT_TOP_K


class RetrieveRequest(BaseModel):
    """Request body for POST /retrieve."""
    query: str
    partition: str = "user"
    k: int = Field(default=DEFAULT_TOP_K, ge=1, le=50)


class PassageOut(BaseModel):
    id: str
    display_name: str
    chunk_index: int
    content: str
    score: float
    match: str


class RetrieveResponse(BaseModel):
    partition: str
    passages: List[PassageOut]


class SyncResponse(BaseModel):
    partition: str
    units_downloaded: int
    changed_unit_ids: List[str]
    skipped_unit_ids: List[str] = []
    snapshot_path: Optional[str] = None


class SyncAllResponse(BaseModel):
    ok: bool
    results: Dict[str, SyncResponse]
    errors: Dict[str, str]


class ReindexResponse(BaseModel):
    partition: str
    units_processed: int
    chunk_count: int
    snapshot_path: Optional[str] = None
    failed_units: int = 0

