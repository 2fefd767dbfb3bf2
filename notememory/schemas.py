from __future__ import annotations

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from notememory.retrieval.types import SearchHit


class NoteIn(BaseModel):
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class NoteRecord(NoteIn):
    id: str = Field(min_length=1, pattern=r"\S")


class IndexNoteResponse(BaseModel):
    ok: bool = True
    note_id: str
    chars: int = 0
    latency_ms: int = 0
    error: Optional[str] = None
    request_id: Optional[str] = None


class RemoveNoteResponse(BaseModel):
    ok: bool = True
    note_id: str
    removed: bool = False
    error: Optional[str] = None
    request_id: Optional[str] = None


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    limit: Optional[int] = Field(default=None, ge=1, le=100)
    min_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class SearchResponse(BaseModel):
    ok: bool = True
    hits: List[SearchHit] = Field(default_factory=list)
    latency_ms: int = 0
    error: Optional[str] = None
    request_id: Optional[str] = None


class ClearResponse(BaseModel):
    ok: bool = True
    dropped: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    request_id: Optional[str] = None


class ReindexRequest(BaseModel):
    notes: List[NoteRecord] = Field(default_factory=list)


class ReindexResponse(BaseModel):
    ok: bool = True
    total_notes: int = 0
    indexed_notes: int = 0
    skipped_notes: int = 0
    total_chunks: int = 0
    total_tokens: int = 0
    success_rate: float = 0.0
    errors: List[str] = Field(default_factory=list)
    latency_ms: int = 0
    error: Optional[str] = None
    request_id: Optional[str] = None
