from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TextChunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    index: int = Field(ge=0)
    start_pos: int = Field(ge=0)
    end_pos: int = Field(ge=0)
    token_count: int = Field(ge=0)  # estimate, see chunking.estimate_tokens

    @model_validator(mode="after")
    def _check_span(self) -> "TextChunk":
        if self.start_pos >= self.end_pos:
            raise ValueError(f"empty chunk span: {self.start_pos}..{self.end_pos}")
        return self


class NoteDocument(BaseModel):
    id: str = Field(min_length=1)          # note name
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SearchHit(BaseModel):
    score: float
    note_id: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    content: str


@dataclass
class IndexStats:
    total_notes: int = 0
    indexed_notes: int = 0
    total_chunks: int = 0
    total_tokens: int = 0
    skipped_notes: int = 0
    errors: List[str] = field(default_factory=list)

    def add_note(self, chunks: int, tokens: int) -> None:
        self.indexed_notes += 1
        self.total_chunks += chunks
        self.total_tokens += tokens

    def add_error(self, error: str) -> None:
        self.errors.append(error)

    def skip_note(self) -> None:
        self.skipped_notes += 1

    def success_rate(self) -> float:
        if self.total_notes == 0:
            return 0.0
        return self.indexed_notes / self.total_notes * 100.0
