"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from session_search.retrieval.types import SearchCoverage, SearchResponse, SearchResult
from session_search.utils.time import ms_to_datetime


class SignalsModel(BaseModel):
    exact_literal: bool = False
    exact_phrase: bool = False
    exact_tokens: bool = False
    fuzzy: bool = False


class SearchResultModel(BaseModel):
    session_id: str
    source: str
    display: str
    project: str
    snippet: str = Field(description="HTML fragment with <mark> highlights")
    timestamp: int
    updated_at: datetime | None = None
    tier: Literal[1, 2, 3]
    score: float
    rank: float | None = None
    signals: SignalsModel

    @classmethod
    def from_result(cls, result: SearchResult) -> "SearchResultModel":
        payload = result.to_dict()
        payload["updated_at"] = ms_to_datetime(result.timestamp)
        return cls(**payload)


class SourceCoverageModel(BaseModel):
    indexed: int
    total: int


class CoverageModel(BaseModel):
    indexed_sessions: int
    total_sessions: int
    by_source: dict[str, SourceCoverageModel] = Field(default_factory=dict)
    last_updated_at: int

    @classmethod
    def from_coverage(cls, coverage: SearchCoverage) -> "CoverageModel":
        return cls(**coverage.to_dict())


class CoverageResponse(BaseModel):
    partial: bool
    dirty_sessions: int = 0
    coverage: CoverageModel


class SearchResponseModel(BaseModel):
    query: str
    partial: bool
    coverage: CoverageModel
    results: list[SearchResultModel]

    @classmethod
    def from_response(cls, response: SearchResponse) -> "SearchResponseModel":
        return cls(
            query=response.query,
            partial=response.partial,
            coverage=CoverageModel.from_coverage(response.coverage),
            results=[SearchResultModel.from_result(result) for result in response.results],
        )


class IndexRequest(BaseModel):
    session_id: str = Field(min_length=1)
    source: str = Field(min_length=1)
    display: str = ""
    project: str = ""
    content: str = ""
    timestamp: int = Field(default=0, ge=0, description="Session timestamp in epoch milliseconds")


class IndexResponse(BaseModel):
    status: Literal["indexed", "failed"]
    session_id: str
    source: str


class IndexedStatusResponse(BaseModel):
    session_id: str
    source: str | None = None
    indexed: bool


class RemoveResponse(BaseModel):
    status: Literal["ok", "noop"]
    removed: list[dict[str, str]]


class ExpectedSession(BaseModel):
    id: str = Field(min_length=1)
    source: str = Field(min_length=1)


class ExpectedRequest(BaseModel):
    sessions: list[ExpectedSession]


class DirtyResponse(BaseModel):
    dirty: list[str]


class ReindexResponse(BaseModel):
    processed: int
    skipped: int
    failed: int


__all__ = [
    "SignalsModel",
    "SearchResultModel",
    "SourceCoverageModel",
    "CoverageModel",
    "CoverageResponse",
    "SearchResponseModel",
    "IndexRequest",
    "IndexResponse",
    "IndexedStatusResponse",
    "RemoveResponse",
    "ExpectedSession",
    "ExpectedRequest",
    "DirtyResponse",
    "ReindexResponse",
]
