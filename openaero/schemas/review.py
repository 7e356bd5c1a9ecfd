"""
심사 관련 요청 스키마.
"""
from typing import List, Literal, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from openaero.models import ReviewDecision


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StartReviewRequest(_CamelModel):
    # 비어 있으면 요청한 관리자가 심사자가 됨
    reviewer_id: Optional[uuid.UUID] = None


class CompleteReviewRequest(_CamelModel):
    review_id: Optional[uuid.UUID] = None
    decision: ReviewDecision
    score: Optional[int] = Field(default=None, ge=1, le=10)
    comments: Optional[str] = Field(default=None, max_length=2000)
    quality_score: Optional[int] = Field(default=None, ge=1, le=10)
    completeness: Optional[int] = Field(default=None, ge=1, le=10)
    innovation: Optional[int] = Field(default=None, ge=1, le=10)
    market_potential: Optional[int] = Field(default=None, ge=1, le=10)
    decision_notes: Optional[str] = Field(default=None, max_length=1000)
    suggestions: Optional[List[str]] = None


class BatchReviewRequest(_CamelModel):
    solution_ids: List[uuid.UUID] = Field(min_length=1)
    action: Literal["approve", "reject"]
    notes: Optional[str] = None

