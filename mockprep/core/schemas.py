"""
MockPrep — API & Assessment Schemas

Pydantic models for request bodies crossing the HTTP boundary and for the
structured assessment returned by the feedback LLM. Field aliases keep the
camelCase wire format used by the web client.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

CATEGORY_NAMES = (
    "Communication Skills",
    "Role-Specific Knowledge",
    "Problem Solving",
    "Cultural Fit",
    "Confidence and Clarity",
)


class TranscriptMessage(BaseModel):
    role: str
    content: str


class FeedbackCreate(BaseModel):
    """Body of POST /api/feedback and POST /api/interview/recover."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    messages: List[TranscriptMessage]
    interview_id: str = Field(alias="interviewId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)
    feedback_id: Optional[str] = Field(default=None, alias="feedbackId")


class CategoryScore(BaseModel):
    name: str
    score: float = Field(ge=0, le=100)
    comment: str


class Assessment(BaseModel):
    """Structured evaluation of one interview transcript."""
    model_config = ConfigDict(populate_by_name=True)

    total_score: float = Field(alias="totalScore", ge=0, le=100)
    category_scores: List[CategoryScore] = Field(alias="categoryScores")
    strengths: List[str] = Field(default_factory=list)
    areas_for_improvement: List[str] = Field(default_factory=list, alias="areasForImprovement")
    final_assessment: str = Field(alias="finalAssessment")

    @field_validator("category_scores")
    @classmethod
    def _fixed_categories(cls, v: List[CategoryScore]) -> List[CategoryScore]:
        names = tuple(c.name for c in v)
        if names != CATEGORY_NAMES:
            raise ValueError(f"categoryScores must be exactly {list(CATEGORY_NAMES)}, got {list(names)}")
        return v


class FeedbackOut(Assessment):
    id: str
    interview_id: str = Field(alias="interviewId")
    user_id: str = Field(alias="userId")
    created_at: str = Field(alias="createdAt")
