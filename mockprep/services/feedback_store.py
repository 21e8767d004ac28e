"""
MockPrep — Feedback Repository

SQLModel persistence for generated assessments. Passing an existing
feedback id overwrites that record (a retake updates the same report);
otherwise a new id is minted.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, JSON
from sqlmodel import Field, Session, SQLModel, create_engine, select

from ..core.schemas import Assessment

logger = logging.getLogger("mockprep.feedback_store")


class FeedbackRecord(SQLModel, table=True):
    __tablename__ = "feedback"

    id: str = Field(primary_key=True)
    interview_id: str = Field(index=True)
    user_id: str = Field(index=True)
    total_score: float = 0.0
    category_scores: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    strengths: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    areas_for_improvement: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    final_assessment: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "interviewId": self.interview_id,
            "userId": self.user_id,
            "totalScore": self.total_score,
            "categoryScores": self.category_scores,
            "strengths": self.strengths,
            "areasForImprovement": self.areas_for_improvement,
            "finalAssessment": self.final_assessment,
            "createdAt": self.created_at.isoformat(),
        }


class FeedbackRepository:
    def __init__(self, url: str) -> None:
        connect_args: Dict[str, Any] = {}
        if url.startswith("sqlite:///"):
            connect_args["check_same_thread"] = False
            db_path = url[len("sqlite:///"):]
            if db_path and db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._engine = create_engine(url, echo=False, connect_args=connect_args)

    def create_tables(self) -> None:
        SQLModel.metadata.create_all(self._engine)

    def save(
        self,
        interview_id: str,
        user_id: str,
        assessment: Assessment,
        feedback_id: Optional[str] = None,
    ) -> str:
        record_id = feedback_id or uuid.uuid4().hex
        with Session(self._engine) as s:
            obj = s.get(FeedbackRecord, record_id)
            if obj is None:
                obj = FeedbackRecord(id=record_id, interview_id=interview_id, user_id=user_id)
                s.add(obj)
                logger.info(f"[{interview_id}] Creating feedback {record_id}")
            else:
                logger.info(f"[{interview_id}] Updating existing feedback {record_id}")
            obj.interview_id = interview_id
            obj.user_id = user_id
            obj.total_score = assessment.total_score
            obj.category_scores = [c.model_dump() for c in assessment.category_scores]
            obj.strengths = list(assessment.strengths)
            obj.areas_for_improvement = list(assessment.areas_for_improvement)
            obj.final_assessment = assessment.final_assessment
            obj.created_at = datetime.now(timezone.utc)
            s.commit()
        return record_id

    def get(self, feedback_id: str) -> Optional[FeedbackRecord]:
        with Session(self._engine) as s:
            return s.get(FeedbackRecord, feedback_id)

    def get_by_interview(self, interview_id: str, user_id: str) -> Optional[FeedbackRecord]:
        with Session(self._engine) as s:
            stmt = (
                select(FeedbackRecord)
                .where(FeedbackRecord.interview_id == interview_id)
                .where(FeedbackRecord.user_id == user_id)
                .limit(1)
            )
            return s.exec(stmt).first()
