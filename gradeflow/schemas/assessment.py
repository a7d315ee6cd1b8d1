from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Any
from datetime import datetime
from .base import ResponseBase


class CriterionFeedback(BaseModel):
    name: str
    feedback: str = ""
    suggestions: str = ""


class AssessmentFeedback(BaseModel):
    overall: str = ""
    criteria: List[CriterionFeedback] = []


class ScoringResult(BaseModel):
    """채점기 출력 계약"""
    overall_score: float = Field(ge=0, le=100)
    feedback: AssessmentFeedback
    rubric_scores: Dict[str, float] = {}
    confidence: float = Field(ge=0, le=1)
    degraded: bool = False


class AssessmentData(BaseModel):
    id: int
    submission_id: str
    ai_score: Optional[float] = None
    teacher_score: Optional[float] = None
    final_score: Optional[float] = None
    feedback: Optional[Dict[str, Any]] = None
    rubric_scores: Optional[Dict[str, float]] = None
    confidence: Optional[float] = None
    ai_processed_at: Optional[datetime] = None
    graded_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class HumanGradeRequest(BaseModel):
    """교사 채점 요청"""
    teacher_score: float = Field(ge=0, le=100)
    feedback: Optional[AssessmentFeedback] = None
    rubric_scores: Optional[Dict[str, float]] = None


class AssessmentResponse(ResponseBase[AssessmentData]):
    pass
