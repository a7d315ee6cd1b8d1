from sqlalchemy import Column, Integer, String, Float, DateTime, JSON, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..database import Base

class Assessment(Base):
    __tablename__ = "assessments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # 제출물당 평가는 하나
    submission_id = Column(String, ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)

    # 자동 채점
    ai_score = Column(Float, nullable=True)
    confidence = Column(Float, nullable=True)
    ai_processed_at = Column(DateTime(timezone=True), nullable=True)

    # 교사 채점
    teacher_score = Column(Float, nullable=True)
    graded_at = Column(DateTime(timezone=True), nullable=True)

    final_score = Column(Float, nullable=True)
    feedback = Column(JSON, nullable=True)
    rubric_scores = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    submission = relationship("Submission", back_populates="assessment")

    def recompute_final_score(self) -> None:
        """교사 점수가 있으면 우선, 없으면 자동 채점 점수"""
        self.final_score = self.teacher_score if self.teacher_score is not None else self.ai_score

    def to_dict(self):
        return {
            "id": self.id,
            "submission_id": self.submission_id,
            "ai_score": self.ai_score,
            "teacher_score": self.teacher_score,
            "final_score": self.final_score,
            "feedback": self.feedback,
            "rubric_scores": self.rubric_scores,
            "confidence": self.confidence,
            "ai_processed_at": self.ai_processed_at.isoformat() if self.ai_processed_at else None,
            "graded_at": self.graded_at.isoformat() if self.graded_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None
        }
