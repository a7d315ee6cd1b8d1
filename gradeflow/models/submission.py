from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
import enum
import uuid
from ..database import Base, utcnow

class SubmissionStatus(str, enum.Enum):
    SUBMITTED = "SUBMITTED"
    PROCESSING = "PROCESSING"
    ASSESSED = "ASSESSED"
    GRADED = "GRADED"
    RETURNED = "RETURNED"

class Submission(Base):
    __tablename__ = "submissions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    student_id = Column(String, nullable=False, index=True)
    assignment_id = Column(String, ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String)
    file_path = Column(String, nullable=False)
    file_type = Column(String, nullable=False)
    file_size = Column(Integer)
    status = Column(String(20), nullable=False, default=SubmissionStatus.SUBMITTED.value, index=True)
    submitted_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    assignment = relationship("Assignment", back_populates="submissions")
    assessment = relationship("Assessment", back_populates="submission", uselist=False, cascade="all, delete-orphan")
