from sqlalchemy import Column, String, Text, DateTime, JSON
from sqlalchemy.orm import relationship
from ..database import Base, utcnow

class Assignment(Base):
    __tablename__ = "assignments"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    teacher_id = Column(String, nullable=True, index=True)
    # {"criteria": [{"name", "description", "weight", "levels": [...]}]}
    rubric_config = Column(JSON, nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    submissions = relationship("Submission", back_populates="assignment")
