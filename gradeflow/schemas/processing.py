from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum
from .assessment import AssessmentData


class ProcessingPhase(str, Enum):
    STARTED = "started"
    LOADING = "loading"
    EXTRACTING = "extracting"
    ANALYZING = "analyzing"
    SAVING = "saving"
    COMPLETED = "completed"
    ERROR = "error"


# 단계별 진행률
PHASE_PROGRESS = {
    ProcessingPhase.STARTED: 0,
    ProcessingPhase.LOADING: 10,
    ProcessingPhase.EXTRACTING: 30,
    ProcessingPhase.ANALYZING: 60,
    ProcessingPhase.SAVING: 90,
    ProcessingPhase.COMPLETED: 100,
    ProcessingPhase.ERROR: 0,
}


class ProcessingRecord(BaseModel):
    handle: str
    status: ProcessingPhase
    progress: int = Field(default=0, ge=0, le=100)
    error: Optional[str] = None


class ProcessingSnapshot(BaseModel):
    """폴링 응답용 처리 상태 (레코드가 없으면 not_found)"""
    status: str
    progress: int = 0
    error: Optional[str] = None
    handle: Optional[str] = None

    @classmethod
    def not_found(cls) -> "ProcessingSnapshot":
        return cls(status="not_found", progress=0)

    @classmethod
    def from_record(cls, record: ProcessingRecord) -> "ProcessingSnapshot":
        return cls(
            status=record.status.value,
            progress=record.progress,
            error=record.error,
            handle=record.handle
        )


class ProcessingStatus(BaseModel):
    submission_id: str
    status: Optional[str] = None
    assessment: Optional[AssessmentData] = None
    processing: ProcessingSnapshot
    # DB 조회 실패 시 (status 가 None 이어도 제출물이 없다는 뜻은 아님)
    lookup_error: Optional[str] = None


class AssessRequest(BaseModel):
    submission_id: str


class ProcessingStartResponse(BaseModel):
    message: str
    processing_id: str
