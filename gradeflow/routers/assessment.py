from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from gradeflow.core.exceptions import SubmissionNotFoundError
from gradeflow.database import get_db
from gradeflow.dependencies import get_orchestrator, get_repository
from gradeflow.schemas.assessment import AssessmentData, AssessmentResponse, HumanGradeRequest
from gradeflow.schemas.processing import AssessRequest, ProcessingStartResponse, ProcessingStatus
from gradeflow.services.grading.assessment_repository import AssessmentRepository
from gradeflow.services.processing.pipeline import PipelineOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/assessment",
    tags=["assessment"]
)

async def _ensure_submission(db: AsyncSession, repository: AssessmentRepository, submission_id: str):
    submission = await repository.load_submission(db, submission_id)
    if not submission:
        raise HTTPException(status_code=404, detail="Submission not found")
    return submission

@router.post("/assess", response_model=ProcessingStartResponse)
async def assess_submission(
    request: AssessRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
    repository: AssessmentRepository = Depends(get_repository),
    db: AsyncSession = Depends(get_db)
):
    """자동 평가 시작"""
    await _ensure_submission(db, repository, request.submission_id)
    processing_id = await orchestrator.start(request.submission_id)
    return ProcessingStartResponse(message="AI assessment started", processing_id=processing_id)

@router.post("/reprocess", response_model=ProcessingStartResponse)
async def reprocess_submission(
    request: AssessRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
    repository: AssessmentRepository = Depends(get_repository),
    db: AsyncSession = Depends(get_db)
):
    """자동 평가 재실행 (기존 평가를 덮어씀)"""
    await _ensure_submission(db, repository, request.submission_id)
    processing_id = await orchestrator.start(request.submission_id)
    return ProcessingStartResponse(message="AI reprocessing started", processing_id=processing_id)

@router.get("/status/{submission_id}", response_model=ProcessingStatus)
async def get_processing_status(
    submission_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    """처리 상태 조회"""
    result = await orchestrator.status(submission_id)
    if result.lookup_error is not None:
        raise HTTPException(status_code=503, detail="Submission lookup failed, try again later")
    if result.status is None:
        raise HTTPException(status_code=404, detail="Submission not found")
    return result

@router.put("/{submission_id}/grade", response_model=AssessmentResponse)
async def grade_submission(
    submission_id: str,
    request: HumanGradeRequest,
    repository: AssessmentRepository = Depends(get_repository),
    db: AsyncSession = Depends(get_db)
):
    """교사 채점 (자동 채점 점수보다 우선)"""
    try:
        async with db.begin():
            assessment = await repository.record_human_score(
                db,
                submission_id,
                teacher_score=request.teacher_score,
                feedback=request.feedback,
                rubric_scores=request.rubric_scores
            )
        return AssessmentResponse(
            success=True,
            message="채점 완료",
            data=AssessmentData.model_validate(assessment)
        )
    except SubmissionNotFoundError:
        raise HTTPException(status_code=404, detail="Submission not found")
