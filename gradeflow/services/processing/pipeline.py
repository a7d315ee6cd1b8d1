import asyncio
import logging
from typing import Dict, Optional, Set
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from gradeflow import models
from gradeflow.core.exceptions import InvalidRubricError, SubmissionNotFoundError
from gradeflow.database import async_session_maker
from gradeflow.models import SubmissionStatus
from gradeflow.schemas.assessment import AssessmentData
from gradeflow.schemas.processing import ProcessingPhase, ProcessingSnapshot, ProcessingStatus
from gradeflow.schemas.rubric import RubricDefinition
from gradeflow.services.analysis.extraction_service import ContentExtractor
from gradeflow.services.grading.assessment_repository import AssessmentRepository
from gradeflow.services.processing.tracker import ProcessingTracker
from gradeflow.services.scoring.rubric_scorer import RubricScorer

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """제출물 처리 파이프라인

    SUBMITTED -> PROCESSING -> ASSESSED, 실패 시 SUBMITTED 로 되돌린다.
    start() 는 처리 핸들을 바로 반환하고 실제 작업은 백그라운드 태스크에서
    진행된다. 진행 상태는 tracker 를 통해 폴링한다.
    """

    def __init__(
        self,
        tracker: ProcessingTracker,
        extractor: ContentExtractor,
        scorer: RubricScorer,
        repository: Optional[AssessmentRepository] = None,
        session_factory: Optional[async_sessionmaker] = None
    ):
        self.tracker = tracker
        self.extractor = extractor
        self.scorer = scorer
        self.repository = repository or AssessmentRepository()
        self.session_factory = session_factory or async_session_maker
        self._tasks: Set[asyncio.Task] = set()
        # submission_id -> 진행 중인 handle
        self._in_flight: Dict[str, str] = {}
        self._start_lock = asyncio.Lock()

    async def start(self, submission_id: str) -> str:
        """처리 시작 후 handle 반환 (같은 제출물이 이미 처리 중이면 기존 handle)"""
        async with self._start_lock:
            existing = self._in_flight.get(submission_id)
            if existing is not None:
                logger.info(f"Submission {submission_id} already processing ({existing})")
                return existing

            handle = await self.tracker.new_handle(submission_id)
            await self.tracker.begin(handle)
            self._in_flight[submission_id] = handle

        task = asyncio.create_task(self._run(submission_id, handle))
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(submission_id, handle, t))
        logger.info(f"Processing started: {handle}")
        return handle

    def _on_done(self, submission_id: str, handle: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if self._in_flight.get(submission_id) == handle:
            del self._in_flight[submission_id]

    def is_processing(self, submission_id: str) -> bool:
        return submission_id in self._in_flight

    async def drain(self) -> None:
        """진행 중인 모든 처리 완료 대기"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def status(self, submission_id: str) -> ProcessingStatus:
        """영속 상태 + 최신 평가 + 처리 상태 (예외를 던지지 않음)"""
        try:
            record = await self.tracker.lookup(submission_id)
            snapshot = ProcessingSnapshot.from_record(record) if record else ProcessingSnapshot.not_found()
        except Exception as e:
            logger.error(f"Processing status lookup failed for {submission_id}: {str(e)}")
            snapshot = ProcessingSnapshot.not_found()

        persisted_status = None
        assessment = None
        lookup_error = None
        try:
            async with self.session_factory() as db:
                submission = await self.repository.load_submission(db, submission_id)
                if submission is not None:
                    persisted_status = submission.status
                    if submission.assessment is not None:
                        assessment = AssessmentData.model_validate(submission.assessment)
        except Exception as e:
            logger.error(f"Submission lookup failed for {submission_id}: {str(e)}")
            lookup_error = str(e) or e.__class__.__name__

        return ProcessingStatus(
            submission_id=submission_id,
            status=persisted_status,
            assessment=assessment,
            processing=snapshot,
            lookup_error=lookup_error
        )

    @staticmethod
    def _load_rubric(submission: models.Submission) -> RubricDefinition:
        if submission.assignment is None:
            raise InvalidRubricError(f"Submission {submission.id} has no assignment")
        try:
            return RubricDefinition.model_validate(submission.assignment.rubric_config)
        except ValidationError as e:
            raise InvalidRubricError(
                f"Invalid rubric for assignment {submission.assignment_id}: {e.error_count()} errors"
            ) from e

    async def _run(self, submission_id: str, handle: str) -> None:
        submission_loaded = False
        async with self.session_factory() as db:
            try:
                await self.tracker.advance(handle, ProcessingPhase.LOADING)
                async with db.begin():
                    submission = await self.repository.load_submission(db, submission_id)
                    if submission is None:
                        raise SubmissionNotFoundError(submission_id)
                    submission_loaded = True
                    rubric = self._load_rubric(submission)
                    file_path, file_type = submission.file_path, submission.file_type
                    await self.repository.update_submission_status(
                        db, submission_id, SubmissionStatus.PROCESSING
                    )

                await self.tracker.advance(handle, ProcessingPhase.EXTRACTING)
                extracted_text = await self.extractor.extract_file(file_path, file_type)

                await self.tracker.advance(handle, ProcessingPhase.ANALYZING)
                scoring = await self.scorer.score(extracted_text, rubric)
                if scoring.degraded:
                    logger.warning(f"Degraded assessment for submission {submission_id}")

                await self.tracker.advance(handle, ProcessingPhase.SAVING)
                # 평가 저장과 ASSESSED 전환은 한 트랜잭션
                async with db.begin():
                    await self.repository.create_or_update_assessment(db, submission_id, scoring)
                    await self.repository.update_submission_status(
                        db, submission_id, SubmissionStatus.ASSESSED
                    )

                await self.tracker.advance(handle, ProcessingPhase.COMPLETED)
                logger.info(f"Processing completed: {handle} (score={scoring.overall_score})")

            except Exception as e:
                logger.error(f"Processing error ({handle}): {str(e)}", exc_info=True)
                if submission_loaded:
                    await self._rollback_status(db, submission_id)
                await self._mark_failed(handle, e)

    async def _rollback_status(self, db: AsyncSession, submission_id: str) -> None:
        # 이 실행이 남긴 PROCESSING 만 되돌린다 (다른 실행의 ASSESSED 는 유지)
        try:
            async with db.begin():
                await self.repository.update_submission_status(
                    db, submission_id, SubmissionStatus.SUBMITTED,
                    expected=SubmissionStatus.PROCESSING
                )
        except Exception as e:
            logger.error(f"Failed to roll back status of submission {submission_id}: {str(e)}")

    async def _mark_failed(self, handle: str, error: Exception) -> None:
        try:
            await self.tracker.fail(handle, str(error) or error.__class__.__name__)
        except Exception as e:
            logger.error(f"Failed to record processing error for {handle}: {str(e)}")
