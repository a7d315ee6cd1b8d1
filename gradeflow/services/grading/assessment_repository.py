import logging
from typing import Any, Dict, Optional
from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload
from gradeflow import models
from gradeflow.database import utcnow
from gradeflow.core.exceptions import SubmissionNotFoundError
from gradeflow.models import SubmissionStatus
from gradeflow.schemas.assessment import AssessmentFeedback, ScoringResult

logger = logging.getLogger(__name__)

# ON CONFLICT upsert 를 지원하는 dialect
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

MACHINE_FIELDS = ("ai_score", "feedback", "rubric_scores", "confidence", "ai_processed_at")


class AssessmentRepository:
    """제출물/평가 영속화

    커밋은 호출자가 트랜잭션 단위로 관리한다 (async with db.begin()).
    """

    async def load_submission(
        self,
        db: AsyncSession,
        submission_id: str
    ) -> Optional[models.Submission]:
        """제출물 + 과제(채점 기준) 조회"""
        stmt = select(models.Submission).options(
            joinedload(models.Submission.assignment),
            joinedload(models.Submission.assessment)
        ).where(models.Submission.id == submission_id)

        result = await db.execute(stmt)
        return result.unique().scalar_one_or_none()

    async def update_submission_status(
        self,
        db: AsyncSession,
        submission_id: str,
        status: SubmissionStatus,
        expected: Optional[SubmissionStatus] = None
    ) -> bool:
        """상태 변경

        expected 가 주어지면 현재 상태가 그 값일 때만 바꾸고, 아니면 False.
        expected 없이 제출물이 없으면 SubmissionNotFoundError.
        """
        stmt = (
            update(models.Submission)
            .where(models.Submission.id == submission_id)
            .values(status=status.value, updated_at=utcnow())
        )
        if expected is not None:
            stmt = stmt.where(models.Submission.status == expected.value)

        result = await db.execute(stmt)
        if result.rowcount == 0:
            if expected is None:
                raise SubmissionNotFoundError(submission_id)
            logger.info(
                f"Submission {submission_id} is no longer {expected.value}; status left unchanged"
            )
            return False
        logger.info(f"Submission {submission_id} status -> {status.value}")
        return True

    async def get_assessment(
        self,
        db: AsyncSession,
        submission_id: str
    ) -> Optional[models.Assessment]:
        result = await db.execute(
            select(models.Assessment)
            .where(models.Assessment.submission_id == submission_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _machine_values(scoring: ScoringResult) -> Dict[str, Any]:
        return {
            "ai_score": scoring.overall_score,
            "feedback": scoring.feedback.model_dump(),
            "rubric_scores": dict(scoring.rubric_scores),
            "confidence": scoring.confidence,
            "ai_processed_at": utcnow(),
        }

    async def create_or_update_assessment(
        self,
        db: AsyncSession,
        submission_id: str,
        scoring: ScoringResult
    ) -> models.Assessment:
        """자동 채점 결과 upsert (교사 채점 필드는 건드리지 않음)

        제출물당 한 행. 동시에 저장하면 마지막 쓰기가 남는다.
        """
        values = self._machine_values(scoring)
        insert = _UPSERT_INSERTS.get(db.get_bind().dialect.name)
        if insert is None:
            return await self._upsert_with_retry(db, submission_id, values)

        stmt = insert(models.Assessment).values(
            submission_id=submission_id,
            final_score=values["ai_score"],
            **values
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[models.Assessment.submission_id],
            set_={
                **{field: stmt.excluded[field] for field in MACHINE_FIELDS},
                # 교사 점수 우선
                "final_score": func.coalesce(models.Assessment.teacher_score, stmt.excluded.ai_score),
                "updated_at": func.now(),
            }
        )
        await db.execute(stmt)
        logger.info(f"Upserted assessment for submission {submission_id} (ai_score={values['ai_score']})")

        return await self.get_assessment(db, submission_id)

    async def _upsert_with_retry(
        self,
        db: AsyncSession,
        submission_id: str,
        values: Dict[str, Any]
    ) -> models.Assessment:
        """ON CONFLICT 미지원 dialect: insert 충돌 시 update 로 재시도"""
        assessment = await self.get_assessment(db, submission_id)
        if assessment is None:
            try:
                async with db.begin_nested():
                    assessment = models.Assessment(submission_id=submission_id, **values)
                    assessment.recompute_final_score()
                    db.add(assessment)
                    await db.flush()
                logger.info(f"Creating assessment for submission {submission_id}")
                return assessment
            except IntegrityError:
                logger.warning(f"Assessment for submission {submission_id} created concurrently; updating")
                assessment = await self.get_assessment(db, submission_id)

        for field, value in values.items():
            setattr(assessment, field, value)
        assessment.recompute_final_score()
        await db.flush()
        return assessment

    async def record_human_score(
        self,
        db: AsyncSession,
        submission_id: str,
        teacher_score: float,
        feedback: Optional[AssessmentFeedback] = None,
        rubric_scores: Optional[Dict[str, float]] = None
    ) -> models.Assessment:
        """교사 채점 반영 (최종 점수는 교사 점수 우선)"""
        await self.update_submission_status(db, submission_id, SubmissionStatus.GRADED)

        assessment = await self.get_assessment(db, submission_id)
        if assessment is None:
            assessment = models.Assessment(submission_id=submission_id)
            db.add(assessment)

        assessment.teacher_score = teacher_score
        if feedback is not None:
            assessment.feedback = feedback.model_dump()
        if rubric_scores is not None:
            assessment.rubric_scores = dict(rubric_scores)
        assessment.graded_at = utcnow()
        assessment.recompute_final_score()

        await db.flush()
        return assessment
