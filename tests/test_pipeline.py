"""처리 파이프라인 통합 테스트 (SQLite + 가짜 OCR)"""
import asyncio

import pytest
from sqlalchemy import func, select

from gradeflow import models
from gradeflow.models import SubmissionStatus
from gradeflow.services.analysis.extraction_service import ContentExtractor
from gradeflow.services.file.file_service import FileService
from gradeflow.services.grading.assessment_repository import AssessmentRepository
from gradeflow.services.processing.pipeline import PipelineOrchestrator
from gradeflow.services.processing.tracker import MemoryProcessingTracker
from gradeflow.services.scoring.rubric_scorer import DeterministicRubricScorer, RubricScorer
from tests.conftest import FakeOCREngine


class FailingSaveRepository(AssessmentRepository):
    async def create_or_update_assessment(self, db, submission_id, scoring):
        raise RuntimeError("disk full")


class BrokenRollbackRepository(FailingSaveRepository):
    async def update_submission_status(self, db, submission_id, status, expected=None):
        if status == SubmissionStatus.SUBMITTED:
            raise RuntimeError("connection lost")
        return await super().update_submission_status(db, submission_id, status, expected)


class BrokenLookupRepository(AssessmentRepository):
    async def load_submission(self, db, submission_id):
        raise RuntimeError("database unavailable")


class BlockingScorer(RubricScorer):
    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.inner = DeterministicRubricScorer()

    async def _score(self, text, rubric):
        self.entered.set()
        await self.release.wait()
        return await self.inner._score(text, rubric)


async def count_assessments(session_factory, submission_id):
    async with session_factory() as db:
        result = await db.execute(
            select(func.count()).select_from(models.Assessment)
            .where(models.Assessment.submission_id == submission_id)
        )
        return result.scalar_one()


@pytest.fixture
def make_orchestrator(session_factory, tmp_path):
    def _make(ocr=None, scorer=None, repository=None):
        return PipelineOrchestrator(
            tracker=MemoryProcessingTracker(),
            extractor=ContentExtractor(
                ocr_engine=ocr or FakeOCREngine(),
                file_service=FileService(tmp_path)
            ),
            scorer=scorer or DeterministicRubricScorer(),
            repository=repository or AssessmentRepository(),
            session_factory=session_factory
        )
    return _make


class TestPipelineOrchestrator:
    @pytest.mark.asyncio
    async def test_happy_path(self, make_orchestrator, seed_submission):
        await seed_submission("S1")
        orchestrator = make_orchestrator()

        handle = await orchestrator.start("S1")
        assert handle.startswith("S1-")
        await orchestrator.drain()

        result = await orchestrator.status("S1")
        assert result.status == SubmissionStatus.ASSESSED.value
        assert result.processing.status == "completed"
        assert result.processing.progress == 100
        assert result.processing.handle == handle
        assert result.assessment.final_score == result.assessment.ai_score
        assert set(result.assessment.rubric_scores) == {"Logic Flow", "Algorithm Efficiency"}
        assert not orchestrator.is_processing("S1")

    @pytest.mark.asyncio
    async def test_status_right_after_start_is_tracked(self, make_orchestrator, seed_submission):
        await seed_submission("S1")
        orchestrator = make_orchestrator()

        await orchestrator.start("S1")
        result = await orchestrator.status("S1")

        assert result.processing.status != "not_found"
        assert orchestrator.is_processing("S1")
        await orchestrator.drain()

    @pytest.mark.asyncio
    async def test_unknown_submission_status(self, make_orchestrator):
        result = await make_orchestrator().status("nope")

        assert result.status is None
        assert result.assessment is None
        assert result.processing.status == "not_found"
        assert result.processing.progress == 0

    @pytest.mark.asyncio
    async def test_ocr_failure_still_assesses(self, make_orchestrator, seed_submission):
        await seed_submission("S1", file_type="image/png", content=b"\x89PNG")
        ocr = FakeOCREngine(error=RuntimeError("vision backend down"))
        orchestrator = make_orchestrator(ocr=ocr)

        await orchestrator.start("S1")
        await orchestrator.drain()

        result = await orchestrator.status("S1")
        assert ocr.calls
        assert result.processing.status == "completed"
        assert result.status == SubmissionStatus.ASSESSED.value
        assert result.assessment is not None

    @pytest.mark.asyncio
    async def test_missing_submission_reports_error(self, make_orchestrator):
        orchestrator = make_orchestrator()

        await orchestrator.start("S404")
        await orchestrator.drain()

        result = await orchestrator.status("S404")
        assert result.status is None
        assert result.processing.status == "error"
        assert result.processing.progress == 0
        assert "S404" in result.processing.error

    @pytest.mark.asyncio
    async def test_back_to_back_starts_share_handle(self, make_orchestrator, session_factory, seed_submission):
        await seed_submission("S1")
        orchestrator = make_orchestrator()

        first = await orchestrator.start("S1")
        second = await orchestrator.start("S1")
        await orchestrator.drain()

        assert first == second
        assert await count_assessments(session_factory, "S1") == 1
        assert (await orchestrator.status("S1")).status == SubmissionStatus.ASSESSED.value

    @pytest.mark.asyncio
    async def test_concurrent_runs_in_separate_orchestrators(self, make_orchestrator, session_factory, seed_submission):
        await seed_submission("S1")
        scorers = [BlockingScorer(), BlockingScorer()]
        # 프로세스별 인스턴스처럼 각자 tracker 를 가짐, DB 만 공유
        orchestrators = [make_orchestrator(scorer=scorer) for scorer in scorers]

        for orchestrator in orchestrators:
            await orchestrator.start("S1")
        await asyncio.wait_for(
            asyncio.gather(*(scorer.entered.wait() for scorer in scorers)), timeout=5
        )
        for scorer in scorers:
            scorer.release.set()
        await asyncio.gather(*(orchestrator.drain() for orchestrator in orchestrators))

        for orchestrator in orchestrators:
            result = await orchestrator.status("S1")
            assert result.processing.status == "completed", result.processing.error
            assert result.status == SubmissionStatus.ASSESSED.value
            assert result.assessment is not None
        assert await count_assessments(session_factory, "S1") == 1

    @pytest.mark.asyncio
    async def test_reprocess_overwrites_single_assessment(self, make_orchestrator, seed_submission):
        await seed_submission("S1")
        orchestrator = make_orchestrator()

        first = await orchestrator.start("S1")
        await orchestrator.drain()
        first_assessment = (await orchestrator.status("S1")).assessment

        second = await orchestrator.start("S1")
        await orchestrator.drain()
        result = await orchestrator.status("S1")

        assert second != first
        assert result.processing.handle == second
        assert result.assessment.id == first_assessment.id
        assert result.status == SubmissionStatus.ASSESSED.value

    @pytest.mark.asyncio
    async def test_reprocess_keeps_human_score(self, make_orchestrator, session_factory, seed_submission):
        await seed_submission("S1")
        orchestrator = make_orchestrator()
        await orchestrator.start("S1")
        await orchestrator.drain()

        async with session_factory() as db:
            async with db.begin():
                await AssessmentRepository().record_human_score(db, "S1", teacher_score=95)

        await orchestrator.start("S1")
        await orchestrator.drain()

        assessment = (await orchestrator.status("S1")).assessment
        assert assessment.teacher_score == 95
        assert assessment.final_score == 95
        assert assessment.ai_score is not None

    @pytest.mark.asyncio
    async def test_save_failure_rolls_back_status(self, make_orchestrator, seed_submission):
        await seed_submission("S1")
        orchestrator = make_orchestrator(repository=FailingSaveRepository())

        await orchestrator.start("S1")
        await orchestrator.drain()

        result = await orchestrator.status("S1")
        assert result.processing.status == "error"
        assert result.processing.error == "disk full"
        assert result.status == SubmissionStatus.SUBMITTED.value
        assert result.assessment is None

    @pytest.mark.asyncio
    async def test_rollback_failure_is_contained(self, make_orchestrator, seed_submission):
        await seed_submission("S1")
        orchestrator = make_orchestrator(repository=BrokenRollbackRepository())

        await orchestrator.start("S1")
        await orchestrator.drain()

        result = await orchestrator.status("S1")
        assert result.processing.status == "error"
        assert result.processing.error == "disk full"

    @pytest.mark.asyncio
    async def test_invalid_rubric_fails_without_assessment(self, make_orchestrator, seed_submission):
        await seed_submission("S1", rubric_config={"criteria": []})
        orchestrator = make_orchestrator()

        await orchestrator.start("S1")
        await orchestrator.drain()

        result = await orchestrator.status("S1")
        assert result.processing.status == "error"
        assert result.status == SubmissionStatus.SUBMITTED.value
        assert result.assessment is None

    @pytest.mark.asyncio
    async def test_in_flight_status_is_processing(self, make_orchestrator, seed_submission):
        await seed_submission("S1")
        scorer = BlockingScorer()
        orchestrator = make_orchestrator(scorer=scorer)

        await orchestrator.start("S1")
        await asyncio.wait_for(scorer.entered.wait(), timeout=5)

        result = await orchestrator.status("S1")
        assert result.processing.status == "analyzing"
        assert result.processing.progress == 60
        assert result.status == SubmissionStatus.PROCESSING.value

        scorer.release.set()
        await orchestrator.drain()
        assert (await orchestrator.status("S1")).processing.status == "completed"

    @pytest.mark.asyncio
    async def test_failed_run_does_not_undo_other_runs_result(self, make_orchestrator, seed_submission):
        await seed_submission("S1")
        winner_scorer, loser_scorer = BlockingScorer(), BlockingScorer()
        winner = make_orchestrator(scorer=winner_scorer)
        loser = make_orchestrator(scorer=loser_scorer, repository=FailingSaveRepository())

        await winner.start("S1")
        await loser.start("S1")
        await asyncio.wait_for(
            asyncio.gather(winner_scorer.entered.wait(), loser_scorer.entered.wait()), timeout=5
        )

        winner_scorer.release.set()
        await winner.drain()
        loser_scorer.release.set()
        await loser.drain()

        result = await loser.status("S1")
        assert result.processing.status == "error"
        assert result.status == SubmissionStatus.ASSESSED.value
        assert result.assessment is not None

    @pytest.mark.asyncio
    async def test_database_failure_is_not_reported_as_missing(self, make_orchestrator, seed_submission):
        await seed_submission("S1")
        orchestrator = make_orchestrator(repository=BrokenLookupRepository())

        result = await orchestrator.status("S1")

        assert result.status is None
        assert result.lookup_error == "database unavailable"
        assert result.processing.status == "not_found"

    @pytest.mark.asyncio
    async def test_missing_submission_has_no_lookup_error(self, make_orchestrator):
        result = await make_orchestrator().status("nope")
        assert result.lookup_error is None
