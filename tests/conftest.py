"""
공용 테스트 fixture
임시 디렉토리의 SQLite(aiosqlite) DB 와 가짜 OCR 엔진을 사용한다. 네트워크 호출 없음.
"""
import os

os.environ.setdefault("SQLALCHEMY_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from gradeflow.database import Base
from gradeflow import models
from gradeflow.models import SubmissionStatus
from gradeflow.schemas.rubric import RubricDefinition
from gradeflow.services.analysis.ocr_engine import OCREngine


RUBRIC_CONFIG = {
    "criteria": [
        {
            "name": "Logic Flow",
            "description": "Steps follow a clear logical order",
            "weight": 2,
            "levels": [
                {"name": "Beginning", "description": "No clear structure", "points": 1},
                {"name": "Developing", "description": "Some ordered steps", "points": 2},
                {"name": "Proficient", "description": "Clear logical structure", "points": 3},
            ],
        },
        {
            "name": "Algorithm Efficiency",
            "description": "Solution avoids unnecessary work",
            "weight": 1,
            "levels": [
                {"name": "Inefficient", "description": "Redundant nested loops", "points": 1},
                {"name": "Efficient", "description": "Optimal complexity", "points": 3},
            ],
        },
    ]
}

SAMPLE_TEXT = (
    "The algorithm follows a clear logical structure. First we sort the input, "
    "then each step scans the ordered list once, which avoids redundant nested loops "
    "and keeps the complexity optimal."
)


class FakeOCREngine(OCREngine):
    def __init__(self, text: str = "recognized text", error: Exception = None):
        self.text = text
        self.error = error
        self.calls = []

    async def recognize(self, image: bytes, media_type: str) -> str:
        self.calls.append((image, media_type))
        if self.error is not None:
            raise self.error
        return self.text


@pytest.fixture
def rubric():
    return RubricDefinition.model_validate(RUBRIC_CONFIG)


@pytest.fixture
def fake_ocr():
    return FakeOCREngine()


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


@pytest.fixture
def seed_submission(session_factory, tmp_path):
    """과제 + 제출물 생성 helper (제출물마다 별도 과제)"""
    async def _seed(
        submission_id: str = "S1",
        file_type: str = "text/plain",
        content: bytes = SAMPLE_TEXT.encode(),
        rubric_config: dict = RUBRIC_CONFIG,
        status: SubmissionStatus = SubmissionStatus.SUBMITTED
    ) -> str:
        file_path = tmp_path / f"{submission_id}.upload"
        file_path.write_bytes(content)

        async with session_factory() as db:
            async with db.begin():
                db.add(models.Assignment(
                    id=f"A-{submission_id}",
                    title=f"Assignment for {submission_id}",
                    teacher_id="teacher-1",
                    rubric_config=rubric_config
                ))
                db.add(models.Submission(
                    id=submission_id,
                    student_id="student-1",
                    assignment_id=f"A-{submission_id}",
                    file_name=file_path.name,
                    file_path=str(file_path),
                    file_type=file_type,
                    file_size=len(content),
                    status=status.value
                ))
        return submission_id

    return _seed
