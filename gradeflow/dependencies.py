import logging
from typing import Optional
from fastapi import FastAPI
from gradeflow.core.config import settings
from gradeflow.services.analysis.extraction_service import ContentExtractor
from gradeflow.services.analysis.ocr_engine import OpenAIVisionOCREngine
from gradeflow.services.file.file_service import FileService
from gradeflow.services.grading.assessment_repository import AssessmentRepository
from gradeflow.services.processing.pipeline import PipelineOrchestrator
from gradeflow.services.processing.tracker import ProcessingTracker, TrackerSweeper, create_tracker
from gradeflow.services.scoring.rubric_scorer import RubricScorer, create_scorer

logger = logging.getLogger(__name__)

# 설정 로깅
logger.info(f"OPENAI_API_KEY exists: {bool(settings.OPENAI_API_KEY)}")

class Services:
    def __init__(self):
        self.tracker: Optional[ProcessingTracker] = None
        self.sweeper: Optional[TrackerSweeper] = None
        self.extractor: Optional[ContentExtractor] = None
        self.scorer: Optional[RubricScorer] = None
        self.repository: Optional[AssessmentRepository] = None
        self.orchestrator: Optional[PipelineOrchestrator] = None

services = Services()

async def init_services():
    """서비스 초기화"""
    try:
        logger.info("Initializing ProcessingTracker...")
        services.tracker = create_tracker(settings)
        services.sweeper = TrackerSweeper(services.tracker, settings.PROCESSING_SWEEP_INTERVAL_SECONDS)
        services.sweeper.start()

        logger.info("Initializing ContentExtractor...")
        services.extractor = ContentExtractor(
            ocr_engine=OpenAIVisionOCREngine(settings),
            file_service=FileService(settings.UPLOAD_DIR),
            settings=settings
        )

        logger.info("Initializing RubricScorer...")
        services.scorer = create_scorer(settings)
        services.repository = AssessmentRepository()

        services.orchestrator = PipelineOrchestrator(
            tracker=services.tracker,
            extractor=services.extractor,
            scorer=services.scorer,
            repository=services.repository
        )
        logger.info("PipelineOrchestrator initialized successfully")

    except Exception as e:
        logger.error(f"Error initializing services: {e}")
        raise

async def shutdown_services():
    """서비스 종료"""
    if services.orchestrator is not None:
        await services.orchestrator.drain()
    if services.sweeper is not None:
        await services.sweeper.stop()
    if services.tracker is not None:
        await services.tracker.close()

def get_orchestrator() -> PipelineOrchestrator:
    if services.orchestrator is None:
        raise RuntimeError("Services not initialized")
    return services.orchestrator

def get_repository() -> AssessmentRepository:
    if services.repository is None:
        raise RuntimeError("Services not initialized")
    return services.repository

async def init_app(app: FastAPI):
    """앱 초기화"""
    try:
        await init_services()
        logger.info("Services initialized successfully")
    except Exception as e:
        logger.error(f"Service initialization failed: {str(e)}")
        raise
