from .base import ResponseBase
from .rubric import RubricDefinition, RubricCriterion, RubricLevel
from .assessment import (
    AssessmentData,
    AssessmentFeedback,
    AssessmentResponse,
    CriterionFeedback,
    HumanGradeRequest,
    ScoringResult
)
from .processing import (
    AssessRequest,
    PHASE_PROGRESS,
    ProcessingPhase,
    ProcessingRecord,
    ProcessingSnapshot,
    ProcessingStartResponse,
    ProcessingStatus
)
