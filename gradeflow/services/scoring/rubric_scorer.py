import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, Optional, Set
from async_timeout import timeout
from openai import AsyncOpenAI
from gradeflow.core.config import Settings, settings as default_settings
from gradeflow.core.exceptions import ScoringBackendError
from gradeflow.schemas.assessment import AssessmentFeedback, CriterionFeedback, ScoringResult
from gradeflow.schemas.rubric import RubricDefinition
from gradeflow.services.base_service import BaseService

logger = logging.getLogger(__name__)

DEGRADED_SCORE = 75.0
DEGRADED_CONFIDENCE = 0.5
DEGRADED_FEEDBACK = "Assessment completed with basic analysis. Manual review recommended."

_WORD_RE = re.compile(r"[a-z0-9]+")
_STOPWORDS = {"the", "a", "an", "and", "or", "of", "to", "in", "is", "are", "for", "with", "on", "be", "by"}


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, float(value)))


def _words(text: str) -> Set[str]:
    return {w for w in _WORD_RE.findall((text or "").lower()) if w not in _STOPWORDS}


class RubricScorer(ABC):
    """채점 기능 인터페이스

    score() 는 절대 예외를 던지지 않는다. 백엔드 실패 시 낮은 신뢰도의
    기본 결과를 돌려준다.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.timeout_seconds = self.settings.SCORING_TIMEOUT_SECONDS

    @abstractmethod
    async def _score(self, text: str, rubric: RubricDefinition) -> ScoringResult:
        ...

    async def score(self, text: str, rubric: RubricDefinition) -> ScoringResult:
        try:
            async with timeout(self.timeout_seconds):
                result = await self._score(text or "", rubric)
            return self._mirror_rubric(result, rubric)
        except asyncio.TimeoutError:
            logger.error(f"Scoring timed out after {self.timeout_seconds}s")
            return self.degraded_result()
        except Exception as e:
            logger.error(f"AI analysis error: {str(e)}")
            return self.degraded_result()

    @staticmethod
    def _mirror_rubric(result: ScoringResult, rubric: RubricDefinition) -> ScoringResult:
        """rubric_scores 키를 채점 기준 이름과 정확히 일치시킴"""
        scores = {}
        for name in rubric.criterion_names:
            value = result.rubric_scores.get(name, result.overall_score)
            scores[name] = round(_clamp(value, 0, 100), 2)
        return result.model_copy(update={"rubric_scores": scores})

    @staticmethod
    def degraded_result() -> ScoringResult:
        return ScoringResult(
            overall_score=DEGRADED_SCORE,
            feedback=AssessmentFeedback(overall=DEGRADED_FEEDBACK, criteria=[]),
            rubric_scores={},
            confidence=DEGRADED_CONFIDENCE,
            degraded=True
        )


class DeterministicRubricScorer(RubricScorer):
    """재현 가능한 휴리스틱 채점기 (테스트/오프라인용)

    분량과 채점 기준 어휘와의 겹침만으로 점수를 매긴다.
    """

    # 이 분량 이상이면 분량 점수 만점
    FULL_LENGTH_WORDS = 300

    async def _score(self, text: str, rubric: RubricDefinition) -> ScoringResult:
        tokens = _WORD_RE.findall(text.lower())
        vocabulary = _words(text)
        volume = min(len(tokens) / self.FULL_LENGTH_WORDS, 1.0)

        rubric_scores: Dict[str, float] = {}
        criteria_feedback = []
        for criterion in rubric.criteria:
            keywords = _words(criterion.name) | _words(criterion.description)
            for level in criterion.levels:
                keywords |= _words(level.description)
            coverage = len(keywords & vocabulary) / len(keywords) if keywords else 0.0

            value = round(100 * (0.6 * volume + 0.4 * coverage), 2) if tokens else 0.0
            rubric_scores[criterion.name] = value

            level = criterion.level_for(value)
            criteria_feedback.append(CriterionFeedback(
                name=criterion.name,
                feedback=f"Work is closest to the '{level.name}' level: {level.description}".strip(),
                suggestions=self._suggestion(volume, coverage, criterion.name)
            ))

        overall = sum(
            rubric_scores[c.name] * c.weight for c in rubric.criteria
        ) / rubric.total_weight

        return ScoringResult(
            overall_score=round(overall, 2),
            feedback=AssessmentFeedback(
                overall=self._overall_feedback(len(tokens), overall),
                criteria=criteria_feedback
            ),
            rubric_scores=rubric_scores,
            # 휴리스틱이므로 신뢰도 상한을 낮게 둔다
            confidence=round(0.3 + 0.4 * volume, 3)
        )

    @staticmethod
    def _suggestion(volume: float, coverage: float, name: str) -> str:
        if volume < 0.5:
            return f"Develop the submission further to demonstrate {name.lower()}."
        if coverage < 0.5:
            return f"Address the expectations described for {name.lower()} more directly."
        return "Keep refining the strongest parts of this work."

    @staticmethod
    def _overall_feedback(word_count: int, overall: float) -> str:
        if word_count == 0:
            return "No readable content was found in the submission."
        return f"Automated heuristic assessment of {word_count} words. Estimated score {overall:.0f}/100."


class OpenAIRubricScorer(BaseService, RubricScorer):
    def __init__(self, settings: Optional[Settings] = None, client: Optional[AsyncOpenAI] = None):
        BaseService.__init__(self, settings, client)
        RubricScorer.__init__(self, self.settings)
        self.model = self.settings.SCORING_MODEL

    def _build_prompt(self, text: str, rubric: RubricDefinition) -> str:
        return f"""
        Please analyze the following educational content based on the provided rubric:

        Content:
        {text}

        Rubric:
        {json.dumps(rubric.model_dump(), ensure_ascii=False, indent=2)}

        Please provide:
        1. An overall score (0-100)
        2. Detailed feedback for each rubric criterion
        3. Specific scores (0-100) for each rubric criterion, keyed by criterion name
        4. Confidence level in the assessment (0-1)
        5. Constructive suggestions for improvement

        Respond in JSON format with the structure:
        {{
          "score": number,
          "feedback": {{
            "overall": "string",
            "criteria": [
              {{"name": "string", "feedback": "string", "suggestions": "string"}}
            ]
          }},
          "rubricScores": {{"criteriaName": number}},
          "confidence": number
        }}
        """

    async def _score(self, text: str, rubric: RubricDefinition) -> ScoringResult:
        client = self.get_client()
        response = await client.chat.completions.create(
            model=self.model,
            temperature=0.3,
            max_tokens=2000,
            response_format={"type": "json_object"},
            messages=[
                {
                    "role": "system",
                    "content": "You are an expert educational assessment AI that analyzes student work based on provided rubrics."
                },
                {"role": "user", "content": self._build_prompt(text, rubric)}
            ]
        )
        if not response.choices:
            raise ScoringBackendError("Scoring backend returned no choices")

        content = response.choices[0].message.content or ""
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            raise ScoringBackendError(f"Malformed scoring response: {e}") from e
        if not isinstance(payload, dict):
            raise ScoringBackendError("Scoring response is not a JSON object")

        logger.info(f"채점 결과: score={payload.get('score')}, confidence={payload.get('confidence')}")
        return ScoringResult(
            overall_score=payload["score"],
            feedback=AssessmentFeedback.model_validate(payload.get("feedback") or {}),
            rubric_scores=payload.get("rubricScores") or {},
            confidence=payload["confidence"]
        )


def create_scorer(settings: Optional[Settings] = None) -> RubricScorer:
    """설정에 따라 채점기 생성"""
    settings = settings or default_settings
    if settings.SCORING_BACKEND == "openai" and settings.use_openai:
        return OpenAIRubricScorer(settings)
    if settings.SCORING_BACKEND == "openai":
        logger.warning("OPENAI_API_KEY not set; falling back to deterministic scorer")
    return DeterministicRubricScorer(settings)
