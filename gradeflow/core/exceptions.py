class PipelineError(Exception):
    """제출물 처리 파이프라인 기본 예외"""


class SubmissionNotFoundError(PipelineError):
    def __init__(self, submission_id: str):
        self.submission_id = submission_id
        super().__init__(f"Submission {submission_id} not found")


class InvalidRubricError(PipelineError):
    pass


class ExtractionError(PipelineError):
    """텍스트 추출 실패 (추출기 내부에서 흡수됨)"""


class ScoringBackendError(PipelineError):
    """채점 백엔드 실패 (채점기 내부에서 흡수됨)"""
