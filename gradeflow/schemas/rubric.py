from pydantic import BaseModel, Field, field_validator
from typing import List, Optional


class RubricLevel(BaseModel):
    name: str
    description: str = ""
    points: float


class RubricCriterion(BaseModel):
    name: str
    description: str = ""
    weight: float = Field(default=1.0, gt=0)
    levels: List[RubricLevel] = Field(min_length=1)

    @property
    def max_points(self) -> float:
        return max(level.points for level in self.levels)

    def level_for(self, score: float) -> Optional[RubricLevel]:
        """0-100 점수에 해당하는 수준 반환 (배점 기준)"""
        ordered = sorted(self.levels, key=lambda level: level.points)
        top = ordered[-1].points
        if top <= 0:
            return ordered[-1]
        target = score / 100 * top
        chosen = ordered[0]
        for level in ordered:
            if level.points <= target:
                chosen = level
        return chosen


class RubricDefinition(BaseModel):
    """과제의 채점 기준 (순서 유지)"""
    criteria: List[RubricCriterion] = Field(min_length=1)

    @field_validator("criteria")
    @classmethod
    def unique_names(cls, criteria: List[RubricCriterion]) -> List[RubricCriterion]:
        names = [c.name for c in criteria]
        if len(names) != len(set(names)):
            raise ValueError("criterion names must be unique")
        return criteria

    @property
    def criterion_names(self) -> List[str]:
        return [c.name for c in self.criteria]

    @property
    def total_weight(self) -> float:
        return sum(c.weight for c in self.criteria)
