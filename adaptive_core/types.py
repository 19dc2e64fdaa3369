from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Optional, Literal, Tuple, Union

from .errors import InvalidConfig

DifficultyTier = Literal["beginner", "intermediate", "advanced", "expert"]
TIERS: Tuple[str, ...] = ("beginner", "intermediate", "advanced", "expert")
ItemType = Literal[
    "multiple_choice", "true_false", "fill_in_blank", "matching",
    "ordering", "essay", "code_submission", "file_upload",
]
CHOICE_TYPES = frozenset({"multiple_choice", "true_false"})


@dataclass(frozen=True)
class IRTParams:
    discrimination: float = 1.0  # a
    difficulty: float = 0.0      # b
    guessing: float = 0.2        # c

    def is_valid(self) -> bool:
        return self.discrimination > 0 and 0.0 <= self.guessing < 1.0


@dataclass
class Item:
    id: str
    difficulty_tier: DifficultyTier = "intermediate"
    tags: List[str] = field(default_factory=list)
    type: ItemType = "multiple_choice"
    irt: Optional[IRTParams] = None
    text: str = ""
    options: Optional[List[str]] = None
    answer_key: Optional[Union[str, List[str]]] = None
    points: float = 1.0

    @classmethod
    def from_dict(cls, raw: Dict[str, object]) -> "Item":
        data = dict(raw)
        irt = data.pop("irt", None)
        if isinstance(irt, dict):
            data["irt"] = IRTParams(**irt)
        return cls(**data)


@dataclass
class Response:
    item_id: str
    answer: object = None
    time_spent_ms: float = 0.0
    attempts: int = 1
    confidence: Optional[float] = None
    is_correct: Optional[bool] = None
    submitted_at: Optional[datetime] = None


@dataclass(frozen=True)
class AdaptiveConfig:
    initial_difficulty_tier: DifficultyTier = "intermediate"
    min_items: int = 5
    max_items: int = 20
    target_accuracy: float = 0.7
    confidence_threshold: float = 0.8
    difficulty_adjustment_factor: float = 0.5
    content_tags: Tuple[str, ...] = ()

    def validate(self) -> "AdaptiveConfig":
        if self.min_items <= 0 or self.max_items <= 0:
            raise InvalidConfig("min_items and max_items must be positive")
        if self.min_items > self.max_items:
            raise InvalidConfig(f"min_items ({self.min_items}) exceeds max_items ({self.max_items})")
        if not 0.0 < self.confidence_threshold <= 1.0:
            raise InvalidConfig("confidence_threshold must be in (0, 1]")
        if self.initial_difficulty_tier not in TIERS:
            raise InvalidConfig(f"unknown difficulty tier {self.initial_difficulty_tier!r}")
        return self


@dataclass
class SessionState:
    user_id: str
    assessment_id: str
    current_ability: float = 0.0
    ability_history: List[float] = field(default_factory=list)
    questions_asked: List[str] = field(default_factory=list)
    responses: List[Response] = field(default_factory=list)
    confidence_level: float = 0.0
    is_complete: bool = False
    next_item_id: Optional[str] = None
    estimated_completion_pct: float = 0.0
    started_at: Optional[datetime] = None
    termination_reason: Optional[str] = None
    audit_events: List[Dict[str, object]] = field(default_factory=list)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.user_id, self.assessment_id)

    def last_activity(self) -> Optional[datetime]:
        if self.responses and self.responses[-1].submitted_at is not None:
            return self.responses[-1].submitted_at
        return self.started_at

    def to_dict(self) -> Dict[str, object]:
        """JSON-friendly representation used by the HTTP adapter."""

        return {
            "userId": self.user_id,
            "assessmentId": self.assessment_id,
            "currentAbility": self.current_ability,
            "abilityHistory": list(self.ability_history),
            "questionsAsked": list(self.questions_asked),
            "responses": [
                {
                    "itemId": r.item_id,
                    "answer": r.answer,
                    "timeSpentMs": r.time_spent_ms,
                    "attempts": r.attempts,
                    "confidence": r.confidence,
                    "isCorrect": r.is_correct,
                    "submittedAt": r.submitted_at.isoformat() if r.submitted_at else None,
                }
                for r in self.responses
            ],
            "confidenceLevel": self.confidence_level,
            "isComplete": self.is_complete,
            "nextItemId": self.next_item_id,
            "estimatedCompletionPct": self.estimated_completion_pct,
            "terminationReason": self.termination_reason,
        }


@dataclass
class SelectionCriteria:
    target_difficulty: Optional[float] = None
    exclude_ids: List[str] = field(default_factory=list)
    content_tags: List[str] = field(default_factory=list)
    item_types: List[str] = field(default_factory=list)
    information_cap: float = 1.0


@dataclass
class ItemScore:
    item_id: str
    information_gain: float
    difficulty_match: float
    content_relevance: float
    diversity: float
    total: float


@dataclass
class GradeResult:
    score: float
    max_score: float
    is_correct: bool


@dataclass
class PerformanceSnapshot:
    correct_count: int
    total_count: int
    avg_response_time_ms: float
    ability_estimate: float
    confidence_level: float
    difficulty_progression: List[str] = field(default_factory=list)

    @property
    def accuracy(self) -> float:
        return self.correct_count / self.total_count if self.total_count > 0 else 0.0


@dataclass
class DifficultyRecommendation:
    current_tier: DifficultyTier
    suggested_tier: DifficultyTier
    confidence: float
    reasoning: List[str] = field(default_factory=list)


@dataclass
class PerformanceTrend:
    accuracy_trend: float = 0.0
    speed_trend: float = 0.0
    difficulty_trend: float = 0.0
    ability_trend: float = 0.0


@dataclass
class CoverageTarget:
    tag: str
    target_coverage: float
    current_coverage: float = 0.0
    priority: int = 0
