# adaptive_core/trends.py
"""Cross-session difficulty advice from rolling performance snapshots.

The advisor never feeds the per-item loop; it keeps up to
``TREND_HISTORY_MAX`` snapshots per user and turns them into tier
recommendations and slope trends for calibration and reporting.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from . import config
from .estimator import resolve_correct
from .irt import ability_to_tier, slope, tier_from_value, tier_value, variance
from .types import (
    TIERS,
    DifficultyRecommendation,
    PerformanceSnapshot,
    PerformanceTrend,
    Response,
    SessionState,
)

EXPECTED_TIME_MS: Dict[str, float] = {
    "beginner": 30_000.0,
    "intermediate": 60_000.0,
    "advanced": 120_000.0,
    "expert": 180_000.0,
}


@dataclass(frozen=True)
class AdjustmentStrategy:
    name: str
    factor: float
    min_change: float
    max_change: float


STRATEGIES: Dict[str, AdjustmentStrategy] = {
    "conservative": AdjustmentStrategy("Conservative", 0.3, 0.1, 0.5),
    "moderate": AdjustmentStrategy("Moderate", 0.5, 0.2, 0.8),
    "aggressive": AdjustmentStrategy("Aggressive", 0.8, 0.3, 1.2),
}


def expected_time_ms(tier: str) -> float:
    return EXPECTED_TIME_MS.get(tier, EXPECTED_TIME_MS["intermediate"])


def _step_up(tier: str) -> str:
    return TIERS[min(len(TIERS) - 1, tier_value(tier) + 1)]


def _step_down(tier: str) -> str:
    return TIERS[max(0, tier_value(tier) - 1)]


def snapshot_from_responses(
    responses: Sequence[Response],
    ability: float,
    confidence: float,
    difficulty_progression: Optional[Iterable[str]] = None,
) -> PerformanceSnapshot:
    total = len(responses)
    correct = sum(1 for r in responses if resolve_correct(r))
    avg_ms = sum(float(r.time_spent_ms or 0.0) for r in responses) / max(1, total)
    return PerformanceSnapshot(
        correct_count=correct,
        total_count=total,
        avg_response_time_ms=avg_ms,
        ability_estimate=float(ability),
        confidence_level=float(confidence),
        difficulty_progression=list(difficulty_progression or ()),
    )


class DifficultyTrendAdvisor:
    def __init__(self, history_max: Optional[int] = None):
        self.history_max = int(history_max or config.TREND_HISTORY_MAX)
        self._history: Dict[str, List[PerformanceSnapshot]] = {}
        self._lock = threading.Lock()

    # -- recording -------------------------------------------------------

    def record(self, user_id: str, snapshot: PerformanceSnapshot) -> None:
        with self._lock:
            hist = self._history.setdefault(user_id, [])
            hist.append(snapshot)
            if len(hist) > self.history_max:
                del hist[: len(hist) - self.history_max]

    def record_session(
        self,
        user_id: str,
        responses: Sequence[Response],
        ability: float,
        confidence: float,
        difficulty_progression: Optional[Iterable[str]] = None,
    ) -> PerformanceSnapshot:
        snap = snapshot_from_responses(responses, ability, confidence, difficulty_progression)
        self.record(user_id, snap)
        return snap

    def history(self, user_id: str) -> List[PerformanceSnapshot]:
        with self._lock:
            return list(self._history.get(user_id, []))

    # -- analysis --------------------------------------------------------

    def recommend(self, user_id: str) -> DifficultyRecommendation:
        hist = self.history(user_id)
        if not hist:
            return DifficultyRecommendation(
                current_tier="intermediate",
                suggested_tier="intermediate",
                confidence=0.0,
                reasoning=["No performance history available"],
            )

        recent = hist[-config.TREND_RECENT:]
        avg_acc = sum(s.accuracy for s in recent) / len(recent)
        avg_rt = sum(s.avg_response_time_ms for s in recent) / len(recent)
        avg_ability = sum(s.ability_estimate for s in recent) / len(recent)

        current = ability_to_tier(avg_ability)
        suggested = current
        reasoning: List[str] = []

        if avg_acc > config.TREND_HIGH_ACCURACY:
            suggested = _step_up(current)
            reasoning.append(
                f"High accuracy ({avg_acc * 100:.1f}%) suggests readiness for harder content"
            )
        elif avg_acc < config.TREND_LOW_ACCURACY:
            suggested = _step_down(current)
            reasoning.append(
                f"Low accuracy ({avg_acc * 100:.1f}%) suggests need for easier content"
            )

        expected = expected_time_ms(current)
        if avg_rt < expected * config.TREND_FAST_RATIO:
            reasoning.append("Fast response times indicate good mastery")
            if suggested == current:
                suggested = _step_up(current)
        elif avg_rt > expected * config.TREND_SLOW_RATIO:
            reasoning.append("Slow response times may indicate difficulty")
            if suggested == current:
                suggested = _step_down(current)

        confidence = max(0.0, 1.0 - variance(s.ability_estimate for s in recent))
        return DifficultyRecommendation(
            current_tier=current,  # type: ignore[arg-type]
            suggested_tier=suggested,  # type: ignore[arg-type]
            confidence=confidence,
            reasoning=reasoning,
        )

    def trend(self, user_id: str) -> PerformanceTrend:
        hist = self.history(user_id)
        if len(hist) < 2:
            return PerformanceTrend()
        difficulties = [
            float(tier_value(s.difficulty_progression[-1])) if s.difficulty_progression else 1.0
            for s in hist
        ]
        return PerformanceTrend(
            accuracy_trend=slope(s.accuracy for s in hist),
            speed_trend=slope(s.avg_response_time_ms for s in hist),
            difficulty_trend=slope(difficulties),
            ability_trend=slope(s.ability_estimate for s in hist),
        )

    # -- adjustments -----------------------------------------------------

    @staticmethod
    def adjust_difficulty(
        current_tier: str,
        responses: Sequence[Response],
        strategy: str = "moderate",
        factor: Optional[float] = None,
    ) -> str:
        """Shift ``current_tier`` from recent accuracy and pace.

        ``factor`` overrides the strategy's adjustment factor; sessions pass
        ``AdaptiveConfig.difficulty_adjustment_factor`` here.
        """

        strat = STRATEGIES.get(strategy)
        if strat is None:
            raise ValueError(f"Unknown difficulty adjustment strategy: {strategy}")
        k = strat.factor if factor is None else float(factor)

        snap = snapshot_from_responses(responses, 0.0, 0.0)
        adjustment = (snap.accuracy - config.TARGET_ACCURACY) * k

        ratio = snap.avg_response_time_ms / expected_time_ms(current_tier)
        if ratio < 0.5:
            adjustment += 0.2 * k
        elif ratio > 2.0:
            adjustment -= 0.2 * k

        adjustment = max(-strat.max_change, min(strat.max_change, adjustment))
        if abs(adjustment) < strat.min_change:
            adjustment = 0.0

        value = max(0.0, min(3.0, tier_value(current_tier) + adjustment))
        return tier_from_value(value)

    @staticmethod
    def optimal_tier(state: SessionState, target_accuracy: float = config.TARGET_ACCURACY) -> str:
        adjustment = 0.0
        if state.confidence_level < 0.5:
            adjustment = -0.2
        elif state.confidence_level > 0.8:
            adjustment = 0.2
        if len(state.ability_history) >= 3:
            adjustment += slope(state.ability_history[-3:]) * 0.1
        if len(state.responses) >= 3:
            accuracy = sum(1 for r in state.responses if resolve_correct(r)) / len(state.responses)
            adjustment += (accuracy - target_accuracy) * 0.5
        base = tier_value(ability_to_tier(state.current_ability))
        return tier_from_value(max(0.0, min(3.0, base + adjustment)))


__all__ = [
    "AdjustmentStrategy",
    "DifficultyTrendAdvisor",
    "EXPECTED_TIME_MS",
    "STRATEGIES",
    "expected_time_ms",
    "snapshot_from_responses",
]
