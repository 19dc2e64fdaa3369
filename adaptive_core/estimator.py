"""Maximum-likelihood ability estimation over a full response history.

Two numeric schemes are available:

``parity``
    The production scheme. Each iteration evaluates the log-likelihood
    ``logL(θ)`` and the score ``S(θ) = Σ a(1 − P)`` (correct) / ``−aP``
    (incorrect) and moves ``θ ← θ − logL/S``. This is not a textbook Newton
    step (the score stands in for the derivative of the log-likelihood) and
    is kept as a known approximation so estimates match historical sessions.

``fisher``
    Textbook 3PL Fisher scoring, ``θ ← θ + S₃(θ) / I(θ)``, for callers that
    need a statistically rigorous MLE.

Both clamp θ to ``[THETA_MIN, THETA_MAX]`` after every iteration and stop
after ``NR_MAX_ITER`` iterations or once the correction is below
``NR_TOLERANCE``. Neither raises for numerical reasons.
"""
from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence, Tuple

from . import config
from .irt import clamp_theta, item_info, prob_correct, se_from_info
from .types import IRTParams, Response

log = logging.getLogger(__name__)

Observation = Tuple[IRTParams, bool]

_METHODS = ("parity", "fisher")


def resolve_correct(response: Response) -> bool:
    """Correctness of ``response``.

    An explicit grading outcome wins; otherwise a self-reported confidence
    above ``CORRECT_CONFIDENCE`` counts as correct. A response with neither
    signal is scored as incorrect.
    """

    if response.is_correct is not None:
        return bool(response.is_correct)
    if response.confidence is None:
        return False
    return float(response.confidence) > config.CORRECT_CONFIDENCE


def _loglik_and_score(theta: float, observations: Sequence[Observation]) -> Tuple[float, float]:
    loglik = 0.0
    score = 0.0
    for params, correct in observations:
        p = prob_correct(theta, params)
        a = params.discrimination
        if correct:
            loglik += math.log(p)
            score += a * (1.0 - p)
        else:
            loglik += math.log(1.0 - p)
            score -= a * p
    return loglik, score


def _fisher_terms(theta: float, observations: Sequence[Observation]) -> Tuple[float, float]:
    score = 0.0
    info = 0.0
    for params, correct in observations:
        p = prob_correct(theta, params)
        a, c = params.discrimination, params.guessing
        u = 1.0 if correct else 0.0
        score += a * (u - p) * (p - c) / (p * (1.0 - c))
        info += (a * a) * ((p - c) ** 2) * (1.0 - p) / (p * (1.0 - c) ** 2)
    return score, info


class AbilityEstimator:
    """Ability estimator with a bounded iteration budget."""

    def __init__(
        self,
        method: Optional[str] = None,
        max_iter: Optional[int] = None,
        tolerance: Optional[float] = None,
    ):
        chosen = (method or config.ESTIMATOR_METHOD or "parity").lower()
        if chosen not in _METHODS:
            log.warning("unknown estimator method %r; falling back to parity", chosen)
            chosen = "parity"
        self.method = chosen
        self.max_iter = int(max_iter if max_iter is not None else config.NR_MAX_ITER)
        self.tolerance = float(tolerance if tolerance is not None else config.NR_TOLERANCE)

    def estimate(
        self,
        prior_theta: float,
        history: Sequence[Observation],
        new_params: IRTParams,
        new_correct: bool,
    ) -> float:
        """Return the updated ability after adding ``(new_params, new_correct)``.

        ``history`` holds the previously processed observations in order.
        The result never moves against the new response: a correct answer
        cannot lower the estimate and an incorrect one cannot raise it.
        """

        prior = clamp_theta(prior_theta)
        observations: List[Observation] = list(history)
        observations.append((new_params, bool(new_correct)))

        if self.method == "fisher":
            theta, iterations = self._fisher(prior, observations)
        else:
            theta, iterations = self._parity(prior, observations)

        if new_correct:
            theta = max(theta, prior)
        else:
            theta = min(theta, prior)

        log.debug(
            "ability_update method=%s n=%d correct=%s theta=%.4f->%.4f iterations=%d",
            self.method,
            len(observations),
            int(bool(new_correct)),
            prior,
            theta,
            iterations,
        )
        return theta

    def _parity(self, theta: float, observations: Sequence[Observation]) -> Tuple[float, int]:
        iterations = 0
        for _ in range(self.max_iter):
            iterations += 1
            loglik, score = _loglik_and_score(theta, observations)
            if abs(score) < self.tolerance:
                break
            updated = clamp_theta(theta - loglik / score)
            moved = abs(updated - theta)
            theta = updated
            if moved < self.tolerance:
                break
        return theta, iterations

    def _fisher(self, theta: float, observations: Sequence[Observation]) -> Tuple[float, int]:
        iterations = 0
        for _ in range(self.max_iter):
            iterations += 1
            score, info = _fisher_terms(theta, observations)
            if info <= 1e-9:
                break
            updated = clamp_theta(theta + score / info)
            moved = abs(updated - theta)
            theta = updated
            if moved < self.tolerance:
                break
        return theta, iterations


def total_information(theta: float, params: Sequence[IRTParams]) -> float:
    return sum(item_info(theta, p) for p in params)


def standard_error(theta: float, params: Sequence[IRTParams]) -> float:
    """``1/√ΣI`` over ``params`` at ``theta`` (1.0 when ΣI is zero)."""

    return se_from_info(total_information(theta, params))


def confidence_from_se(se: float) -> float:
    """Map a standard error onto the ``[CONFIDENCE_FLOOR, 1]`` confidence scale."""

    conf = 1.0 - config.SE_WEIGHT * se
    return float(max(config.CONFIDENCE_FLOOR, min(1.0, conf)))


__all__ = [
    "AbilityEstimator",
    "Observation",
    "resolve_correct",
    "total_information",
    "standard_error",
    "confidence_from_se",
]
