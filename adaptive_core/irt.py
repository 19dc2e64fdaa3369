"""3PL item response utilities shared by the estimator, selector and engine.

The helpers here are deliberately free of session state: they take an
ability value and item parameters and return plain floats, so the same
functions serve the real-time loop, the trend advisor and the bank audit.
"""
from __future__ import annotations

import logging
import math
from typing import Iterable, List, Optional

from . import config
from .types import CHOICE_TYPES, TIERS, IRTParams, Item

__all__ = [
    "sigma",
    "prob_correct",
    "item_info",
    "se_from_info",
    "tier_value",
    "tier_from_value",
    "tier_to_ability",
    "tier_to_b",
    "ability_to_tier",
    "default_params",
    "irt_params",
    "clamp_theta",
    "variance",
    "slope",
]

log = logging.getLogger(__name__)

_TIER_ABILITY = {"beginner": -1.5, "intermediate": 0.0, "advanced": 1.0, "expert": 2.0}
_TIER_B = {"beginner": -1.0, "intermediate": 0.0, "advanced": 1.0, "expert": 1.5}


def sigma(x: float) -> float:
    """Return the logistic function ``σ(x) = 1 / (1 + e^{−x})``.

    The positive and negative halves are handled separately so large
    magnitudes never overflow ``math.exp``.
    """

    if x >= 0:
        z = math.exp(-x)
        return 1.0 / (1.0 + z)
    z = math.exp(x)
    return z / (1.0 + z)


def prob_correct(theta: float, params: IRTParams) -> float:
    """3PL probability ``c + (1 − c)·σ(a(θ − b))`` clamped to ``[P_FLOOR, P_CEIL]``.

    The clamp keeps ``log(P)`` and ``log(1 − P)`` finite in the estimator.
    """

    a, b, c = params.discrimination, params.difficulty, params.guessing
    p = c + (1.0 - c) * sigma(a * (theta - b))
    return max(config.P_FLOOR, min(config.P_CEIL, p))


def item_info(theta: float, params: IRTParams) -> float:
    """Fisher information ``a²·P·(1 − P) / (1 − c)²`` at ``theta``."""

    p = prob_correct(theta, params)
    a, c = params.discrimination, params.guessing
    info = (a * a) * p * (1.0 - p) / ((1.0 - c) ** 2)
    return max(info, 0.0)


def se_from_info(info_total: float) -> float:
    """Standard error from accumulated information; 1.0 when there is none."""

    if info_total <= 0.0:
        return 1.0
    return 1.0 / math.sqrt(info_total)


def tier_value(tier: str) -> int:
    try:
        return TIERS.index(tier)
    except ValueError:
        return 1


def tier_from_value(value: float) -> str:
    idx = int(round(value))
    idx = max(0, min(len(TIERS) - 1, idx))
    return TIERS[idx]


def tier_to_ability(tier: str) -> float:
    return _TIER_ABILITY.get(tier, 0.0)


def tier_to_b(tier: str) -> float:
    return _TIER_B.get(tier, 0.0)


def ability_to_tier(theta: float) -> str:
    if theta < -1.0:
        return "beginner"
    if theta < 0.5:
        return "intermediate"
    if theta < 1.5:
        return "advanced"
    return "expert"


def default_params(tier: str = "intermediate", item_type: Optional[str] = None) -> IRTParams:
    """Deterministic parameters for an uncalibrated item.

    ``c`` is 0.25 for choice-type items, 0.1 for other known types and the
    generic 0.2 when the type is unknown.
    """

    if item_type is None:
        guess = config.DEFAULT_GUESSING
    elif item_type in CHOICE_TYPES:
        guess = config.GUESSING_CHOICE
    else:
        guess = config.GUESSING_OTHER
    return IRTParams(
        discrimination=config.DEFAULT_DISCRIMINATION,
        difficulty=tier_to_b(tier),
        guessing=guess,
    )


def irt_params(item: Optional[Item]) -> IRTParams:
    """Resolve the parameters used for ``item``.

    Calibrated parameters win when they are valid; anything else falls back to
    the tier-derived defaults, so callers never see an exception here.
    """

    if item is None:
        return default_params()
    explicit = item.irt
    if explicit is not None:
        if explicit.is_valid():
            return explicit
        log.warning(
            "invalid irt params item=%s a=%.3f c=%.3f; using tier defaults",
            item.id,
            explicit.discrimination,
            explicit.guessing,
        )
    return default_params(item.difficulty_tier, item.type)


def clamp_theta(theta: float) -> float:
    if math.isnan(theta):
        return 0.0
    return float(max(config.THETA_MIN, min(config.THETA_MAX, theta)))


def variance(values: Iterable[float]) -> float:
    """Population variance; 0.0 for an empty sequence."""

    vals: List[float] = [float(v) for v in values]
    if not vals:
        return 0.0
    mu = sum(vals) / len(vals)
    return sum((v - mu) ** 2 for v in vals) / len(vals)


def slope(values: Iterable[float]) -> float:
    """Least-squares slope of ``values`` against their index 0..n-1."""

    vals: List[float] = [float(v) for v in values]
    n = len(vals)
    if n < 2:
        return 0.0
    sum_x = n * (n - 1) / 2.0
    sum_y = sum(vals)
    sum_xy = sum(i * v for i, v in enumerate(vals))
    sum_xx = (n - 1) * n * (2 * n - 1) / 6.0
    denom = n * sum_xx - sum_x * sum_x
    if denom == 0:
        return 0.0
    return (n * sum_xy - sum_x * sum_y) / denom
