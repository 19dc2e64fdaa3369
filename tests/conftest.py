from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest

from adaptive_core.engine import AdaptiveEngine
from adaptive_core.grading import KeyedGrader
from adaptive_core.item_bank import InMemoryItemBank
from adaptive_core.selector import ItemSelector
from adaptive_core.trends import DifficultyTrendAdvisor
from adaptive_core.types import TIERS, IRTParams, Item

TOPICS = ["algebra", "geometry", "statistics"]


def build_synthetic_bank(
    *,
    tiers: list[str] | None = None,
    per_tier: int = 4,
    topics: list[str] | None = None,
    item_type: str = "multiple_choice",
    calibrated: bool = False,
) -> list[Item]:
    """Create a deterministic synthetic bank for tests and smoke runs."""

    items: list[Item] = []
    for tier in tiers or list(TIERS):
        for topic in topics or TOPICS:
            for idx in range(per_tier):
                irt = None
                if calibrated:
                    irt = IRTParams(
                        discrimination=0.8 + 0.1 * idx,
                        difficulty=-1.0 + TIERS.index(tier) * 0.8,
                        guessing=0.2,
                    )
                items.append(
                    Item(
                        id=f"{topic}_{tier}_{idx}",
                        difficulty_tier=tier,  # type: ignore[arg-type]
                        tags=[topic],
                        type=item_type,  # type: ignore[arg-type]
                        irt=irt,
                        text=f"{topic} {tier} #{idx}",
                        options=["A", "B", "C", "D"],
                        answer_key="A",
                    )
                )
    return items


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_engine(items: list[Item], *, seed: int = 7, clock: FakeClock | None = None) -> AdaptiveEngine:
    return AdaptiveEngine(
        InMemoryItemBank(items),
        selector=ItemSelector(rng=random.Random(seed)),
        grader=KeyedGrader(),
        advisor=DifficultyTrendAdvisor(),
        clock=clock,
    )


@pytest.fixture
def synthetic_bank() -> list[Item]:
    return build_synthetic_bank()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(synthetic_bank, clock) -> AdaptiveEngine:
    return make_engine(synthetic_bank, clock=clock)
