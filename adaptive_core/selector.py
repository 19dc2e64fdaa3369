# adaptive_core/selector.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import logging
import random

from . import config
from .errors import NoCandidateItems
from .irt import ability_to_tier, irt_params, item_info, tier_value
from .types import CoverageTarget, Item, ItemScore, SelectionCriteria, SessionState


log = logging.getLogger(__name__)


def _clamp01(x: float) -> float:
    return max(0.0, min(1.0, float(x)))


class ItemSelector:
    """Weighted multi-criteria item picker with an explore/exploit switch.

    Each candidate gets four sub-scores in ``[0, 1]`` (information gain,
    difficulty match, content relevance, diversity) blended by
    ``config.WEIGHTS``. While fewer than ``EXPLORE_RESPONSES`` responses have
    been processed the pick is a weighted draw from the top
    ``EXPLORE_TOP_K``; afterwards the best candidate always wins.
    """

    def __init__(self, rng: Optional[random.Random] = None, weights: Optional[Dict[str, float]] = None):
        if rng is None:
            seed = config.DEBUG_SEED
            if seed is None:
                seed = random.randint(0, 2**31 - 1)
            rng = random.Random(int(seed))
        self.rng = rng
        self.weights = dict(config.WEIGHTS)
        if weights:
            self.weights.update(weights)
        self._coverage_targets: Dict[str, List[CoverageTarget]] = {}

    # -- criteria --------------------------------------------------------

    @staticmethod
    def criteria_for(state: SessionState, content_tags: Optional[Sequence[str]] = None) -> SelectionCriteria:
        return SelectionCriteria(
            target_difficulty=float(tier_value(ability_to_tier(state.current_ability))),
            exclude_ids=list(state.questions_asked),
            content_tags=list(content_tags or ()),
            information_cap=config.INFO_CAP,
        )

    # -- sub-scores ------------------------------------------------------

    @staticmethod
    def information_gain(theta: float, item: Item, cap: float = 1.0) -> float:
        return min(cap, item_info(theta, irt_params(item)))

    @staticmethod
    def difficulty_match(item: Item, target: float) -> float:
        diff = abs(tier_value(item.difficulty_tier) - target)
        return max(0.0, 1.0 - diff / 3.0)

    @staticmethod
    def content_relevance(item: Item, wanted: Sequence[str]) -> float:
        wanted = [t.lower() for t in wanted if t]
        if not wanted:
            return 1.0
        have = [t.lower() for t in item.tags if t]
        hits = 0
        for w in wanted:
            if any(w in h or h in w for h in have):
                hits += 1
        return hits / len(wanted)

    @staticmethod
    def diversity(asked: Sequence[str]) -> float:
        # TODO: weigh topic/type overlap with the recent window instead of its size alone.
        window = config.DIVERSITY_WINDOW
        recent = min(window, len(asked[-window:])) if window > 0 else 0
        return max(config.DIVERSITY_FLOOR, 1.0 - config.DIVERSITY_STEP * recent)

    def score(self, item: Item, state: SessionState, criteria: SelectionCriteria) -> ItemScore:
        target = criteria.target_difficulty
        if target is None:
            target = float(tier_value(ability_to_tier(state.current_ability)))
        info = self.information_gain(state.current_ability, item, criteria.information_cap)
        diff = self.difficulty_match(item, target)
        content = self.content_relevance(item, criteria.content_tags)
        div = self.diversity(state.questions_asked)
        w = self.weights
        total = (
            info * w["information"]
            + diff * w["difficulty"]
            + content * w["content"]
            + div * w["diversity"]
        )
        return ItemScore(
            item_id=item.id,
            information_gain=_clamp01(info),
            difficulty_match=_clamp01(diff),
            content_relevance=_clamp01(content),
            diversity=_clamp01(div),
            total=total,
        )

    # -- ranking / picking -----------------------------------------------

    @staticmethod
    def _eligible(candidates: Iterable[Item], state: SessionState, criteria: SelectionCriteria) -> List[Item]:
        excluded = set(criteria.exclude_ids) | set(state.questions_asked)
        types = set(criteria.item_types)
        out: List[Item] = []
        seen: set[str] = set()
        for it in candidates:
            if it.id in excluded or it.id in seen:
                continue
            if types and it.type not in types:
                continue
            seen.add(it.id)
            out.append(it)
        return out

    def rank(
        self, candidates: Iterable[Item], state: SessionState, criteria: SelectionCriteria
    ) -> List[Tuple[ItemScore, Item]]:
        eligible = self._eligible(candidates, state, criteria)
        scored = [(self.score(it, state, criteria), it) for it in eligible]
        scored.sort(key=lambda pair: pair[0].total, reverse=True)
        return scored

    def _explore(self, ranked: List[Tuple[ItemScore, Item]]) -> Item:
        top = ranked[: min(config.EXPLORE_TOP_K, len(ranked))]
        weights = [config.EXPLORE_DECAY ** idx for idx in range(len(top))]
        r = self.rng.random() * sum(weights)
        for (_, it), wt in zip(top, weights):
            r -= wt
            if r <= 0:
                return it
        return top[-1][1]

    def select(
        self, candidates: Iterable[Item], state: SessionState, criteria: Optional[SelectionCriteria] = None
    ) -> Optional[Item]:
        crit = criteria or self.criteria_for(state)
        ranked = self.rank(candidates, state, crit)
        if not ranked:
            return None
        if len(state.responses) < config.EXPLORE_RESPONSES:
            pick = self._explore(ranked)
            mode = "explore"
        else:
            pick = ranked[0][1]
            mode = "exploit"
        log.debug(
            "select mode=%s theta=%.4f candidates=%d pick=%s best=%.4f",
            mode,
            state.current_ability,
            len(ranked),
            pick.id,
            ranked[0][0].total,
        )
        return pick

    def require(
        self, candidates: Iterable[Item], state: SessionState, criteria: Optional[SelectionCriteria] = None
    ) -> Item:
        item = self.select(candidates, state, criteria)
        if item is None:
            raise NoCandidateItems(
                f"no eligible items for user={state.user_id!r} assessment={state.assessment_id!r}"
            )
        return item

    def select_batch(
        self,
        candidates: Iterable[Item],
        state: SessionState,
        criteria: Optional[SelectionCriteria],
        n: int,
    ) -> List[Item]:
        """Speculative preview of the next ``n`` picks.

        Works on a copied state and exclusion list; ``state`` and ``criteria``
        are left exactly as they were passed in.
        """

        pool = list(candidates)
        base = criteria or self.criteria_for(state)
        crit = replace(base, exclude_ids=list(base.exclude_ids))
        working = replace(state, questions_asked=list(state.questions_asked))
        picked: List[Item] = []
        for _ in range(max(0, int(n))):
            it = self.select(pool, working, crit)
            if it is None:
                break
            picked.append(it)
            crit.exclude_ids.append(it.id)
            working.questions_asked.append(it.id)
        return picked

    # -- sequencing ------------------------------------------------------

    def _start_item(self, items: Sequence[Item], state: SessionState) -> Item:
        target = float(tier_value(ability_to_tier(state.current_ability)))
        best = items[0]
        best_score = float("-inf")
        for it in items:
            s = self.difficulty_match(it, target)
            if it.difficulty_tier == "intermediate":
                s += 0.1
            if s > best_score:
                best_score = s
                best = it
        return best

    @staticmethod
    def transition_score(src: Item, dst: Item) -> float:
        score = 0.0
        step = tier_value(dst.difficulty_tier) - tier_value(src.difficulty_tier)
        if 0 <= step <= 1:
            score += 0.3
        elif step > 1:
            score -= 0.2
        else:
            score -= 0.1
        shared = [t for t in src.tags if t in dst.tags]
        score += (1.0 - len(shared) / max(len(src.tags), 1)) * 0.2
        if src.type != dst.type:
            score += 0.1
        return score

    def optimize_sequence(self, items: Sequence[Item], state: SessionState) -> List[Item]:
        """Greedy ordering: best-matching start, then best transition each step."""

        if len(items) <= 1:
            return list(items)
        remaining = list(items)
        current = self._start_item(remaining, state)
        ordered = [current]
        remaining.remove(current)
        while remaining:
            nxt = max(remaining, key=lambda cand: self.transition_score(current, cand))
            ordered.append(nxt)
            remaining.remove(nxt)
            current = nxt
        return ordered

    # -- content coverage ------------------------------------------------

    def set_coverage_targets(self, assessment_id: str, targets: Iterable[CoverageTarget]) -> None:
        self._coverage_targets[assessment_id] = list(targets)

    def coverage_status(self, assessment_id: str, asked_items: Sequence[Item]) -> List[CoverageTarget]:
        targets = self._coverage_targets.get(assessment_id, [])
        denom = max(1, len(asked_items))
        out: List[CoverageTarget] = []
        for tgt in targets:
            hits = sum(1 for it in asked_items if tgt.tag in it.tags)
            out.append(replace(tgt, current_coverage=hits / denom))
        return out


__all__ = ["ItemSelector"]
