# adaptive_core/engine.py
from __future__ import annotations
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Tuple
from datetime import datetime, timedelta, timezone
import copy, logging

from . import config
from .config import DEBUG_TRACE, TRACE_FIELDS
from .errors import (
    DuplicateResponse,
    NoCandidateItems,
    SessionAlreadyComplete,
    SessionNotFound,
)
from .estimator import (
    AbilityEstimator,
    Observation,
    confidence_from_se,
    resolve_correct,
    standard_error,
)
from .irt import irt_params, tier_to_ability
from .item_bank import InMemoryItemBank
from .selector import ItemSelector
from .store import InMemorySessionStore, SessionStore
from .types import AdaptiveConfig, Item, IRTParams, Response, SelectionCriteria, SessionState


log = logging.getLogger(__name__)


def _emit_trace(**values: object) -> None:
    if not DEBUG_TRACE:
        return
    ordered = []
    for key in TRACE_FIELDS:
        if key in values:
            ordered.append(f"{key}={values[key]}")
    if ordered:
        log.info("trace %s", " ".join(str(val) for val in ordered))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(ts: datetime) -> datetime:
    # naive timestamps are taken as UTC
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts


def continuation_decision(state: SessionState, cfg: AdaptiveConfig) -> Tuple[bool, str]:
    """Apply the stopping rules in order; the first match wins.

    Returns ``(should_continue, reason)``.
    """

    n = len(state.responses)
    if n < cfg.min_items:
        return True, "below_min_items"
    if n >= cfg.max_items:
        return False, "max_items"
    if state.confidence_level >= cfg.confidence_threshold:
        return False, "confidence_threshold"
    window = config.STABILITY_WINDOW
    if len(state.ability_history) >= window:
        recent = state.ability_history[-window:]
        mu = sum(recent) / len(recent)
        var = sum((v - mu) ** 2 for v in recent) / len(recent)
        if var < config.STABILITY_VARIANCE:
            return False, "ability_stabilized"
    return True, "continue"


def estimated_completion(state: SessionState, cfg: AdaptiveConfig) -> float:
    questions = len(state.responses) / float(cfg.max_items)
    conf = state.confidence_level / float(cfg.confidence_threshold)
    pct = max(questions * 0.6 + conf * 0.4, questions) * 100.0
    return float(min(100.0, pct))


class AdaptiveEngine:
    """Per-(user, assessment) adaptive session state machine.

    States run ``NotStarted -> InProgress -> Complete``. Every call that
    touches a session holds that session's store lock, so concurrent
    submissions for one key are applied strictly one after another.
    Returned states are deep copies; the stored state only changes through
    ``start_session`` and ``submit_response``.
    """

    def __init__(
        self,
        item_bank: InMemoryItemBank,
        store: Optional[SessionStore] = None,
        selector: Optional[ItemSelector] = None,
        estimator: Optional[AbilityEstimator] = None,
        grader=None,
        advisor=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.item_bank = item_bank
        self.store = store if store is not None else InMemorySessionStore()
        self.selector = selector or ItemSelector()
        self.estimator = estimator or AbilityEstimator()
        self.grader = grader
        self.advisor = advisor
        self._now = clock or _utcnow

    # -- helpers ---------------------------------------------------------

    def _item(self, item_id: str) -> Optional[Item]:
        return self.item_bank.get_item(item_id)

    def _params(self, item_id: str) -> IRTParams:
        item = self._item(item_id)
        if item is None:
            log.warning("item %s not in bank; using default irt params", item_id)
        return irt_params(item)

    def _history(self, state: SessionState) -> List[Observation]:
        return [
            (self._params(iid), resolve_correct(resp))
            for iid, resp in zip(state.questions_asked, state.responses)
        ]

    def _pick_next(self, state: SessionState, cfg: AdaptiveConfig) -> Optional[Item]:
        candidates = self.item_bank.search_items(exclude_ids=state.questions_asked)
        criteria = ItemSelector.criteria_for(state, content_tags=cfg.content_tags)
        try:
            return self.selector.require(candidates, state, criteria)
        except NoCandidateItems as exc:
            log.info("selector exhausted: %s", exc)
            return None

    def _confidence(self, state: SessionState) -> float:
        if not state.responses:
            return 0.0
        params = [self._params(iid) for iid in state.questions_asked]
        se = standard_error(state.current_ability, params)
        return confidence_from_se(se)

    @staticmethod
    def _complete(state: SessionState, reason: str) -> None:
        state.is_complete = True
        state.next_item_id = None
        state.estimated_completion_pct = 100.0
        state.termination_reason = reason

    def _load(self, key: Tuple[str, str]) -> SessionState:
        stored = self.store.get(key)
        if stored is None:
            raise SessionNotFound(key)
        return stored

    # -- operations ------------------------------------------------------

    def start_session(self, user_id: str, assessment_id: str, cfg: AdaptiveConfig) -> SessionState:
        cfg.validate()
        key = (user_id, assessment_id)
        with self.store.lock(key):
            if self.store.get(key) is not None:
                log.info("restarting adaptive session user=%s assessment=%s", user_id, assessment_id)
            state = SessionState(
                user_id=user_id,
                assessment_id=assessment_id,
                current_ability=tier_to_ability(cfg.initial_difficulty_tier),
                started_at=self._now(),
            )
            first = self._pick_next(state, cfg)
            if first is None:
                log.info("no items available at start user=%s assessment=%s", user_id, assessment_id)
                self._complete(state, "no_candidates")
            else:
                state.next_item_id = first.id
            self.store.put(state)
            log.info(
                "adaptive session started user=%s assessment=%s theta=%.2f first=%s",
                user_id,
                assessment_id,
                state.current_ability,
                state.next_item_id,
            )
            return copy.deepcopy(state)

    def submit_response(
        self, user_id: str, assessment_id: str, response: Response, cfg: AdaptiveConfig
    ) -> SessionState:
        cfg.validate()
        key = (user_id, assessment_id)
        with self.store.lock(key):
            state = copy.deepcopy(self._load(key))
            if state.is_complete:
                raise SessionAlreadyComplete(key)
            if response.item_id in state.questions_asked:
                raise DuplicateResponse(response.item_id)

            item = self._item(response.item_id)
            resp = response
            if resp.is_correct is None and self.grader is not None and item is not None:
                graded = self.grader.grade_response(item, resp)
                if graded is not None:
                    resp = replace(resp, is_correct=graded.is_correct)
            if resp.submitted_at is None:
                resp = replace(resp, submitted_at=self._now())

            correct = resolve_correct(resp)
            params = self._params(resp.item_id)
            history = self._history(state)
            theta_before = state.current_ability

            state.responses.append(resp)
            state.questions_asked.append(resp.item_id)
            theta_after = self.estimator.estimate(theta_before, history, params, correct)
            state.current_ability = theta_after
            state.ability_history.append(theta_after)
            state.confidence_level = self._confidence(state)

            keep_going, reason = continuation_decision(state, cfg)
            if keep_going:
                nxt = self._pick_next(state, cfg)
                if nxt is None:
                    log.info(
                        "forced termination user=%s assessment=%s responses=%d reason=no_candidates",
                        user_id,
                        assessment_id,
                        len(state.responses),
                    )
                    self._complete(state, "no_candidates")
                else:
                    state.next_item_id = nxt.id
                    state.estimated_completion_pct = estimated_completion(state, cfg)
            else:
                self._complete(state, reason)

            se_after = standard_error(
                state.current_ability, [self._params(iid) for iid in state.questions_asked]
            )
            state.audit_events.append(
                {
                    "t": (resp.submitted_at or self._now()).isoformat(),
                    "item_id": resp.item_id,
                    "tier": item.difficulty_tier if item is not None else "",
                    "b": float(params.difficulty),
                    "correct": 1 if correct else 0,
                    "theta_before": float(theta_before),
                    "theta_after": float(theta_after),
                    "se_after": float(se_after),
                    "confidence": float(state.confidence_level),
                    "latency_ms": int(max(0.0, float(resp.time_spent_ms or 0.0))),
                }
            )
            _emit_trace(
                user_id=user_id,
                item_id=resp.item_id,
                tier=item.difficulty_tier if item is not None else "?",
                b=params.difficulty,
                correct=int(correct),
                theta_before=round(theta_before, 4),
                theta_after=round(theta_after, 4),
                se=round(se_after, 4),
                confidence=round(state.confidence_level, 4),
            )

            self.store.put(state)
            if state.is_complete:
                log.info(
                    "adaptive session complete user=%s assessment=%s responses=%d theta=%.4f reason=%s",
                    user_id,
                    assessment_id,
                    len(state.responses),
                    state.current_ability,
                    state.termination_reason,
                )
                self._record_completion(state)
            return copy.deepcopy(state)

    def _record_completion(self, state: SessionState) -> None:
        if self.advisor is None:
            return
        tiers: List[str] = []
        for iid in state.questions_asked:
            it = self._item(iid)
            if it is not None:
                tiers.append(it.difficulty_tier)
        self.advisor.record_session(
            state.user_id,
            list(state.responses),
            state.current_ability,
            state.confidence_level,
            difficulty_progression=tiers,
        )

    def get_session_state(self, user_id: str, assessment_id: str) -> Optional[SessionState]:
        stored = self.store.get((user_id, assessment_id))
        return copy.deepcopy(stored) if stored is not None else None

    def delete_session(self, user_id: str, assessment_id: str) -> bool:
        key = (user_id, assessment_id)
        with self.store.lock(key):
            return self.store.delete(key)

    def preview_batch(
        self, user_id: str, assessment_id: str, n: int, cfg: Optional[AdaptiveConfig] = None
    ) -> List[Item]:
        """Speculative next-``n`` items; the stored session is not touched."""

        key = (user_id, assessment_id)
        with self.store.lock(key):
            state = copy.deepcopy(self._load(key))
        if state.is_complete:
            return []
        tags = cfg.content_tags if cfg is not None else ()
        candidates = self.item_bank.search_items(exclude_ids=state.questions_asked)
        criteria: SelectionCriteria = ItemSelector.criteria_for(state, content_tags=tags)
        return self.selector.select_batch(candidates, state, criteria, n)

    def cleanup_expired_states(self, max_age_hours: Optional[float] = None) -> None:
        hours = config.RETENTION_HOURS if max_age_hours is None else float(max_age_hours)
        cutoff = _as_utc(self._now()) - timedelta(hours=hours)

        def _expired(state: SessionState) -> bool:
            if state.is_complete:
                return True
            last = state.last_activity()
            return last is not None and _as_utc(last) < cutoff

        removed = self.store.sweep(_expired)
        log.info("swept %d adaptive sessions (horizon=%.1fh)", removed, hours)

    def sessions(self) -> Dict[Tuple[str, str], SessionState]:
        out: Dict[Tuple[str, str], SessionState] = {}
        for key in self.store.keys():
            st = self.get_session_state(*key)
            if st is not None:
                out[key] = st
        return out
