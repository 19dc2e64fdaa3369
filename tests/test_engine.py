from __future__ import annotations

import random
import threading

import pytest

from adaptive_core.engine import continuation_decision, estimated_completion
from adaptive_core.errors import (
    AdaptiveTestingError,
    DuplicateResponse,
    InvalidConfig,
    SessionAlreadyComplete,
    SessionNotFound,
)
from adaptive_core.types import AdaptiveConfig, Response, SessionState
from tests.conftest import build_synthetic_bank, make_engine

CFG = AdaptiveConfig(initial_difficulty_tier="intermediate", min_items=5, max_items=20, confidence_threshold=0.8)


def _answer(state: SessionState, correct: bool = True, **extra) -> Response:
    return Response(
        item_id=state.next_item_id,
        answer="A" if correct else "B",
        confidence=0.9 if correct else 0.1,
        time_spent_ms=45_000,
        **extra,
    )


def test_start_intermediate_session(engine):
    state = engine.start_session("u1", "a1", CFG)
    assert state.current_ability == 0.0
    assert state.next_item_id
    assert state.ability_history == []
    assert not state.is_complete


def test_start_beginner_session(engine):
    cfg = AdaptiveConfig(initial_difficulty_tier="beginner", min_items=5, max_items=20, confidence_threshold=0.8)
    state = engine.start_session("u1", "a1", cfg)
    assert state.current_ability == -1.5


def test_high_confidence_answers_complete_early(engine):
    cfg = AdaptiveConfig(min_items=2, max_items=20, confidence_threshold=0.1)
    state = engine.start_session("u1", "a1", cfg)
    for _ in range(3):
        if state.is_complete:
            break
        state = engine.submit_response("u1", "a1", _answer(state), cfg)
    assert state.is_complete
    assert state.estimated_completion_pct == 100.0
    assert state.next_item_id is None
    assert len(state.responses) == 2
    assert state.termination_reason == "confidence_threshold"


def test_exhausted_pool_forces_termination_before_min_items():
    engine = make_engine(build_synthetic_bank(tiers=["intermediate"], topics=["algebra"], per_tier=2))
    cfg = AdaptiveConfig(min_items=5, max_items=20)
    state = engine.start_session("u1", "a1", cfg)
    state = engine.submit_response("u1", "a1", _answer(state), cfg)
    assert not state.is_complete
    state = engine.submit_response("u1", "a1", _answer(state), cfg)
    assert state.is_complete
    assert state.next_item_id is None
    assert state.termination_reason == "no_candidates"
    assert len(state.responses) == 2


def test_empty_bank_completes_on_start():
    engine = make_engine([])
    state = engine.start_session("u1", "a1", CFG)
    assert state.is_complete
    assert state.next_item_id is None
    assert state.termination_reason == "no_candidates"


@pytest.mark.parametrize("seed", [1, 2, 3, 4])
def test_session_invariants_hold_for_random_answers(seed):
    rng = random.Random(seed)
    engine = make_engine(build_synthetic_bank(per_tier=4), seed=seed)
    cfg = AdaptiveConfig(min_items=4, max_items=12, confidence_threshold=0.95)
    state = engine.start_session("u", "a", cfg)
    while not state.is_complete:
        state = engine.submit_response("u", "a", _answer(state, rng.random() < 0.5), cfg)
        assert len(state.responses) == len(state.questions_asked) == len(state.ability_history)
        assert len(set(state.questions_asked)) == len(state.questions_asked)
        assert -4.0 <= state.current_ability <= 4.0
        assert 0.0 <= state.confidence_level <= 1.0
        assert 0.0 <= state.estimated_completion_pct <= 100.0
        assert len(state.responses) <= cfg.max_items
        if not state.is_complete:
            assert state.next_item_id not in state.questions_asked
    assert state.next_item_id is None
    assert len(state.responses) >= cfg.min_items
    assert state.termination_reason in {"max_items", "confidence_threshold", "ability_stabilized"}


def test_correct_answers_do_not_lower_ability(engine):
    cfg = AdaptiveConfig(min_items=6, max_items=6)
    state = engine.start_session("u", "a", cfg)
    previous = state.current_ability
    while not state.is_complete:
        state = engine.submit_response("u", "a", _answer(state, True), cfg)
        assert state.current_ability >= previous
        previous = state.current_ability
    assert state.termination_reason == "max_items"


def test_keyed_items_are_graded_when_no_signal_is_supplied(engine):
    cfg = AdaptiveConfig(min_items=5, max_items=10)
    state = engine.start_session("u", "a", cfg)
    first = state.next_item_id
    state = engine.submit_response("u", "a", Response(item_id=first, answer="a "), cfg)
    assert state.responses[0].is_correct is True
    assert state.responses[0].submitted_at is not None
    assert state.ability_history[0] >= 0.0

    state = engine.submit_response("u", "a", Response(item_id=state.next_item_id, answer="B"), cfg)
    assert state.responses[1].is_correct is False


def test_audit_event_recorded_per_response(engine):
    cfg = AdaptiveConfig(min_items=5, max_items=10)
    state = engine.start_session("u", "a", cfg)
    state = engine.submit_response("u", "a", _answer(state), cfg)
    state = engine.submit_response("u", "a", _answer(state, False), cfg)
    assert len(state.audit_events) == 2
    first, second = state.audit_events
    assert first["correct"] == 1 and second["correct"] == 0
    assert first["theta_before"] == 0.0
    assert first["theta_after"] == second["theta_before"]
    assert second["latency_ms"] == 45_000
    assert {"t", "item_id", "tier", "b", "se_after", "confidence"} <= set(first)


def test_structural_errors(engine):
    with pytest.raises(SessionNotFound):
        engine.submit_response("ghost", "a", Response(item_id="x"), CFG)

    with pytest.raises(InvalidConfig):
        engine.start_session("u", "a", AdaptiveConfig(min_items=10, max_items=5))
    with pytest.raises(InvalidConfig):
        engine.start_session("u", "a", AdaptiveConfig(min_items=0, max_items=5))
    with pytest.raises(InvalidConfig):
        engine.start_session("u", "a", AdaptiveConfig(initial_difficulty_tier="wizard"))  # type: ignore[arg-type]

    cfg = AdaptiveConfig(min_items=3, max_items=10)
    state = engine.start_session("u", "a", cfg)
    asked = state.next_item_id
    state = engine.submit_response("u", "a", _answer(state), cfg)
    with pytest.raises(DuplicateResponse):
        engine.submit_response("u", "a", Response(item_id=asked, confidence=0.9), cfg)
    assert len(engine.get_session_state("u", "a").responses) == 1

    done_cfg = AdaptiveConfig(min_items=1, max_items=1)
    state = engine.start_session("u", "b", done_cfg)
    state = engine.submit_response("u", "b", _answer(state), done_cfg)
    assert state.is_complete
    with pytest.raises(SessionAlreadyComplete) as info:
        engine.submit_response("u", "b", Response(item_id="anything"), done_cfg)
    assert isinstance(info.value, AdaptiveTestingError)


def test_get_session_state_is_idempotent_and_isolated(engine):
    cfg = AdaptiveConfig(min_items=5, max_items=10)
    state = engine.start_session("u", "a", cfg)
    engine.submit_response("u", "a", _answer(state), cfg)

    first = engine.get_session_state("u", "a")
    second = engine.get_session_state("u", "a")
    assert first == second
    first.questions_asked.append("tampered")
    first.ability_history.clear()
    assert engine.get_session_state("u", "a") == second
    assert engine.get_session_state("nobody", "a") is None


def test_restart_replaces_existing_session(engine):
    cfg = AdaptiveConfig(min_items=5, max_items=10)
    state = engine.start_session("u", "a", cfg)
    engine.submit_response("u", "a", _answer(state), cfg)
    fresh = engine.start_session("u", "a", cfg)
    assert fresh.responses == []
    assert engine.get_session_state("u", "a").responses == []


def test_preview_batch_does_not_commit(engine):
    cfg = AdaptiveConfig(min_items=5, max_items=10)
    engine.start_session("u", "a", cfg)
    before = engine.get_session_state("u", "a")
    batch = engine.preview_batch("u", "a", 4, cfg)
    assert len(batch) == 4
    assert len({it.id for it in batch}) == 4
    assert engine.get_session_state("u", "a") == before
    with pytest.raises(SessionNotFound):
        engine.preview_batch("ghost", "a", 2)


def test_delete_session(engine):
    engine.start_session("u", "a", CFG)
    assert engine.delete_session("u", "a") is True
    assert engine.get_session_state("u", "a") is None
    assert engine.delete_session("u", "a") is False


def test_cleanup_removes_completed_and_stale_sessions(engine, clock):
    done_cfg = AdaptiveConfig(min_items=1, max_items=1)
    state = engine.start_session("u", "done", done_cfg)
    engine.submit_response("u", "done", _answer(state), done_cfg)

    cfg = AdaptiveConfig(min_items=5, max_items=10)
    state = engine.start_session("u", "stale", cfg)
    engine.submit_response("u", "stale", _answer(state), cfg)
    engine.start_session("u", "idle", cfg)

    clock.advance(hours=23)
    state = engine.start_session("u", "fresh", cfg)
    engine.submit_response("u", "fresh", _answer(state), cfg)

    assert engine.cleanup_expired_states() is None
    assert set(engine.sessions()) == {("u", "stale"), ("u", "idle"), ("u", "fresh")}

    clock.advance(hours=2)
    engine.cleanup_expired_states(24)
    assert set(engine.sessions()) == {("u", "fresh")}

    clock.advance(hours=2)
    engine.cleanup_expired_states(max_age_hours=1)
    assert engine.sessions() == {}


def test_completion_records_advisor_snapshot(engine):
    cfg = AdaptiveConfig(min_items=2, max_items=2)
    state = engine.start_session("learner", "a", cfg)
    state = engine.submit_response("learner", "a", _answer(state, True), cfg)
    state = engine.submit_response("learner", "a", _answer(state, False), cfg)
    assert state.is_complete
    history = engine.advisor.history("learner")
    assert len(history) == 1
    snap = history[0]
    assert (snap.correct_count, snap.total_count) == (1, 2)
    assert snap.avg_response_time_ms == 45_000
    assert snap.ability_estimate == state.current_ability
    assert len(snap.difficulty_progression) == 2


def test_concurrent_submissions_for_one_session_are_serialized():
    engine = make_engine(build_synthetic_bank(per_tier=4))
    cfg = AdaptiveConfig(min_items=40, max_items=40)
    state = engine.start_session("u", "a", cfg)
    pool = [it.id for it in engine.item_bank.all_items()][:24]
    errors: list[Exception] = []

    def worker(ids):
        for iid in ids:
            try:
                engine.submit_response("u", "a", Response(item_id=iid, confidence=0.8), cfg)
            except AdaptiveTestingError as exc:
                errors.append(exc)

    threads = [threading.Thread(target=worker, args=(pool[i::6],)) for i in range(6)]
    for th in threads:
        th.start()
    for th in threads:
        th.join()

    assert not errors
    final = engine.get_session_state("u", "a")
    assert len(final.responses) == len(final.questions_asked) == len(final.ability_history) == 24
    assert sorted(final.questions_asked) == sorted(pool)
    assert not final.is_complete
    assert state.questions_asked == []


def test_continuation_rules_in_order():
    cfg = AdaptiveConfig(min_items=2, max_items=4, confidence_threshold=0.8)
    st = SessionState(user_id="u", assessment_id="a")
    st.responses = [Response(item_id="1")]
    assert continuation_decision(st, cfg) == (True, "below_min_items")

    st.responses = [Response(item_id=str(i)) for i in range(4)]
    st.confidence_level = 0.0
    assert continuation_decision(st, cfg) == (False, "max_items")

    st.responses = st.responses[:3]
    st.confidence_level = 0.85
    assert continuation_decision(st, cfg) == (False, "confidence_threshold")

    st.confidence_level = 0.3
    st.ability_history = [0.1, 0.12, 0.11]
    assert continuation_decision(st, cfg) == (False, "ability_stabilized")

    st.ability_history = [-1.0, 0.5, 2.0]
    assert continuation_decision(st, cfg) == (True, "continue")


def test_estimated_completion_formula():
    cfg = AdaptiveConfig(min_items=2, max_items=10, confidence_threshold=0.8)
    st = SessionState(user_id="u", assessment_id="a", confidence_level=0.4)
    st.responses = [Response(item_id=str(i)) for i in range(5)]
    assert estimated_completion(st, cfg) == pytest.approx((0.6 * 0.5 + 0.4 * 0.5) * 100)
    st.confidence_level = 0.0
    assert estimated_completion(st, cfg) == pytest.approx(50.0)
    st.confidence_level = 1.0
    st.responses = [Response(item_id=str(i)) for i in range(10)]
    assert estimated_completion(st, cfg) == 100.0


def test_unknown_keys_leave_no_lock_entries(engine):
    for i in range(100):
        with pytest.raises(SessionNotFound):
            engine.submit_response("ghost", str(i), Response(item_id="x"), CFG)
    assert engine.delete_session("ghost", "0") is False
    assert len(engine.store) == 0
    assert engine.store._locks == {}


def test_confidence_signal_applies_to_keyed_item_without_answer(engine):
    state = engine.start_session("u", "a", CFG)
    state = engine.submit_response("u", "a", Response(item_id=state.next_item_id, confidence=0.95), CFG)
    assert state.responses[0].is_correct is None
    assert state.audit_events[0]["correct"] == 1
    assert state.current_ability > 0.0

    state = engine.submit_response("u", "a", Response(item_id=state.next_item_id, confidence=0.05), CFG)
    assert state.audit_events[1]["correct"] == 0
    assert state.current_ability <= state.ability_history[0]
