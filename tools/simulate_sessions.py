# tools/simulate_sessions.py
from __future__ import annotations
import argparse, json, logging, random
from typing import Any, Dict, List, Optional

from adaptive_core.config import default_adaptive_config
from adaptive_core.engine import AdaptiveEngine
from adaptive_core.grading import KeyedGrader
from adaptive_core.irt import irt_params, prob_correct
from adaptive_core.item_bank import InMemoryItemBank
from adaptive_core.selector import ItemSelector
from adaptive_core.trends import DifficultyTrendAdvisor
from adaptive_core.types import Item, Response, TIERS

log = logging.getLogger("simulate")


def _wrong_answer(item: Item) -> Any:
    opts = item.options or []
    for opt in opts:
        if opt != item.answer_key:
            return opt
    return "__wrong__"


def _answer_for(item: Item, profile: str, theta: float, rng: random.Random) -> Response:
    if profile == "perfect":
        ok = True
    elif profile == "all-wrong":
        ok = False
    else:
        ok = rng.random() < prob_correct(theta, irt_params(item))
    rt = rng.uniform(0.4, 1.2) * {"beginner": 30_000, "intermediate": 60_000, "advanced": 120_000}.get(
        item.difficulty_tier, 180_000
    )
    if item.answer_key is not None:
        return Response(item_id=item.id, answer=item.answer_key if ok else _wrong_answer(item), time_spent_ms=rt)
    # unkeyed items report through the confidence signal
    return Response(item_id=item.id, answer="", time_spent_ms=rt, confidence=0.9 if ok else 0.1)


def run(profile: str, sessions: int, seed: Optional[int], true_theta: float, initial_tier: str) -> List[Dict[str, Any]]:
    rng = random.Random(seed or 1234)
    advisor = DifficultyTrendAdvisor()
    engine = AdaptiveEngine(
        InMemoryItemBank.packaged(),
        selector=ItemSelector(rng=random.Random(rng.randint(0, 2**31 - 1))),
        grader=KeyedGrader(),
        advisor=advisor,
    )
    cfg = default_adaptive_config({"initial_difficulty_tier": initial_tier})
    user = f"sim-{profile}"
    results: List[Dict[str, Any]] = []

    for idx in range(sessions):
        aid = f"assessment-{idx + 1}"
        state = engine.start_session(user, aid, cfg)
        answered = 0
        while not state.is_complete and state.next_item_id is not None:
            item = engine.item_bank.get_item(state.next_item_id)
            if item is None:
                raise RuntimeError(f"selected item {state.next_item_id} missing from bank")
            state = engine.submit_response(user, aid, _answer_for(item, profile, true_theta, rng), cfg)
            answered += 1
        if answered <= 0:
            raise RuntimeError("Driver answered 0 items.")
        log.info(
            "session %s done: answered=%d theta=%.3f confidence=%.3f reason=%s",
            aid,
            answered,
            state.current_ability,
            state.confidence_level,
            state.termination_reason,
        )
        results.append(
            {
                "assessment_id": aid,
                "answered": answered,
                "theta": round(state.current_ability, 4),
                "confidence": round(state.confidence_level, 4),
                "reason": state.termination_reason,
                "items": list(state.questions_asked),
            }
        )

    rec = advisor.recommend(user)
    log.info(
        "recommendation: %s -> %s (confidence=%.2f) %s",
        rec.current_tier,
        rec.suggested_tier,
        rec.confidence,
        "; ".join(rec.reasoning),
    )
    engine.cleanup_expired_states()
    return results


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    ap = argparse.ArgumentParser(description="Drive simulated examinees through adaptive sessions.")
    ap.add_argument("--profile", choices=["perfect", "all-wrong", "irt"], default="irt")
    ap.add_argument("--sessions", type=int, default=3)
    ap.add_argument("--seed", type=int, default=1337)
    ap.add_argument("--theta", type=float, default=0.5, help="true ability for the irt profile")
    ap.add_argument("--tier", choices=list(TIERS), default="intermediate")
    ap.add_argument("--out", default=None, help="optional JSON output path")
    a = ap.parse_args(argv)
    results = run(a.profile, a.sessions, a.seed, a.theta, a.tier)
    text = json.dumps(results, indent=2)
    if a.out:
        with open(a.out, "w", encoding="utf-8") as fh:
            fh.write(text + "\n")
        print(f"Wrote {a.out}")
    else:
        print(text)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
