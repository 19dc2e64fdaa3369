from __future__ import annotations
from dataclasses import replace
from fastapi import FastAPI, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
import logging, os, typing as t

from adaptive_core.audit_export import csv_filename, session_audit, to_csv as audit_to_csv
from adaptive_core.config import AUDIT_EXPORT_ENABLED, default_adaptive_config
from adaptive_core.engine import AdaptiveEngine
from adaptive_core.errors import (
    AdaptiveTestingError,
    DuplicateResponse,
    InvalidConfig,
    SessionAlreadyComplete,
    SessionNotFound,
)
from adaptive_core.grading import KeyedGrader
from adaptive_core.irt import ability_to_tier
from adaptive_core.item_bank import InMemoryItemBank
from adaptive_core.trends import DifficultyTrendAdvisor
from adaptive_core.types import AdaptiveConfig, Response as ItemResponse, SessionState

log = logging.getLogger(__name__)

BANK = InMemoryItemBank.packaged()
ADVISOR = DifficultyTrendAdvisor()
ENGINE = AdaptiveEngine(BANK, grader=KeyedGrader(), advisor=ADVISOR)
SESSION_CFG: dict[tuple[str, str], AdaptiveConfig] = {}

app = FastAPI(title="Adaptive Core API")


@app.get("/")
def root():
    return {"status": "ok", "service": "adaptive-core"}


ALLOWED_ORIGINS = [
    o.strip() for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",") if o.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

# ---- Schemas ----
class ConfigReq(BaseModel):
    initial_difficulty_tier: str | None = None
    min_items: int | None = None
    max_items: int | None = None
    target_accuracy: float | None = None
    confidence_threshold: float | None = None
    difficulty_adjustment_factor: float | None = None
    content_tags: list[str] | None = None

class StartReq(BaseModel):
    user_id: str
    assessment_id: str
    config: ConfigReq | None = None

class SubmitReq(BaseModel):
    item_id: str
    answer: t.Any = None
    time_spent_ms: float = 0.0
    attempts: int = 1
    confidence: float | None = None
    is_correct: bool | None = None

# ---- Helpers ----
def _build_config(req: ConfigReq | None) -> AdaptiveConfig:
    base = default_adaptive_config()
    if req is None:
        return base
    overrides: dict[str, t.Any] = {}
    for name in (
        "initial_difficulty_tier",
        "min_items",
        "max_items",
        "target_accuracy",
        "confidence_threshold",
        "difficulty_adjustment_factor",
    ):
        val = getattr(req, name)
        if val is not None:
            overrides[name] = val
    if req.content_tags is not None:
        overrides["content_tags"] = tuple(req.content_tags)
    return replace(base, **overrides)


def _http_error(exc: AdaptiveTestingError) -> HTTPException:
    if isinstance(exc, SessionNotFound):
        return HTTPException(404, str(exc))
    if isinstance(exc, (SessionAlreadyComplete, DuplicateResponse)):
        return HTTPException(409, str(exc))
    if isinstance(exc, InvalidConfig):
        return HTTPException(422, str(exc))
    return HTTPException(500, str(exc))


def _serialize_item(item_id: str | None):
    if item_id is None:
        return None
    it = BANK.get_item(item_id)
    if it is None:
        return {"id": item_id}
    return {
        "id": it.id,
        "tier": it.difficulty_tier,
        "type": it.type,
        "tags": list(it.tags),
        "text": it.text,
        "options": it.options,
    }


def _state_payload(state: SessionState) -> dict[str, t.Any]:
    body = state.to_dict()
    body["nextItem"] = _serialize_item(state.next_item_id)
    return body


def _session_cfg(user_id: str, assessment_id: str) -> AdaptiveConfig:
    return SESSION_CFG.get((user_id, assessment_id)) or default_adaptive_config()


def _require_state(user_id: str, assessment_id: str) -> SessionState:
    state = ENGINE.get_session_state(user_id, assessment_id)
    if state is None:
        raise HTTPException(404, "session not found")
    return state

# ---- Sessions ----
@app.post("/sessions/start")
def start(req: StartReq):
    try:
        cfg = _build_config(req.config)
        state = ENGINE.start_session(req.user_id, req.assessment_id, cfg)
    except AdaptiveTestingError as exc:
        raise _http_error(exc) from exc
    SESSION_CFG[(req.user_id, req.assessment_id)] = cfg
    return _state_payload(state)


@app.post("/sessions/{user_id}/{assessment_id}/responses")
def submit(user_id: str, assessment_id: str, req: SubmitReq):
    resp = ItemResponse(
        item_id=req.item_id,
        answer=req.answer,
        time_spent_ms=req.time_spent_ms,
        attempts=req.attempts,
        confidence=req.confidence,
        is_correct=req.is_correct,
    )
    try:
        state = ENGINE.submit_response(user_id, assessment_id, resp, _session_cfg(user_id, assessment_id))
    except AdaptiveTestingError as exc:
        raise _http_error(exc) from exc
    return _state_payload(state)


@app.get("/sessions/{user_id}/{assessment_id}")
def get_state(user_id: str, assessment_id: str):
    return _state_payload(_require_state(user_id, assessment_id))


@app.delete("/sessions/{user_id}/{assessment_id}")
def delete_session(user_id: str, assessment_id: str):
    if not ENGINE.delete_session(user_id, assessment_id):
        raise HTTPException(404, "session not found")
    SESSION_CFG.pop((user_id, assessment_id), None)
    return {"ok": True}


@app.get("/sessions/{user_id}/{assessment_id}/preview")
def preview(user_id: str, assessment_id: str, n: int = Query(3, ge=1, le=20)):
    try:
        items = ENGINE.preview_batch(user_id, assessment_id, n, _session_cfg(user_id, assessment_id))
    except AdaptiveTestingError as exc:
        raise _http_error(exc) from exc
    return {"items": [_serialize_item(it.id) for it in items]}


@app.get("/sessions/{user_id}/{assessment_id}/difficulty")
def difficulty(user_id: str, assessment_id: str, strategy: str = "moderate"):
    state = _require_state(user_id, assessment_id)
    cfg = _session_cfg(user_id, assessment_id)
    current = ability_to_tier(state.current_ability)
    try:
        adjusted = ADVISOR.adjust_difficulty(
            current, state.responses, strategy=strategy, factor=cfg.difficulty_adjustment_factor
        )
    except ValueError as exc:
        raise HTTPException(422, str(exc)) from exc
    return {
        "current_tier": current,
        "adjusted_tier": adjusted,
        "optimal_tier": ADVISOR.optimal_tier(state, cfg.target_accuracy),
    }


@app.post("/sessions/cleanup")
def cleanup(max_age_hours: float | None = None):
    before = set(ENGINE.store.keys())
    ENGINE.cleanup_expired_states(max_age_hours)
    removed = before - set(ENGINE.store.keys())
    for key in removed:
        SESSION_CFG.pop(key, None)
    return {"removed": len(removed)}

# ---- Audit ----
@app.get("/sessions/{user_id}/{assessment_id}/audit.json")
def get_audit_json(user_id: str, assessment_id: str):
    if not AUDIT_EXPORT_ENABLED:
        raise HTTPException(404, "audit export disabled")
    return session_audit(_require_state(user_id, assessment_id))


@app.get("/sessions/{user_id}/{assessment_id}/audit.csv")
def get_audit_csv(user_id: str, assessment_id: str):
    if not AUDIT_EXPORT_ENABLED:
        raise HTTPException(404, "audit export disabled")
    state = _require_state(user_id, assessment_id)
    return Response(
        content=audit_to_csv(state.audit_events),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=\"{csv_filename(state)}\""},
    )

# ---- Trend advisor ----
@app.get("/users/{user_id}/recommendation")
def recommendation(user_id: str):
    rec = ADVISOR.recommend(user_id)
    return {
        "current_tier": rec.current_tier,
        "suggested_tier": rec.suggested_tier,
        "confidence": rec.confidence,
        "reasoning": list(rec.reasoning),
    }


@app.get("/users/{user_id}/trend")
def trend(user_id: str):
    tr = ADVISOR.trend(user_id)
    return {
        "accuracy_trend": tr.accuracy_trend,
        "speed_trend": tr.speed_trend,
        "difficulty_trend": tr.difficulty_trend,
        "ability_trend": tr.ability_trend,
        "snapshots": len(ADVISOR.history(user_id)),
    }
