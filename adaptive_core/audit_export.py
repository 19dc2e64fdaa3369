"""Export the per-response audit trail of an adaptive session as JSON or CSV.

Each engine step records one event (see ``AdaptiveEngine.submit_response``).
Exports coerce every event onto the fixed column set below so that missing
or malformed values show up as zeros/blanks rather than breaking a download.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
import csv
import io

from .types import SessionState


def _as_int(val: Any) -> int:
    try:
        return int(val)
    except (TypeError, ValueError):
        return 0


def _as_float(val: Any) -> float:
    try:
        return float(val)
    except (TypeError, ValueError):
        return 0.0


def _as_text(val: Any) -> str:
    return "" if val is None else str(val)


_COLUMNS: Tuple[Tuple[str, Callable[[Any], Any]], ...] = (
    ("t", _as_text),
    ("item_id", _as_text),
    ("tier", _as_text),
    ("b", _as_float),
    ("correct", _as_int),
    ("theta_before", _as_float),
    ("theta_after", _as_float),
    ("se_after", _as_float),
    ("confidence", _as_float),
    ("latency_ms", _as_int),
)
_FIELDS: Tuple[str, ...] = tuple(name for name, _ in _COLUMNS)


def audit_rows(events: Iterable[Optional[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for evt in events:
        evt = evt or {}
        rows.append({name: coerce(evt.get(name)) for name, coerce in _COLUMNS})
    return rows


def to_json(events: Iterable[Optional[Dict[str, Any]]]) -> Dict[str, Any]:
    return {"events": audit_rows(events)}


def to_csv(events: Iterable[Optional[Dict[str, Any]]]) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=_FIELDS, lineterminator="\n")
    writer.writeheader()
    writer.writerows(audit_rows(events))
    return buf.getvalue()


def session_audit(state: SessionState) -> Dict[str, Any]:
    """Audit payload for one session: identity, outcome and the event trail."""

    return {
        "user_id": state.user_id,
        "assessment_id": state.assessment_id,
        "is_complete": state.is_complete,
        "termination_reason": state.termination_reason or "",
        "final_theta": _as_float(state.current_ability),
        "final_confidence": _as_float(state.confidence_level),
        "responses": len(state.responses),
        "events": audit_rows(state.audit_events),
    }


def csv_filename(state: SessionState) -> str:
    safe = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in f"{state.user_id}_{state.assessment_id}")
    return f"{safe}_audit.csv"


__all__ = ["audit_rows", "to_json", "to_csv", "session_audit", "csv_filename"]
