"""Grading collaborator for items that carry an answer key.

Free-text and file items (essay, code, uploads) are graded elsewhere. For
those, and for submissions that carry no answer, ``grade_response`` returns
``None`` and the estimator falls back to the response's confidence signal.
"""
from __future__ import annotations
from typing import Optional
import re

from .types import GradeResult, Item, Response

_KEYED_TYPES = {"multiple_choice", "true_false", "fill_in_blank", "matching", "ordering"}
_WS_RX = re.compile(r"\s+")


def _norm(value: object) -> str:
    if isinstance(value, (list, tuple)):
        return "|".join(_norm(v) for v in value)
    return _WS_RX.sub(" ", str(value if value is not None else "")).strip().lower()


def _option_text(item: Item, value: object) -> Optional[str]:
    opts = item.options
    if not isinstance(opts, list):
        return None
    try:
        idx = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if 0 <= idx < len(opts):
        return opts[idx]
    return None


def _matches(item: Item, answer: object) -> bool:
    key = _norm(item.answer_key)
    if _norm(answer) == key:
        return True
    if item.type in ("multiple_choice", "true_false"):
        text = _option_text(item, answer)
        if text is not None and _norm(text) == key:
            return True
    return False


class KeyedGrader:
    def grade_response(self, item: Item, response: Response) -> Optional[GradeResult]:
        if item.answer_key is None or item.type not in _KEYED_TYPES:
            return None
        if response.answer is None:
            return None
        ok = _matches(item, response.answer)
        max_score = float(item.points or 1.0)
        return GradeResult(score=max_score if ok else 0.0, max_score=max_score, is_correct=ok)


def grade_response(item: Item, response: Response) -> Optional[GradeResult]:
    return KeyedGrader().grade_response(item, response)
