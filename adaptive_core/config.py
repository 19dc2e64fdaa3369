from __future__ import annotations
import os, json, pathlib


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


THETA_MIN: float = -4.0
THETA_MAX: float = 4.0
P_FLOOR: float = 0.001
P_CEIL: float = 0.999

NR_MAX_ITER: int = 10
NR_TOLERANCE: float = 0.001
ESTIMATOR_METHOD: str = "parity"  # "parity" | "fisher"
CORRECT_CONFIDENCE: float = 0.5

DEFAULT_DISCRIMINATION: float = 1.0
DEFAULT_GUESSING: float = 0.2
GUESSING_CHOICE: float = 0.25
GUESSING_OTHER: float = 0.1

WEIGHTS: dict[str, float] = {
    "information": 0.4,
    "difficulty": 0.3,
    "content": 0.2,
    "diversity": 0.1,
}
INFO_CAP: float = 1.0
EXPLORE_RESPONSES: int = 3
EXPLORE_TOP_K: int = 3
EXPLORE_DECAY: float = 0.7
DIVERSITY_WINDOW: int = 5
DIVERSITY_STEP: float = 0.1
DIVERSITY_FLOOR: float = 0.1

STABILITY_WINDOW: int = 3
STABILITY_VARIANCE: float = 0.1
CONFIDENCE_FLOOR: float = 0.1
SE_WEIGHT: float = 0.5

RETENTION_HOURS: float = 24.0

TREND_HISTORY_MAX: int = 20
TREND_RECENT: int = 5
TREND_HIGH_ACCURACY: float = 0.85
TREND_LOW_ACCURACY: float = 0.5
TREND_FAST_RATIO: float = 0.6
TREND_SLOW_RATIO: float = 1.5
TARGET_ACCURACY: float = 0.7

BANK_MIN_PER_TIER: int = 2
BANK_REQUIRE_CALIBRATION: bool = False
AUDIT_EXPORT_ENABLED: bool = True

DEBUG_TRACE: bool = False
DEBUG_SEED: int | None = None
TRACE_FIELDS: tuple[str, ...] = (
    "user_id",
    "item_id",
    "tier",
    "b",
    "correct",
    "theta_before",
    "theta_after",
    "se",
    "confidence",
)
# // env overrides for staging/ops; defaults mirror the calibrated service.
THETA_MIN = _env_float("THETA_MIN", THETA_MIN)
THETA_MAX = _env_float("THETA_MAX", THETA_MAX)
NR_MAX_ITER = _env_int("NR_MAX_ITER", NR_MAX_ITER)
NR_TOLERANCE = _env_float("NR_TOLERANCE", NR_TOLERANCE)
ESTIMATOR_METHOD = (os.getenv("ESTIMATOR_METHOD") or ESTIMATOR_METHOD).strip().lower()
P_FLOOR = _env_float("P_FLOOR", P_FLOOR)
P_CEIL = _env_float("P_CEIL", P_CEIL)
for _name in tuple(WEIGHTS):
    WEIGHTS[_name] = _env_float(f"WEIGHT_{_name.upper()}", WEIGHTS[_name])
EXPLORE_RESPONSES = _env_int("EXPLORE_RESPONSES", EXPLORE_RESPONSES)
EXPLORE_TOP_K = _env_int("EXPLORE_TOP_K", EXPLORE_TOP_K)
EXPLORE_DECAY = _env_float("EXPLORE_DECAY", EXPLORE_DECAY)
DIVERSITY_WINDOW = _env_int("DIVERSITY_WINDOW", DIVERSITY_WINDOW)
DIVERSITY_STEP = _env_float("DIVERSITY_STEP", DIVERSITY_STEP)
DIVERSITY_FLOOR = _env_float("DIVERSITY_FLOOR", DIVERSITY_FLOOR)
STABILITY_WINDOW = _env_int("STABILITY_WINDOW", STABILITY_WINDOW)
STABILITY_VARIANCE = _env_float("STABILITY_VARIANCE", STABILITY_VARIANCE)
RETENTION_HOURS = _env_float("RETENTION_HOURS", RETENTION_HOURS)
TREND_HISTORY_MAX = _env_int("TREND_HISTORY_MAX", TREND_HISTORY_MAX)
TREND_RECENT = _env_int("TREND_RECENT", TREND_RECENT)
BANK_MIN_PER_TIER = _env_int("BANK_MIN_PER_TIER", BANK_MIN_PER_TIER)
BANK_REQUIRE_CALIBRATION = _env_bool("BANK_REQUIRE_CALIBRATION", BANK_REQUIRE_CALIBRATION)
AUDIT_EXPORT_ENABLED = _env_bool("AUDIT_EXPORT_ENABLED", AUDIT_EXPORT_ENABLED)
DEBUG_TRACE = _env_bool("DEBUG_TRACE", False)
DEBUG_SEED = _env_int("DEBUG_SEED", 0) if os.getenv("DEBUG_SEED") else None


_ADAPTIVE_DEFAULTS: dict = {
    "initial_difficulty_tier": "intermediate",
    "min_items": 5,
    "max_items": 20,
    "target_accuracy": TARGET_ACCURACY,
    "confidence_threshold": 0.8,
    "difficulty_adjustment_factor": 0.5,
}


def load_config() -> dict:
    cfg: dict = {}
    p = pathlib.Path(os.getenv("ADAPTIVE_CONFIG_FILE", "config.json"))
    if p.exists():
        try:
            cfg = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            cfg = {}
    e = os.environ
    if e.get("INITIAL_TIER"): cfg["initial_difficulty_tier"] = e["INITIAL_TIER"].strip().lower()
    if e.get("MIN_ITEMS"): cfg["min_items"] = _env_int("MIN_ITEMS", _ADAPTIVE_DEFAULTS["min_items"])
    if e.get("MAX_ITEMS"): cfg["max_items"] = _env_int("MAX_ITEMS", _ADAPTIVE_DEFAULTS["max_items"])
    if e.get("CONFIDENCE_THRESHOLD"):
        cfg["confidence_threshold"] = _env_float("CONFIDENCE_THRESHOLD", _ADAPTIVE_DEFAULTS["confidence_threshold"])
    return cfg


def default_adaptive_config(cfg: dict | None = None):
    """Build an ``AdaptiveConfig`` from ``load_config()`` output."""

    from .types import AdaptiveConfig

    merged = dict(_ADAPTIVE_DEFAULTS)
    src = load_config() if cfg is None else cfg
    for key in _ADAPTIVE_DEFAULTS:
        if key in src:
            merged[key] = src[key]
    return AdaptiveConfig(**merged)
