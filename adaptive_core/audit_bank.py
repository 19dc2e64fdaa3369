from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable

from . import config
from .irt import irt_params
from .item_bank import load_bank
from .types import TIERS, Item

TYPE_GROUPS: tuple[str, ...] = ("choice", "keyed", "open")
_GROUP_OF = {
    "multiple_choice": "choice",
    "true_false": "choice",
    "fill_in_blank": "keyed",
    "matching": "keyed",
    "ordering": "keyed",
    "essay": "open",
    "code_submission": "open",
    "file_upload": "open",
}


def _blank_tier() -> dict[str, int]:
    return {group: 0 for group in TYPE_GROUPS}


def audit_items(items: Iterable[Item]) -> dict[str, object]:
    coverage: dict[str, dict[str, int]] = {tier: _blank_tier() for tier in TIERS}
    tags: dict[str, int] = {}
    totals = {"items": 0, "calibrated": 0, "invalid_irt": 0, "missing_answer_key": 0}
    b_by_tier: dict[str, list[float]] = {tier: [] for tier in TIERS}
    warnings: list[str] = []

    for item in items:
        totals["items"] += 1
        group = _GROUP_OF.get(item.type, "open")
        tier_map = coverage.setdefault(item.difficulty_tier, _blank_tier())
        tier_map[group] += 1

        for tag in item.tags:
            key = tag.lower()
            tags[key] = tags.get(key, 0) + 1

        if item.irt is not None:
            if item.irt.is_valid():
                totals["calibrated"] += 1
            else:
                totals["invalid_irt"] += 1
                warnings.append(
                    f"{item.id} has invalid irt params (a={item.irt.discrimination}, c={item.irt.guessing})"
                )
        elif config.BANK_REQUIRE_CALIBRATION:
            warnings.append(f"{item.id} is uncalibrated")

        if group != "open" and item.answer_key is None:
            totals["missing_answer_key"] += 1
            warnings.append(f"{item.id} ({item.type}) has no answer_key")

        b_by_tier.setdefault(item.difficulty_tier, []).append(irt_params(item).difficulty)

    for tier in TIERS:
        count = sum(coverage[tier].values())
        if count < config.BANK_MIN_PER_TIER:
            warnings.append(f"tier {tier} has {count} items (<{config.BANK_MIN_PER_TIER})")

    b_range = {
        tier: [round(min(vals), 3), round(max(vals), 3)] if vals else None
        for tier, vals in b_by_tier.items()
    }
    return {
        "coverage": coverage,
        "tags": dict(sorted(tags.items())),
        "b_range": b_range,
        "warnings": warnings,
        "totals": totals,
    }


def _format_row(label: str, data: dict[str, int]) -> str:
    parts = [f"{label:<12}"]
    for group in TYPE_GROUPS:
        parts.append(f"{group}:{data.get(group, 0):3d}")
    return "  ".join(parts)


def print_report(summary: dict[str, object]) -> None:
    coverage: dict[str, dict[str, int]] = summary["coverage"]  # type: ignore[assignment]
    print("=== Bank Coverage ===")
    for tier in TIERS:
        print("  " + _format_row(tier, coverage.get(tier, {})))

    tags: dict[str, int] = summary["tags"]  # type: ignore[assignment]
    if tags:
        print("\nTags:", ", ".join(f"{k}={v}" for k, v in tags.items()))

    warnings: list[str] = summary["warnings"]  # type: ignore[assignment]
    if warnings:
        print("\nWarnings:")
        for msg in warnings:
            print(f" - {msg}")
    else:
        print("\nNo warnings.")

    print("\nTotals:", summary["totals"])


def write_summary(summary: dict[str, object], path: Path = Path("/tmp/bank_audit.json")) -> str:
    text = json.dumps(summary, indent=2, sort_keys=True)
    path.write_text(text + "\n", encoding="utf-8")
    print(text)
    return text


def main(argv: list[str] | None = None) -> int:
    args = list(argv or [])
    out = Path(args[0]) if args else Path("/tmp/bank_audit.json")
    summary = audit_items(load_bank())
    print_report(summary)
    write_summary(summary, path=out)
    return 2 if summary["warnings"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
