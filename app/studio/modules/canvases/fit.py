"""
Value-proposition fit scoring.

Pure functions over a customer profile's jobs/pains/gains blocks and the sets of
profile item ids a value-proposition canvas marks as addressed. Nothing here
touches the database.
"""
from __future__ import annotations

import math
from collections.abc import Iterable

from app.studio.constants import FIT_LINK_TYPES

# Pains and gains matter more than jobs for product/market fit.
FIT_WEIGHTS = {"pains": 0.4, "gains": 0.4, "jobs": 0.2}

STRONG_SEVERITIES = ("high", "extreme")


def round_half_up(value: float) -> int:
    # round() would send 12.5 to 12
    return int(math.floor(value + 0.5))


def clamp_percent(value: float) -> int:
    return max(0, min(100, round_half_up(value)))


def coverage_percent(addressed: int, total: int) -> int:
    """addressed / total as a whole percentage in [0, 100]; 0 when there is nothing to address."""
    if total <= 0:
        return 0
    return clamp_percent(addressed / total * 100)


def normalize_addressed(raw: object) -> dict:
    """Stored shape is {"items": [ids], "coverage": int|None}; anything else reads as empty."""
    if not isinstance(raw, dict):
        return {"items": [], "coverage": None}
    items = raw.get("items")
    if not isinstance(items, list) or not all(isinstance(i, str) for i in items):
        return {"items": [], "coverage": None}
    coverage = raw.get("coverage")
    if coverage is not None and not isinstance(coverage, (int, float)):
        coverage = None
    # dedupe, keep first-seen order
    return {"items": list(dict.fromkeys(items)), "coverage": coverage}


def toggle_addressed(block: dict, item_id: str) -> dict:
    items = list(block.get("items") or [])
    if item_id in items:
        items = [i for i in items if i != item_id]
    else:
        items.append(item_id)
    return {**block, "items": items}


def _ids(items: Iterable[dict]) -> list[str]:
    return [item["id"] for item in items]


def fit_label(score: int) -> str:
    if score >= 80:
        return "Strong Fit"
    if score >= 60:
        return "Moderate Fit"
    if score >= 40:
        return "Partial Fit"
    return "Weak Fit"


def fit_score(profile_blocks: dict[str, dict], addressed: dict[str, dict]) -> int:
    """
    Weighted fit score in [0, 100].

    ``profile_blocks`` maps "jobs"/"pains"/"gains" to normalized blocks;
    ``addressed`` maps the same keys to addressed blocks. Only ids that still
    exist in the profile count as addressed.
    """
    weighted = 0.0
    for link_type, weight in FIT_WEIGHTS.items():
        profile_ids = set(_ids(profile_blocks.get(link_type, {}).get("items", [])))
        if not profile_ids:
            continue
        hit = profile_ids & set(addressed.get(link_type, {}).get("items", []))
        weighted += len(hit) / len(profile_ids) * weight
    return clamp_percent(weighted * 100)


def fit_analysis(profile_blocks: dict[str, dict], addressed: dict[str, dict]) -> dict:
    coverage: dict[str, int] = {}
    gaps: dict[str, list[str]] = {}
    gap_lines: list[str] = []
    addressed_sets: dict[str, set[str]] = {}

    singular = {"jobs": "Job", "pains": "Pain", "gains": "Gain"}
    for link_type in FIT_LINK_TYPES:
        items = profile_blocks.get(link_type, {}).get("items", [])
        addressed_ids = set(addressed.get(link_type, {}).get("items", []))
        addressed_sets[link_type] = addressed_ids
        hit = [item for item in items if item["id"] in addressed_ids]
        missing = [item for item in items if item["id"] not in addressed_ids]
        coverage[link_type] = coverage_percent(len(hit), len(items))
        gaps[f"unaddressed_{link_type}"] = _ids(missing)
        gap_lines.extend(f"{singular[link_type]} not addressed: {item['content']}" for item in missing)

    score = fit_score(profile_blocks, addressed)
    pains = profile_blocks.get("pains", {}).get("items", [])
    gains = profile_blocks.get("gains", {}).get("items", [])
    return {
        "overall_score": score,
        "label": fit_label(score),
        "job_coverage": coverage["jobs"],
        "pain_coverage": coverage["pains"],
        "gain_coverage": coverage["gains"],
        "gaps": gaps,
        "gap_summary": gap_lines,
        "strengths": {
            "well_covered_pains": [
                p["id"] for p in pains if p["id"] in addressed_sets["pains"] and p.get("severity") in STRONG_SEVERITIES
            ],
            "well_covered_gains": [
                g["id"] for g in gains if g["id"] in addressed_sets["gains"] and g.get("importance") == "critical"
            ],
        },
    }


def fit_stats(profile_blocks: dict[str, dict], value_map_blocks: dict[str, dict], addressed: dict[str, dict]) -> dict:
    profile_items = sum(len(b.get("items", [])) for b in profile_blocks.values())
    value_map_items = sum(len(b.get("items", [])) for b in value_map_blocks.values())
    total_addressed = 0
    for link_type in FIT_WEIGHTS:
        profile_ids = set(_ids(profile_blocks.get(link_type, {}).get("items", [])))
        total_addressed += len(profile_ids & set(addressed.get(link_type, {}).get("items", [])))
    return {
        "profile_items": profile_items,
        "value_map_items": value_map_items,
        "total_addressed": total_addressed,
        "total_gaps": max(0, profile_items - total_addressed),
    }
