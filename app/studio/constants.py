"""
Central constants for the studio application.
"""
from __future__ import annotations

CANVAS_STATUSES = ("draft", "active", "validated", "archived")

CONTENT_MAX_LENGTH = 500
EVIDENCE_MAX_LENGTH = 1000
NAME_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 5000

PRIORITIES = ("high", "medium", "low")
VALIDATION_STATUSES = ("untested", "testing", "validated", "invalidated")

JOB_TYPES = ("functional", "social", "emotional")
IMPORTANCE_LEVELS = ("nice_to_have", "important", "critical")
SEVERITY_LEVELS = ("low", "medium", "high", "extreme")
PROFILE_TYPES = ("persona", "segment", "archetype", "icp")

PRODUCT_TYPES = ("product", "service", "feature")
EFFECTIVENESS_LEVELS = ("low", "medium", "high")

FIT_LINK_TYPES = ("jobs", "pains", "gains")

# Permission keys seeded by scripts/init_db.py
PERMISSIONS = {
    "admin.view": "Admin: view shell",
    "canvases.view": "Canvases: view",
    "canvases.edit": "Canvases: edit",
    "data.read": "Data API: read",
    "data.write": "Data API: write",
}
