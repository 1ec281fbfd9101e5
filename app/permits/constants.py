"""
Central constants for the permit workflow application.
"""
from __future__ import annotations

# Document categories, in the order summary views present them.
DOCUMENT_CATEGORIES = (
    "site_plan",
    "facility_plan",
    "egress_plan",
    "structural_plans",
    "commodities",
    "fire_protection",
    "special_inspection",
    "cover_letter",
)

DOCUMENT_STATUS_PENDING = "pending_review"
DOCUMENT_STATUS_APPROVED = "approved"
DOCUMENT_STATUS_REJECTED = "rejected"
DOCUMENT_STATUSES = (DOCUMENT_STATUS_PENDING, DOCUMENT_STATUS_APPROVED, DOCUMENT_STATUS_REJECTED)

PROJECT_STATUSES = (
    "not_started",
    "in_progress",
    "ready_for_submission",
    "under_review",
    "approved",
    "rejected",
)

STAKEHOLDER_ROLES = frozenset({
    "project_manager",
    "facility_manager",
    "engineer",
    "architect",
    "fire_safety_consultant",
    "building_owner",
    "contractor",
    "reviewer",
    "approver",
})

TASK_TYPES = ("provide_document", "review_document", "approve_document", "collaborate", "other")
TASK_STATUSES = ("pending", "in_progress", "completed")

# Commodity description form (IFC Chapter 32 classes)
COMMODITY_TYPES = frozenset({
    "paper", "wood", "textiles", "furniture", "plastic", "rubber",
    "electronics", "food", "metal", "glass", "other",
})
STORAGE_METHODS = frozenset({"pallets", "racks", "solid_pile", "shelves", "bins", "back_to_back"})
COMMODITY_CLASSIFICATIONS = frozenset({
    "class_i", "class_ii", "class_iii", "class_iv",
    "group_a_exposed", "group_a_unexposed", "mixed",
})


def category_label(category: str) -> str:
    """site_plan -> Site Plan"""
    return " ".join(w.capitalize() for w in (category or "").split("_"))
