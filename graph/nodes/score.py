import math
from typing import List
from loguru import logger

from graph.state import LeadState, LeadRecord
from graph.nodes.classify import ASSESSMENT

HOT_THRESHOLD = 75
WARM_THRESHOLD = 50
DEFAULT_BASE = 50

PLAN_POINTS = {
    "custom": 20, "custom-enterprise": 20, "enterprise": 20,
    "complete-system": 15, "growth": 15,
    "content-engine": 10, "professional": 10,
}
BUSINESS_TYPE_POINTS = {
    "agency": 10, "business": 10, "saas": 10,
    "coach": 5, "podcaster": 5, "consultant": 5, "ecommerce": 5,
}
MONTHLY_LEADS_POINTS = {"100+": 20, "50-100": 15, "10-50": 10, "0-10": 5}
TEAM_SIZE_POINTS = {"10+": 15, "5-10": 10, "2-5": 5}

QUALIFICATION_STATUS = {"hot": "Hot Lead", "warm": "Warm Lead", "cold": "Cold Lead"}


def clamp_score(value: float) -> int:
    """Round half up and clamp to [0, 100]."""
    return max(0, min(100, int(math.floor(value + 0.5))))


def count_points(items: List[str], tiers) -> int:
    for minimum, points in tiers:
        if len(items) >= minimum:
            return points
    return 0


def assessment_base(record: LeadRecord) -> float:
    percentage = record.get("scorePercentage")
    if percentage is not None:
        return percentage
    total, maximum = record.get("totalScore"), record.get("maxPossibleScore")
    if total is not None and maximum:
        return total / maximum * 100
    return DEFAULT_BASE


def score_assessment(record: LeadRecord) -> int:
    answers = record.get("answers") or {}
    score = assessment_base(record)

    # High signal answers
    if answers.get("budget") in ("enterprise", "high"):
        score += 10
    if answers.get("timeline") == "immediate":
        score += 10
    if answers.get("decision-maker") == "yes":
        score += 10

    return clamp_score(score)


def score_get_started(record: LeadRecord) -> int:
    score = DEFAULT_BASE
    score += PLAN_POINTS.get(record.get("selectedPlan") or "", 0)
    score += BUSINESS_TYPE_POINTS.get(record.get("businessType") or "", 0)
    score += MONTHLY_LEADS_POINTS.get(record.get("monthlyLeads") or "", 0)
    score += TEAM_SIZE_POINTS.get(record.get("teamSize") or "", 0)

    score += count_points(record.get("contentGoals") or [], [(4, 15), (2, 10), (1, 5)])

    integrations = record.get("integrations") or []
    if "gohighlevel" in integrations:
        score += 10
    score += count_points(integrations, [(3, 10), (1, 5)])

    if len(record.get("currentTools") or []) > 3:
        score += 5

    return clamp_score(score)


def compute_score(record: LeadRecord, form_type: str) -> int:
    """Deterministic 0-100 lead score for a classified record."""
    if form_type == ASSESSMENT:
        return score_assessment(record)
    return score_get_started(record)


def lead_quality(score: int) -> str:
    if score >= HOT_THRESHOLD:
        return "hot"
    if score >= WARM_THRESHOLD:
        return "warm"
    return "cold"


def qualification_status(quality: str) -> str:
    return QUALIFICATION_STATUS.get(quality, QUALIFICATION_STATUS["cold"])


def score(state: LeadState) -> LeadState:
    """Score the lead from its own fields and bucket it."""
    record = state.get("record", {})
    form_type = state.get("form_type", "")
    logger.info(f"Starting scoring for lead: {record.get('email', 'unknown')}")

    lead_score = compute_score(record, form_type)
    state["lead_score"] = lead_score
    state["lead_quality"] = lead_quality(lead_score)

    logger.info(f"Final score: {lead_score} ({state['lead_quality']}) for {record.get('email')}")
    return state
