from datetime import datetime, timezone
from typing import Dict, Any, List, Optional
from loguru import logger

from graph.outcome import Invalid
from graph.state import LeadState, LeadRecord, AssessmentAnswer
from tools.errors import ValidationError

REQUIRED_FIELDS = ["firstName", "lastName", "email"]
LIST_FIELDS = ["contentGoals", "currentTools", "integrations"]
TEXT_FIELDS = [
    "phone", "businessName", "businessType", "monthlyLeads", "teamSize",
    "biggestChallenge", "selectedPlan", "readinessLevel", "recommendation",
    "source", "assessmentVersion",
]
NUMBER_FIELDS = ["totalScore", "maxPossibleScore", "scorePercentage"]
# Derived server side; never trusted from the client
DERIVED_FIELDS = ["leadScore", "leadQuality", "formType", "submissionDate"]


def clean_text(value: Any) -> Optional[str]:
    """Trim a scalar to a string; blank or absent becomes None."""
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def clean_list(value: Any) -> List[str]:
    """Accept a list, a comma separated string, or nothing."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        items = [value]
    return [text for text in (clean_text(item) for item in items) if text]


def clean_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip().rstrip("%"))
    except ValueError:
        return None


def clean_answers(value: Any) -> Dict[str, str]:
    if not isinstance(value, dict):
        return {}
    answers = {}
    for key, answer in value.items():
        text = clean_text(answer)
        if text is not None:
            answers[str(key).strip()] = text
    return answers


def clean_assessment_answers(value: Any) -> List[AssessmentAnswer]:
    if not isinstance(value, list):
        return []
    cleaned: List[AssessmentAnswer] = []
    for item in value:
        if not isinstance(item, dict):
            continue
        cleaned.append({
            "questionId": clean_text(item.get("questionId")) or "",
            "category": clean_text(item.get("category")) or "",
            "question": clean_text(item.get("question")) or "",
            "answer": clean_text(item.get("answer")) or "",
            "score": clean_number(item.get("score")),
        })
    return cleaned


def normalize_payload(raw: Dict[str, Any], now: Optional[datetime] = None) -> LeadRecord:
    """
    Coerce a loose form body into a LeadRecord.

    Args:
        raw: Decoded JSON request body
        now: Submission time (defaults to the current UTC time)

    Returns:
        Canonical lead record

    Raises:
        ValidationError: if firstName, lastName or email is missing or blank
    """
    identity = {field: clean_text(raw.get(field)) for field in REQUIRED_FIELDS}
    missing = [field for field in REQUIRED_FIELDS if not identity[field]]
    if missing:
        raise ValidationError(missing)

    record: LeadRecord = {
        "firstName": identity["firstName"],
        "lastName": identity["lastName"],
        "email": identity["email"].lower(),
    }

    for field in TEXT_FIELDS:
        record[field] = clean_text(raw.get(field))
    for field in LIST_FIELDS:
        record[field] = clean_list(raw.get(field))
    for field in NUMBER_FIELDS:
        record[field] = clean_number(raw.get(field))

    # Legacy form versions
    if record["selectedPlan"] is None:
        record["selectedPlan"] = clean_text(raw.get("pricingPlan"))
    if record["scorePercentage"] is None:
        record["scorePercentage"] = clean_number(raw.get("score"))

    record["answers"] = clean_answers(raw.get("answers"))
    record["assessmentAnswers"] = clean_assessment_answers(raw.get("assessmentAnswers"))
    record["submissionDate"] = (now or datetime.now(timezone.utc)).isoformat()

    return record


def normalize(state: LeadState) -> LeadState:
    """Normalize and validate the incoming form payload."""
    raw = state.get("raw", {})
    logger.info(f"Starting normalization for lead: {raw.get('email', 'unknown')}")

    supplied = {field: raw[field] for field in DERIVED_FIELDS if field in raw}
    if supplied:
        logger.warning(f"Ignoring client supplied derived values: {supplied}")

    try:
        record = normalize_payload(raw)
    except ValidationError as e:
        logger.warning(f"Rejected submission: {e}")
        state.setdefault("errors", []).append(str(e))
        state["outcome"] = Invalid(str(e))
        return state

    state["record"] = record
    logger.info(f"Normalization completed for {record['email']}")
    return state
