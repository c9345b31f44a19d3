from typing import Tuple
from loguru import logger

from graph.state import LeadState, LeadRecord

ASSESSMENT = "assessment"
GET_STARTED = "get-started"

ASSESSMENT_SOURCE = "readiness-assessment"
ASSESSMENT_QUESTION_KEYS = (
    "current-content", "content-volume", "crm-usage",
    "lead-response", "time-spent", "budget",
)


def classify_with_reason(record: LeadRecord) -> Tuple[str, str]:
    """Return the form type and the signal that decided it. First match wins."""
    if record.get("source") == ASSESSMENT_SOURCE:
        return ASSESSMENT, "source"

    for field in ("assessmentVersion", "recommendation", "scorePercentage"):
        if record.get(field) is not None:
            return ASSESSMENT, field

    answers = record.get("answers") or {}
    if any(answers.get(key) for key in ASSESSMENT_QUESTION_KEYS):
        return ASSESSMENT, "answers"

    if record.get("assessmentAnswers"):
        return ASSESSMENT, "assessmentAnswers"

    return GET_STARTED, "default"


def classify_form(record: LeadRecord) -> str:
    try:
        return classify_with_reason(record)[0]
    except Exception as e:
        # Malformed records still get a form type
        logger.error(f"Form type detection failed, assuming {GET_STARTED}: {e}")
        return GET_STARTED


def classify(state: LeadState) -> LeadState:
    """Decide whether the submission came from the assessment or the get started form."""
    record = state.get("record", {})
    try:
        form_type, signal = classify_with_reason(record)
    except Exception as e:
        logger.error(f"Form type detection failed: {e}")
        form_type, signal = GET_STARTED, "error"

    state["form_type"] = form_type
    state["classified_by"] = signal
    logger.info(f"Detected form type {form_type} (signal: {signal})")
    return state
