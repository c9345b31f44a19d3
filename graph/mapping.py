import json
import math
import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from loguru import logger

from graph.nodes.classify import ASSESSMENT, GET_STARTED
from graph.state import LeadRecord, MappedField
from tools.field_catalog import FieldDefinition, RemoteField

BOTH = (ASSESSMENT, GET_STARTED)

DEFAULT_VERSION = "v2"
MAX_JSON_LENGTH = 5000

BUSINESS_TYPE_LABELS = {
    "creator": "Content Creator",
    "podcaster": "Podcast Host",
    "business": "Business Owner",
    "coach": "Coach or Consultant",
    "agency": "Marketing Agency",
    "other": "Other Professional",
}

PLAN_LABELS = {
    "content-engine": "Content Engine",
    "complete-system": "Complete System",
    "custom": "Custom Enterprise",
    "custom_enterprise": "Custom Enterprise",
    "custom-enterprise": "Custom Enterprise",
    "not-sure": "Not Sure Yet",
}

INTEGRATION_LABELS = {
    "gohighlevel": "GoHighLevel",
    "mailchimp": "Mailchimp",
    "convertkit": "ConvertKit",
    "hubspot": "HubSpot",
    "activecampaign": "ActiveCampaign",
    "zapier": "Zapier",
}

CURRENT_CONTENT_LABELS = {
    "manual": "Manually write everything",
    "outsource": "Outsource to freelancers/agencies",
    "team": "Have an in-house content team",
    "mixed": "Mix of manual and automated tools",
}

CONTENT_VOLUME_LABELS = {
    "minimal": "1-5 pieces",
    "moderate": "6-20 pieces",
    "high": "21-50 pieces",
    "very-high": "50+ pieces",
}

CRM_USAGE_LABELS = {
    "spreadsheets": "Spreadsheets or manual tracking",
    "basic-crm": "Basic CRM system",
    "advanced-crm": "Advanced CRM with automation",
    "integrated": "Fully integrated systems",
}

LEAD_RESPONSE_LABELS = {
    "days": "Within a few days",
    "hours": "Within 24 hours",
    "quick": "Within a few hours",
    "instant": "Almost instantly",
}

TIME_SPENT_LABELS = {
    "minimal": "Less than 5 hours",
    "moderate": "5-15 hours",
    "high": "15-30 hours",
    "very-high": "More than 30 hours",
}

BUDGET_LABELS = {
    "low": "Less than $500",
    "moderate": "$500 - $2,000",
    "high": "$2,000 - $5,000",
    "enterprise": "More than $5,000",
}

QUALITY_LABELS = {"hot": "Hot", "warm": "Warm", "cold": "Cold"}
QUALIFICATION_LABELS = {"hot": "Hot Lead", "warm": "Warm Lead", "cold": "Cold Lead"}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def is_blank(value: Any) -> bool:
    """True for the values the mapper never sends: None, empty strings and empty containers."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def to_text(value: Any, labels: Optional[Dict[str, str]] = None) -> Optional[str]:
    return str(value).strip()


def to_joined(value: Any, labels: Optional[Dict[str, str]] = None) -> Optional[str]:
    items = value if isinstance(value, (list, tuple)) else [value]
    labels = labels or {}
    parts = [labels.get(str(item).strip(), str(item).strip()) for item in items if not is_blank(item)]
    return ", ".join(parts) or None


def to_label(value: Any, labels: Optional[Dict[str, str]] = None) -> Optional[str]:
    text = str(value).strip()
    return (labels or {}).get(text, text)


def to_integer(value: Any, labels: Optional[Dict[str, str]] = None) -> Optional[str]:
    try:
        return str(round_half_up(float(value)))
    except (TypeError, ValueError):
        logger.warning(f"Dropping non numeric value for integer field: {value!r}")
        return None


def _dump(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def to_json(value: Any, labels: Optional[Dict[str, str]] = None) -> Optional[str]:
    """
    Serialize compactly, staying valid JSON within MAX_JSON_LENGTH.

    Oversized lists and objects lose trailing entries. If a single entry is
    still too large, the serialized text is kept as a JSON string prefix.
    """
    text = _dump(value)
    if len(text) <= MAX_JSON_LENGTH:
        return text

    logger.warning(f"JSON value of {len(text)} chars exceeds {MAX_JSON_LENGTH}, truncating")
    if isinstance(value, (list, dict)):
        items = list(value.items()) if isinstance(value, dict) else list(value)
        while len(items) > 1:
            items.pop()
            candidate = _dump(dict(items) if isinstance(value, dict) else items)
            if len(candidate) <= MAX_JSON_LENGTH:
                return candidate

    prefix = text[:MAX_JSON_LENGTH]
    candidate = _dump(prefix)
    while len(candidate) > MAX_JSON_LENGTH:
        prefix = prefix[:len(prefix) - (len(candidate) - MAX_JSON_LENGTH)]
        candidate = _dump(prefix)
    return candidate


TRANSFORMS: Dict[str, Callable[[Any, Optional[Dict[str, str]]], Optional[str]]] = {
    "text": to_text,
    "join": to_joined,
    "label": to_label,
    "integer": to_integer,
    "json": to_json,
    "quality_label": lambda value, labels=None: to_label(value, QUALITY_LABELS),
    "qualification_status": lambda value, labels=None: to_label(value, QUALIFICATION_LABELS),
}


@dataclass(frozen=True)
class FieldRule:
    """
    One row of the mapping table.

    source is a record attribute (``businessType``), an answer key
    (``answers.budget``), or a derived value (``leadScore``, ``leadQuality``,
    ``formType``, ``leadSource``).
    """
    source: str
    field_key: str
    name: str
    transform: str = "text"
    data_type: str = "TEXT"
    form_types: Tuple[str, ...] = BOTH
    labels: Optional[Dict[str, str]] = None

    @property
    def definition(self) -> FieldDefinition:
        return FieldDefinition(field_key=self.field_key, name=self.name, data_type=self.data_type)

    def applies_to(self, form_type: str) -> bool:
        return form_type in self.form_types

    def extract(self, context: Dict[str, Any]) -> Any:
        if self.source.startswith("answers."):
            return (context.get("answers") or {}).get(self.source[len("answers."):])
        return context.get(self.source)

    def render(self, context: Dict[str, Any]) -> Optional[str]:
        value = self.extract(context)
        if is_blank(value):
            return None
        rendered = TRANSFORMS[self.transform](value, self.labels)
        return None if is_blank(rendered) else rendered


V1_RULES: List[FieldRule] = [
    FieldRule("formType", "form_type", "Form Type"),
    FieldRule("submissionDate", "submission_date", "Submission Date"),
    FieldRule("leadSource", "lead_source", "Lead Source"),
    FieldRule("businessName", "business_name", "Business Name"),
    FieldRule("businessType", "business_type", "Business Type", "label", labels=BUSINESS_TYPE_LABELS),
    FieldRule("contentGoals", "content_goals", "Content Goals", "join", "LARGE_TEXT"),
    FieldRule("monthlyLeads", "monthly_leads", "Monthly Leads", form_types=(GET_STARTED,)),
    FieldRule("teamSize", "team_size", "Team Size", form_types=(GET_STARTED,)),
    FieldRule("currentTools", "current_tools", "Current Tools", "join", "LARGE_TEXT", (GET_STARTED,)),
    FieldRule("biggestChallenge", "biggest_challenge", "Biggest Challenge", data_type="LARGE_TEXT",
              form_types=(GET_STARTED,)),
    FieldRule("selectedPlan", "selected_plan", "Selected Plan", "label", form_types=(GET_STARTED,),
              labels=PLAN_LABELS),
    FieldRule("scorePercentage", "assessment_score", "Assessment Score", "integer", "NUMERICAL", (ASSESSMENT,)),
    FieldRule("recommendation", "recommended_plan", "Recommended Plan", form_types=(ASSESSMENT,)),
    FieldRule("leadScore", "lead_quality_score", "Lead Quality Score", "integer", "NUMERICAL"),
    FieldRule("leadQuality", "qualification_status", "Qualification Status", "qualification_status"),
    FieldRule("answers", "assessment_answers", "Assessment Answers", "json", "LARGE_TEXT", (ASSESSMENT,)),
    FieldRule("answers.budget", "budget_range", "Budget Range", "label", form_types=(ASSESSMENT,),
              labels=BUDGET_LABELS),
    FieldRule("answers.timeline", "timeline", "Timeline", form_types=(ASSESSMENT,)),
    FieldRule("answers.decision-maker", "decision_maker", "Decision Maker", form_types=(ASSESSMENT,)),
]

V2_RULES: List[FieldRule] = [
    # Business profile
    FieldRule("businessName", "trueflow_business_name", "Business Name"),
    FieldRule("businessType", "trueflow_business_type", "Business Type", "label", labels=BUSINESS_TYPE_LABELS),
    FieldRule("contentGoals", "trueflow_content_goals", "What are your goals?", "join", "LARGE_TEXT"),
    FieldRule("integrations", "trueflow_integration_preferences", "Integration Preferences", "join",
              labels=INTEGRATION_LABELS),
    # Get started form
    FieldRule("selectedPlan", "trueflow_selected_plan", "Selected Plan", "label", form_types=(GET_STARTED,),
              labels=PLAN_LABELS),
    FieldRule("monthlyLeads", "trueflow_monthly_leads", "Monthly Leads", form_types=(GET_STARTED,)),
    FieldRule("teamSize", "trueflow_team_size", "Team Size", form_types=(GET_STARTED,)),
    FieldRule("currentTools", "trueflow_current_tools", "Current Tools", "join", "LARGE_TEXT", (GET_STARTED,)),
    FieldRule("biggestChallenge", "trueflow_biggest_challenge", "Biggest Challenge", data_type="LARGE_TEXT",
              form_types=(GET_STARTED,)),
    # Assessment form
    FieldRule("answers.current-content", "trueflow_current_content", "Current Content Creation", "label",
              form_types=(ASSESSMENT,), labels=CURRENT_CONTENT_LABELS),
    FieldRule("answers.content-volume", "trueflow_content_volume", "Content Volume", "label",
              form_types=(ASSESSMENT,), labels=CONTENT_VOLUME_LABELS),
    FieldRule("answers.crm-usage", "trueflow_crm_usage", "CRM Usage", "label",
              form_types=(ASSESSMENT,), labels=CRM_USAGE_LABELS),
    FieldRule("answers.lead-response", "trueflow_lead_response", "Lead Response Time", "label",
              form_types=(ASSESSMENT,), labels=LEAD_RESPONSE_LABELS),
    FieldRule("answers.time-spent", "trueflow_time_spent", "Time on Repetitive Tasks", "label",
              form_types=(ASSESSMENT,), labels=TIME_SPENT_LABELS),
    FieldRule("answers.budget", "trueflow_budget",
              "Current revenue range? (We don’t need exact numbers—just a ballpark.)", "label",
              form_types=(ASSESSMENT,), labels=BUDGET_LABELS),
    FieldRule("scorePercentage", "trueflow_score_percentage", "Score Percentage", "integer", "NUMERICAL",
              (ASSESSMENT,)),
    FieldRule("totalScore", "trueflow_total_score", "Total Score", "integer", "NUMERICAL", (ASSESSMENT,)),
    FieldRule("maxPossibleScore", "trueflow_max_score", "Max Possible Score", "integer", "NUMERICAL",
              (ASSESSMENT,)),
    FieldRule("readinessLevel", "trueflow_readiness_level", "Readiness Level", form_types=(ASSESSMENT,)),
    FieldRule("recommendation", "trueflow_recommendation", "Recommendation", form_types=(ASSESSMENT,)),
    FieldRule("assessmentAnswers", "trueflow_assessment_answers", "Assessment Answers", "json", "LARGE_TEXT",
              (ASSESSMENT,)),
    FieldRule("answers", "trueflow_raw_answers", "Raw Answers", "json", "LARGE_TEXT", (ASSESSMENT,)),
    FieldRule("assessmentVersion", "trueflow_assessment_version", "Assessment Version", form_types=(ASSESSMENT,)),
    # Scoring and metadata
    FieldRule("leadScore", "trueflow_lead_score", "Lead Score", "integer", "NUMERICAL"),
    FieldRule("leadQuality", "trueflow_lead_quality", "Lead Quality", "quality_label"),
    FieldRule("formType", "trueflow_form_type", "Form Type"),
    FieldRule("submissionDate", "trueflow_submission_date", "Submission Date"),
    FieldRule("leadSource", "trueflow_source", "Lead Source"),
]

MAPPING_TABLES: Dict[str, List[FieldRule]] = {
    "v1": V1_RULES,
    "v2": V2_RULES,
}


def resolve_version(requested: Optional[str] = None) -> str:
    """Pick the mapping table for a request, falling back to GHL_MAPPING_VERSION then v2."""
    default = os.getenv("GHL_MAPPING_VERSION", DEFAULT_VERSION)
    if default not in MAPPING_TABLES:
        logger.warning(f"Unknown GHL_MAPPING_VERSION {default!r}, using {DEFAULT_VERSION}")
        default = DEFAULT_VERSION
    if not requested:
        return default
    if requested not in MAPPING_TABLES:
        logger.warning(f"Unknown mapping version {requested!r}, using {default}")
        return default
    return requested


def rules_for(version: str) -> List[FieldRule]:
    return MAPPING_TABLES[resolve_version(version)]


def required_fields(version: str) -> List[FieldDefinition]:
    """The custom field catalog a mapping version needs to exist remotely."""
    return [rule.definition for rule in rules_for(version)]


def build_context(record: LeadRecord, form_type: str, lead_score: Optional[int] = None,
                  lead_quality: Optional[str] = None) -> Dict[str, Any]:
    context: Dict[str, Any] = dict(record)
    context.update({
        "formType": form_type,
        "leadScore": lead_score,
        "leadQuality": lead_quality,
        "leadSource": os.getenv("LEAD_SOURCE_LABEL", "TrueFlow Landing Page"),
    })
    return context


def map_fields(record: LeadRecord, catalog: Dict[str, RemoteField], form_type: str,
               version: str = DEFAULT_VERSION, lead_score: Optional[int] = None,
               lead_quality: Optional[str] = None) -> Tuple[List[MappedField], List[str]]:
    """
    Project a lead record onto resolved remote custom fields.

    Args:
        record: Normalized lead record
        catalog: field_key -> RemoteField from the schema resolver
        form_type: "assessment" or "get-started"
        version: Mapping table version
        lead_score: Server computed score
        lead_quality: Server computed quality bucket

    Returns:
        (mapped fields as {id, field_value}, diagnostics naming fields with a value but no remote ID)
    """
    context = build_context(record, form_type, lead_score, lead_quality)
    mapped: List[MappedField] = []
    diagnostics: List[str] = []

    for rule in rules_for(version):
        if not rule.applies_to(form_type):
            continue
        value = rule.render(context)
        if value is None:
            continue
        remote = catalog.get(rule.field_key)
        if remote is None:
            diagnostics.append(f"{rule.field_key}: no remote field id")
            continue
        mapped.append({"id": remote.id, "field_value": value})

    return mapped, diagnostics
