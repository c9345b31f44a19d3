from typing import TypedDict, Optional, List, Dict, Any

from tools.field_catalog import RemoteField


class AssessmentAnswer(TypedDict, total=False):
    questionId: str
    category: str
    question: str
    answer: str
    score: Optional[float]


class LeadRecord(TypedDict, total=False):
    """Canonical form submission, rebuilt for every request."""
    # Identity
    firstName: str
    lastName: str
    email: str
    phone: Optional[str]
    # Business profile
    businessName: Optional[str]
    businessType: Optional[str]
    contentGoals: List[str]
    integrations: List[str]
    # Get started form
    monthlyLeads: Optional[str]
    teamSize: Optional[str]
    currentTools: List[str]
    biggestChallenge: Optional[str]
    selectedPlan: Optional[str]
    # Assessment form
    answers: Dict[str, str]
    assessmentAnswers: List[AssessmentAnswer]
    totalScore: Optional[float]
    maxPossibleScore: Optional[float]
    scorePercentage: Optional[float]
    readinessLevel: Optional[str]
    recommendation: Optional[str]
    # Classifier signals
    source: Optional[str]
    assessmentVersion: Optional[str]
    # Server side only
    submissionDate: str


class MappedField(TypedDict):
    id: str
    field_value: str


class LeadState(TypedDict, total=False):
    """State shape for the lead intake workflow."""
    raw: Dict[str, Any]                    # original request body
    mapping_version: str                   # "v1" | "v2"
    record: LeadRecord
    form_type: str                         # "assessment" | "get-started"
    classified_by: str                     # signal that decided the form type
    lead_score: int
    lead_quality: str                      # "hot" | "warm" | "cold"
    catalog: Dict[str, RemoteField]        # field_key -> remote field
    custom_fields: List[MappedField]
    unmapped_fields: List[str]             # diagnostics for fields with no remote ID
    tags: List[str]
    crm_contact_id: Optional[str]
    crm_synced: bool
    notifications: List[str]               # Resend message ids
    errors: List[str]
    outcome: Any                           # graph.outcome.Ok | SoftFail | Invalid
