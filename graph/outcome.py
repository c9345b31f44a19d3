from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class Ok:
    """The contact reached the CRM."""
    remote_contact_id: Optional[str] = None
    status_code: int = 200


@dataclass(frozen=True)
class SoftFail:
    """The CRM was skipped or failed; the submission is still accepted."""
    reason: str
    status_code: int = 200


@dataclass(frozen=True)
class Invalid:
    """The submission was rejected before any remote call."""
    reason: str
    status_code: int = 400


Outcome = Union[Ok, SoftFail, Invalid]
