from typing import List, Optional


class LeadSyncError(Exception):
    """Base class for lead intake failures."""


class ValidationError(LeadSyncError):
    """Raised when a submission is missing a required identity field."""

    def __init__(self, missing: List[str]):
        self.missing = missing
        super().__init__(f"Missing required fields: {', '.join(missing)}")


class RemoteConfigurationError(LeadSyncError):
    """Raised when CRM credentials are absent or still placeholders."""


class RemoteCallFailure(LeadSyncError):
    """Raised when a CRM call answers with a non-2xx status or cannot be made."""

    def __init__(self, operation: str, status: Optional[int] = None, body: str = ""):
        self.operation = operation
        self.status = status
        self.body = body
        detail = f"status {status}" if status is not None else "no response"
        super().__init__(f"GHL {operation} failed ({detail}): {body[:200]}")

    @property
    def already_exists(self) -> bool:
        """True when the remote rejected a create because the resource exists."""
        if self.status == 409:
            return True
        return self.status in (400, 422) and "already exist" in self.body.lower()


class EmailDeliveryFailure(LeadSyncError):
    """Raised when a notification email could not be sent."""
