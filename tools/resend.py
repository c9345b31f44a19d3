import httpx
import os
from typing import Dict, Any, List, Optional
from loguru import logger

from tools.errors import EmailDeliveryFailure

RESEND_ENDPOINT = "https://api.resend.com/emails"
DEFAULT_SENDER = "TrueFlow AI <onboarding@resend.dev>"


def _format_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


class EmailNotifier:
    """Resend integration for lead notification emails to the sales inbox."""

    def __init__(self, api_key: Optional[str] = None, sender: Optional[str] = None,
                 recipients: Optional[List[str]] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 10):
        self.api_key = api_key if api_key is not None else os.getenv("RESEND_API_KEY")
        self.sender = sender or os.getenv("LEAD_NOTIFICATION_SENDER", DEFAULT_SENDER)
        if recipients is None:
            raw = os.getenv("LEAD_NOTIFICATION_RECIPIENTS", "")
            recipients = [r.strip() for r in raw.split(",") if r.strip()]
        self.recipients = recipients
        self.transport = transport
        self.timeout = timeout

        if not self.is_configured():
            logger.warning("Resend not configured, lead emails will be logged only")

    def is_configured(self) -> bool:
        return bool(self.api_key) and "your_" not in self.api_key and bool(self.recipients)

    async def send(self, subject: str, text: str) -> Optional[str]:
        """
        Send a plain-text email to the configured recipients.

        Args:
            subject: Email subject line
            text: Plain-text body

        Returns:
            Resend message ID
        """
        if not self.is_configured():
            raise EmailDeliveryFailure("Resend API key or recipients not configured")

        payload = {
            "from": self.sender,
            "to": self.recipients,
            "subject": subject,
            "text": text,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    RESEND_ENDPOINT,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"}
                )
        except httpx.HTTPError as e:
            raise EmailDeliveryFailure(f"Resend request error: {e}") from e

        if response.status_code not in (200, 202):
            raise EmailDeliveryFailure(
                f"Resend rejected email (status {response.status_code}): {response.text[:200]}"
            )

        try:
            data = response.json()
        except ValueError:
            logger.warning(f"Resend accepted email but replied with non-JSON body: {response.text[:200]}")
            return None
        message_id = data.get("id") if isinstance(data, dict) else None
        logger.info(f"Notification email sent: {message_id}")
        return message_id

    async def send_lead_notification(self, record: Dict[str, Any], form_type: str,
                                     score: int, quality: str, crm_synced: bool) -> Optional[str]:
        """Send the new-lead email for a full form submission."""
        message = self._build_lead_message(record, form_type, score, quality, crm_synced)
        return await self.send(message["subject"], message["text"])

    async def send_partial_lead_notification(self, contact: Dict[str, Any]) -> Optional[str]:
        """Send the email for a visitor who left contact details but has not finished the form."""
        message = self._build_partial_message(contact)
        return await self.send(message["subject"], message["text"])

    def _build_lead_message(self, record: Dict[str, Any], form_type: str, score: int,
                            quality: str, crm_synced: bool) -> Dict[str, str]:
        """Build subject and body for a lead notification."""
        name = f"{record.get('firstName', '')} {record.get('lastName', '')}".strip()

        if form_type == "assessment":
            subject = f"New Assessment Lead: {name} ({quality.upper()}, score {score})"
            rows = [
                ("Score Percentage", record.get("scorePercentage")),
                ("Readiness Level", record.get("readinessLevel")),
                ("Recommendation", record.get("recommendation")),
            ]
            answers = record.get("answers") or {}
            rows.extend((f"Answer: {key}", value) for key, value in answers.items())
        else:
            subject = f"New Get Started Lead: {name} ({quality.upper()}, score {score})"
            rows = [
                ("Business Type", record.get("businessType")),
                ("Selected Plan", record.get("selectedPlan")),
                ("Content Goals", record.get("contentGoals")),
                ("Integrations", record.get("integrations")),
                ("Monthly Leads", record.get("monthlyLeads")),
                ("Team Size", record.get("teamSize")),
                ("Current Tools", record.get("currentTools")),
                ("Biggest Challenge", record.get("biggestChallenge")),
            ]

        header = [
            ("Name", name),
            ("Email", record.get("email")),
            ("Phone", record.get("phone")),
            ("Business", record.get("businessName")),
            ("Lead Score", f"{score}/100 ({quality})"),
            ("Submitted", record.get("submissionDate")),
            ("CRM", "synced" if crm_synced else "NOT synced, enter manually"),
        ]

        lines = [f"{label}: {_format_value(value)}" for label, value in header + rows
                 if value not in (None, "", [], {})]
        return {"subject": subject, "text": "\n".join(lines)}

    def _build_partial_message(self, contact: Dict[str, Any]) -> Dict[str, str]:
        name = f"{contact.get('firstName') or ''} {contact.get('lastName') or ''}".strip() or "Unknown"
        text = "\n".join([
            "Partial lead captured (contact info only)",
            f"Name: {name}",
            f"Email: {contact.get('email')}",
            f"Phone: {contact.get('phone')}",
            f"Timestamp: {contact.get('timestamp') or 'n/a'}",
            "Source: get-started-form (partial)",
            "",
            "The visitor has not finished the form yet. Wait 24 hours before following up.",
        ])
        return {"subject": f"New Partial Lead Captured: {name}", "text": text}


# Global email notifier instance
email_notifier = EmailNotifier()
