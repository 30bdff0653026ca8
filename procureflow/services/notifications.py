"""Notification service for in-app notifications and transactional email.

Handles:
- In-app notification rows shown in the user's inbox
- Transactional emails rendered from Jinja2 templates and sent over SMTP
"""

import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Iterable, Optional
from uuid import UUID

import aiosmtplib
from jinja2 import Environment
from sqlalchemy.orm import Session

from procureflow.core.config import Settings, get_settings
from procureflow.core.exceptions import DependencyFailure
from procureflow.db.models import Notification

logger = logging.getLogger(__name__)


# Email templates, keyed by template type
EMAIL_TEMPLATES: Dict[str, Dict[str, str]] = {
    "po_approval_request": {
        "subject": "[ProcureFlow] Purchase Order {{ po_number }} requires your approval",
        "body": """
A purchase order is waiting for your approval:

PO Number: {{ po_number }}
Amount: {{ amount }}
Contractor: {{ contractor_name }}
Raised By: {{ originator_name }}

Review it at: {{ link }}

---
ProcureFlow
        """,
    },
    "po_ceo_approval_request": {
        "subject": "[ProcureFlow] High-value PO {{ po_number }} requires CEO approval",
        "body": """
A high-value purchase order has been approved by the MD and needs your final approval:

PO Number: {{ po_number }}
Amount: {{ amount }}
Contractor: {{ contractor_name }}

Review it at: {{ link }}

---
ProcureFlow
        """,
    },
    "po_approved_contractor": {
        "subject": "Purchase Order {{ po_number }} from {{ organisation_name }}",
        "body": """
Dear {{ contractor_name }},

Purchase order {{ po_number }} for {{ amount }} has been approved.
{% if pdf_url %}The purchase order document is available at: {{ pdf_url }}{% endif %}

Please quote the PO number on your invoice.

{{ organisation_name }}
        """,
    },
    "po_approved_accounts": {
        "subject": "[ProcureFlow] PO {{ po_number }} approved",
        "body": """
Purchase order {{ po_number }} ({{ amount }}) has been approved and is ready for invoice matching.

Approved By: {{ approver_name }}

---
ProcureFlow
        """,
    },
    "po_approved_pm": {
        "subject": "[ProcureFlow] Your PO {{ po_number }} has been approved",
        "body": """
Your purchase order {{ po_number }} ({{ amount }}) has been approved and sent to {{ contractor_name }}.

View it at: {{ link }}

---
ProcureFlow
        """,
    },
    "po_rejected": {
        "subject": "[ProcureFlow] Your PO {{ po_number }} has been rejected",
        "body": """
Your purchase order {{ po_number }} ({{ amount }}) has been rejected.

Rejected By: {{ rejecter_name }}
Reason: {{ rejection_reason }}

---
ProcureFlow
        """,
    },
    "invoice_needs_approval": {
        "subject": "[ProcureFlow] Invoice {{ invoice_number }} requires your approval",
        "body": """
An invoice is waiting for your approval:

Invoice Number: {{ invoice_number }}
Amount: {{ amount }}

Review it at: {{ link }}

---
ProcureFlow
        """,
    },
    "invoice_approved_accounts": {
        "subject": "[ProcureFlow] Invoice {{ invoice_number }} approved for payment",
        "body": """
Invoice {{ invoice_number }} ({{ amount }}) has been approved and is ready to pay.

Approved By: {{ approver_name }}

---
ProcureFlow
        """,
    },
    "invoice_approved_pm": {
        "subject": "[ProcureFlow] Invoice {{ invoice_number }} approved",
        "body": """
Invoice {{ invoice_number }} ({{ amount }}) that you uploaded has been approved for payment.

---
ProcureFlow
        """,
    },
    "invoice_rejected": {
        "subject": "[ProcureFlow] Invoice {{ invoice_number }} rejected",
        "body": """
Invoice {{ invoice_number }} ({{ amount }}) has been rejected.

Rejected By: {{ rejecter_name }}
Reason: {{ rejection_reason }}

---
ProcureFlow
        """,
    },
    "delegation_expired": {
        "subject": "[ProcureFlow] Your approval delegation has ended",
        "body": """
Hello {{ delegate_name }},

Your approval delegation from {{ delegator_name }} ended on {{ ends_at }}.
You can no longer approve on their behalf.

---
ProcureFlow
        """,
    },
}

_jinja = Environment(autoescape=False, trim_blocks=True)


def render_email(template_type: str, context: Dict[str, Any]) -> tuple[str, str]:
    """Render the subject and body of an email template."""
    template = EMAIL_TEMPLATES.get(template_type)
    if not template:
        raise KeyError(f"No email template for type: {template_type}")
    subject = _jinja.from_string(template["subject"]).render(**context)
    body = _jinja.from_string(template["body"]).render(**context).strip()
    return subject, body


class NotificationService:
    """
    Writes in-app notifications.
    """

    def __init__(self, db: Session):
        self.db = db

    def notify(
        self,
        user_id: UUID,
        organisation_id: UUID,
        title: str,
        message: str,
        type: str,
        link: Optional[str] = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            organisation_id=organisation_id,
            title=title,
            message=message,
            type=type,
            link=link,
        )
        self.db.add(notification)
        self.db.flush()
        return notification


class EmailService:
    """
    Sends transactional emails over SMTP.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    async def send_email(self, template_type: str, payload: Dict[str, Any]) -> bool:
        """
        Render and deliver an email.

        Args:
            template_type: Key into ``EMAIL_TEMPLATES``
            payload: ``{"to": [addresses], "context": {...}}``

        Returns:
            True if delivered, False if there was nothing to send

        Raises:
            DependencyFailure: If rendering or SMTP delivery fails
        """
        recipients = [address for address in payload.get("to") or [] if address]
        if not recipients:
            logger.info(f"No recipients for {template_type} email, skipping")
            return False

        try:
            subject, body = render_email(template_type, payload.get("context") or {})
        except KeyError as e:
            raise DependencyFailure(str(e)) from e

        if not self.settings.smtp_host:
            logger.warning("SMTP not configured, skipping email delivery")
            return False

        try:
            await self._deliver(recipients, subject, body)
        except (aiosmtplib.SMTPException, OSError) as e:
            raise DependencyFailure(f"SMTP delivery failed: {e}") from e

        logger.info(f"Sent {template_type} email to {len(recipients)} recipient(s)")
        return True

    async def _deliver(self, recipients: Iterable[str], subject: str, body: str) -> None:
        msg = MIMEMultipart()
        msg["From"] = f"{self.settings.smtp_from_name} <{self.settings.smtp_from_email}>"
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain"))

        await aiosmtplib.send(
            msg,
            hostname=self.settings.smtp_host,
            port=self.settings.smtp_port,
            username=self.settings.smtp_user,
            password=self.settings.smtp_password,
            start_tls=self.settings.smtp_use_tls,
        )
