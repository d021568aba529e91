"""
Service de notification par email (confirmations de check-in, repas et kit).

Le flux est découplé du scan :
  1. enqueue_notification() ajoute une ligne PENDING dans la transaction du scan
  2. deliver_pending_emails() (job planifié) envoie via SMTP et gère les retries

Un échec SMTP ne fait donc jamais échouer un scan.
"""

import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from reservoir.config import settings
from reservoir.models.attendee import Attendee
from reservoir.models.email import Email

logger = logging.getLogger(__name__)

EMAIL_SUBJECTS = {
    "check_in": "Event Reservoir: Check-in confirmed",
    "lunch_distribution": "Event Reservoir: Lunch collected",
    "kit_distribution": "Event Reservoir: Kit collected",
}


class DeliveryReport(BaseModel):
    """Bilan d'un passage du job d'envoi."""
    sent_count: int = 0
    failed_count: int = 0
    abandoned_count: int = 0
    errors: List[str] = []


def enqueue_notification(db: Session, attendee: Attendee, email_type: str) -> Email:
    """
    Ajoute une notification PENDING pour ce participant.
    Pas de commit ici : la ligne est persistée avec la transaction de l'appelant.
    """
    if email_type not in EMAIL_SUBJECTS:
        raise ValueError(f"Type d'email inconnu : {email_type}")

    email = Email(attendee_id=attendee.id, email_type=email_type, status="pending", attempts=0)
    db.add(email)
    return email


def send_notification_email(
    to_email: str,
    attendee_name: str,
    email_type: str,
    timestamp: datetime,
) -> None:
    """
    Envoie un email HTML de confirmation.
    Lève une exception en cas d'échec SMTP.
    """
    msg = MIMEMultipart("alternative")
    msg["From"] = settings.SMTP_FROM
    msg["To"] = to_email
    msg["Subject"] = EMAIL_SUBJECTS[email_type]

    what = {
        "check_in": "You have been checked in",
        "lunch_distribution": "Your lunch has been handed out",
        "kit_distribution": "Your event kit has been handed out",
    }[email_type]

    html_content = f"""
    <html>
      <body style="font-family: Arial, sans-serif; color: #333; max-width: 600px; margin: auto;">
        <h2 style="color: #1a73e8;">Event Reservoir</h2>
        <p>Hello {attendee_name},</p>
        <p>{what} on <strong>{timestamp.strftime('%d/%m/%Y %H:%M')}</strong>.</p>
        <hr style="border: none; border-top: 1px solid #eee;" />
        <p style="font-size: 12px; color: #888;">
          This message was generated automatically. Please do not reply.
        </p>
      </body>
    </html>
    """
    msg.attach(MIMEText(html_content, "html", "utf-8"))

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as server:
        if settings.SMTP_USE_TLS:
            server.starttls()
        if settings.SMTP_USERNAME:
            server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.send_message(msg)

    logger.info("Email %s envoyé à %s", email_type, to_email)


def deliver_pending_emails(db: Session, limit: Optional[int] = None) -> DeliveryReport:
    """
    Envoie les notifications PENDING, les plus anciennes d'abord.

    Règles :
    - Succès → status=sent, sent_at=now
    - Échec → attempts+1, error_message conservé ; la ligne reste PENDING
      tant que attempts < EMAIL_MAX_ATTEMPTS, sinon passe en FAILED
    Commit unique à la fin du passage.
    """
    limit = limit or settings.EMAIL_BATCH_SIZE
    report = DeliveryReport()

    rows = db.execute(
        select(Email, Attendee)
        .join(Attendee, Attendee.id == Email.attendee_id)
        .where(Email.status == "pending")
        .order_by(Email.created_at, Email.id)
        .limit(limit)
    ).all()

    for email, attendee in rows:
        try:
            send_notification_email(
                to_email=attendee.email,
                attendee_name=attendee.name,
                email_type=email.email_type,
                timestamp=email.created_at or datetime.now(timezone.utc),
            )
            email.status = "sent"
            email.sent_at = datetime.now(timezone.utc)
            email.error_message = None
            report.sent_count += 1
        except Exception as exc:
            email.attempts = (email.attempts or 0) + 1
            email.error_message = str(exc)
            error_msg = f"Erreur envoi email {attendee.email} : {exc}"
            report.errors.append(error_msg)
            logger.error(error_msg)
            if email.attempts >= settings.EMAIL_MAX_ATTEMPTS:
                email.status = "failed"
                report.abandoned_count += 1
            else:
                report.failed_count += 1

    db.commit()
    return report
