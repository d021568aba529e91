"""
Service métier des scans en ligne : check-in, distribution du repas et du kit.

Chaque scan accepté :
  1. passe le statut correspondant à True (jamais de retour à False)
  2. ajoute une notification email PENDING dans la même transaction
  3. commit

Lève ValueError si le participant est introuvable,
AlreadyProcessedError si le statut est déjà à True.
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from reservoir.models.attendee import Attendee
from reservoir.schemas.distribution import (
    AttendeeStatus,
    AttendeeSummary,
    DashboardStats,
    ScanResponse,
)
from reservoir.services.email_service import enqueue_notification

logger = logging.getLogger(__name__)

# item → (colonne, type d'email, libellé)
DISTRIBUTION_ITEMS = {
    "lunch": ("lunch_distributed", "lunch_distribution", "Lunch"),
    "kit": ("kit_distributed", "kit_distribution", "Kit"),
}


class AlreadyProcessedError(Exception):
    """Le statut demandé est déjà à True pour ce participant."""

    def __init__(self, status: str, message: str, attendee: Attendee):
        super().__init__(message)
        self.status = status
        self.attendee = attendee


def _get_attendee(db: Session, qr_code: str) -> Attendee:
    attendee = db.execute(select(Attendee).where(Attendee.qr_code == qr_code)).scalar()
    if not attendee:
        raise ValueError("Participant introuvable.")
    return attendee


def check_in(db: Session, qr_code: str) -> ScanResponse:
    """Enregistre l'arrivée d'un participant."""
    attendee = _get_attendee(db, qr_code)
    if attendee.checked_in:
        raise AlreadyProcessedError(
            "already_checked_in", "Attendee already checked in", attendee
        )

    attendee.checked_in = True
    enqueue_notification(db, attendee, "check_in")
    db.commit()
    db.refresh(attendee)

    logger.info("Check-in enregistré : %s", qr_code)
    return ScanResponse(
        message="Attendee checked in successfully",
        attendee=AttendeeSummary.model_validate(attendee),
    )


def distribute(db: Session, qr_code: str, item: str) -> ScanResponse:
    """
    Enregistre la remise du repas ("lunch") ou du kit ("kit").
    Lève ValueError si l'item est inconnu ou le participant introuvable.
    """
    if item not in DISTRIBUTION_ITEMS:
        raise ValueError(f"Type de distribution inconnu : {item}")
    column, email_type, label = DISTRIBUTION_ITEMS[item]

    attendee = _get_attendee(db, qr_code)
    if getattr(attendee, column):
        raise AlreadyProcessedError(
            "already_distributed", f"Attendee already collected {item}", attendee
        )

    setattr(attendee, column, True)
    enqueue_notification(db, attendee, email_type)
    db.commit()
    db.refresh(attendee)

    logger.info("Distribution %s enregistrée : %s", item, qr_code)
    return ScanResponse(
        message=f"{label} distributed successfully",
        attendee=AttendeeSummary.model_validate(attendee),
    )


def get_attendee_status(db: Session, qr_code: str) -> AttendeeStatus:
    """Statut complet d'un participant. Lève ValueError si introuvable."""
    return AttendeeStatus.model_validate(_get_attendee(db, qr_code))


def get_dashboard_stats(db: Session) -> DashboardStats:
    """Compteurs globaux (total + un compteur par statut)."""
    row = db.execute(
        select(
            func.count(Attendee.id),
            func.count().filter(Attendee.checked_in.is_(True)),
            func.count().filter(Attendee.lunch_distributed.is_(True)),
            func.count().filter(Attendee.kit_distributed.is_(True)),
        )
    ).one()

    return DashboardStats(
        total=row[0] or 0,
        checked_in_count=row[1] or 0,
        lunch_distributed_count=row[2] or 0,
        kit_distributed_count=row[3] or 0,
    )
