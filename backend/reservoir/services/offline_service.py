"""
Service de synchronisation des postes de scan (mode offline-first).

Deux sens :
- Pull : snapshot complet des statuts pour alimenter le cache local du poste
- Push : rejeu de la file d'actions enregistrées hors-ligne

Stratégie de conflit : les statuts sont monotones (False → True uniquement),
donc toute action est idempotente.
- Statut déjà à True → "warning" avec synced=True (état voulu déjà atteint)
- Participant inconnu ou action invalide → "error" avec synced=False
  (l'action reste en file côté poste)
- Doublons intra-batch gérés en mémoire (autoflush=False)
"""

import logging
from datetime import datetime, timezone
from typing import List, Set, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from reservoir.models.attendee import Attendee
from reservoir.schemas.offline import (
    VALID_ACTION_TYPES,
    OfflineAttendee,
    OfflineAttendeeDetail,
    OfflineSyncResponse,
    ProcessQueueResponse,
    QueueAction,
    QueueActionResult,
)

logger = logging.getLogger(__name__)

ACTION_LABELS = {
    "checked_in": "Check-in",
    "lunch_distributed": "Lunch distribution",
    "kit_distributed": "Kit distribution",
}


def get_offline_snapshot(db: Session) -> OfflineSyncResponse:
    """
    Génère le snapshot de tous les participants (qr_code + trois statuts).
    Les statuts NULL éventuels sont renvoyés à False.
    """
    attendees = db.execute(select(Attendee).order_by(Attendee.name)).scalars().all()

    data = [
        OfflineAttendee(
            qr_code=a.qr_code,
            checked_in=bool(a.checked_in),
            lunch_distributed=bool(a.lunch_distributed),
            kit_distributed=bool(a.kit_distributed),
        )
        for a in attendees
    ]

    logger.info("Snapshot offline généré : %d participants", len(data))
    return OfflineSyncResponse(data=data, timestamp=datetime.now(timezone.utc))


def get_offline_attendee(db: Session, qr_code: str) -> OfflineAttendeeDetail:
    """Retourne identité + statuts d'un participant. Lève ValueError si introuvable."""
    attendee = db.execute(select(Attendee).where(Attendee.qr_code == qr_code)).scalar()
    if not attendee:
        raise ValueError("Participant introuvable.")

    return OfflineAttendeeDetail(
        qr_code=attendee.qr_code,
        name=attendee.name,
        email=attendee.email,
        phone=attendee.phone,
        checked_in=bool(attendee.checked_in),
        lunch_distributed=bool(attendee.lunch_distributed),
        kit_distributed=bool(attendee.kit_distributed),
    )


def process_queue(db: Session, actions: List[QueueAction]) -> ProcessQueueResponse:
    """
    Rejoue en batch les actions reçues depuis un poste, dans l'ordre du tableau.

    Pour chaque action :
    1. Vérifie qr_code et action_type (sinon "error", non synchronisée)
    2. Cherche le participant (sinon "error", non synchronisée)
    3. Statut déjà à True en base ou déjà appliqué dans CE batch → "warning", synchronisée
    4. Sinon passe le statut à True → "success", synchronisée

    Un résultat est produit par action, dans le même ordre, avec qr_code et
    action_type pour que le poste puisse le rapprocher de sa file.
    Toute la transaction est commitée en une seule fois.
    """
    results: List[QueueActionResult] = []

    # (qr_code, action_type) déjà appliqués dans CE batch
    # Nécessaire car autoflush=False → les UPDATE en attente ne sont pas visibles via SELECT
    applied_in_batch: Set[Tuple[str, str]] = set()

    for action in actions:
        qr_code = action.qr_code
        action_type = action.action_type

        # 1. Action mal formée
        if not qr_code or not action_type:
            results.append(QueueActionResult(
                qr_code=qr_code,
                action_type=action_type,
                status="error",
                message="Invalid action data",
                synced=False,
            ))
            continue

        if action_type not in VALID_ACTION_TYPES:
            results.append(QueueActionResult(
                qr_code=qr_code,
                action_type=action_type,
                status="error",
                message="Unknown action type",
                synced=False,
            ))
            continue

        # 2. Participant inconnu
        attendee = db.execute(select(Attendee).where(Attendee.qr_code == qr_code)).scalar()
        if not attendee:
            results.append(QueueActionResult(
                qr_code=qr_code,
                action_type=action_type,
                status="error",
                message="Attendee not found",
                synced=False,
            ))
            continue

        label = ACTION_LABELS[action_type]

        # 3. Déjà satisfait (idempotence)
        key = (qr_code, action_type)
        if getattr(attendee, action_type) or key in applied_in_batch:
            results.append(QueueActionResult(
                qr_code=qr_code,
                action_type=action_type,
                status="warning",
                message=f"{label} already recorded",
                synced=True,
            ))
            logger.debug("Action déjà satisfaite, ignorée : %s %s", action_type, qr_code)
            continue

        # 4. Nouvelle action → appliquer
        setattr(attendee, action_type, True)
        applied_in_batch.add(key)
        results.append(QueueActionResult(
            qr_code=qr_code,
            action_type=action_type,
            status="success",
            message=f"{label} synced",
            synced=True,
        ))

    db.commit()

    logger.info(
        "Rejeu file offline : %d reçues, %d appliquées, %d erreurs",
        len(actions),
        len(applied_in_batch),
        sum(1 for r in results if r.status == "error"),
    )

    return ProcessQueueResponse(results=results)
