"""
Router pour la synchronisation des postes de scan (mode offline-first).
Pull du snapshot des statuts et rejeu des actions enregistrées hors-ligne.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from reservoir.database import get_db
from reservoir.schemas.offline import (
    OfflineAttendeeDetail,
    OfflineSyncResponse,
    ProcessQueueRequest,
    ProcessQueueResponse,
)
from reservoir.services import offline_service

router = APIRouter(prefix="/api/offline", tags=["Synchronisation offline"])


@router.get(
    "/sync",
    response_model=OfflineSyncResponse,
    summary="Snapshot des statuts pour le cache local des postes",
)
def sync_snapshot(db: Session = Depends(get_db)):
    """
    Retourne qr_code + checked_in / lunch_distributed / kit_distributed
    pour tous les participants. Le poste remplace son cache avec ces valeurs
    (sans jamais repasser un statut local True à False).
    """
    return offline_service.get_offline_snapshot(db)


@router.get(
    "/attendee/{qr_code}",
    response_model=OfflineAttendeeDetail,
    summary="Identité et statuts d'un participant",
)
def get_attendee(qr_code: str, db: Session = Depends(get_db)):
    """Retourne 404 si le QR code ne correspond à aucun participant."""
    try:
        return offline_service.get_offline_attendee(db, qr_code)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post(
    "/process-queue",
    response_model=ProcessQueueResponse,
    summary="Rejouer la file d'actions hors-ligne d'un poste",
)
def process_queue(data: ProcessQueueRequest, db: Session = Depends(get_db)):
    """
    Reçoit les actions d'un poste dans l'ordre de sa file et les applique.

    Comportement :
    - Idempotent : une action déjà satisfaite renvoie "warning" avec synced=True
    - Participant inconnu / action invalide : "error" avec synced=False
    - Un résultat par action, dans le même ordre

    Retourne 400 si la liste d'actions est vide.
    """
    if not data.actions:
        raise HTTPException(status_code=400, detail="Aucune action fournie.")
    return offline_service.process_queue(db, data.actions)
