"""
Schémas Pydantic pour la synchronisation des postes de scan.

Endpoints :
- GET  /api/offline/sync           (serveur → poste : snapshot complet)
- POST /api/offline/process-queue  (poste → serveur : rejeu de la file offline)
- GET  /api/offline/attendee/{qr}  (consultation ponctuelle)
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator

# Types d'action acceptés par le serveur ; chaque type porte le nom de la colonne
# booléenne qu'il passe à True. Le poste ne met "checked_in" en file que si le
# check-in offline est activé (KIOSK_OFFLINE_CHECKIN).
VALID_ACTION_TYPES = {"checked_in", "lunch_distributed", "kit_distributed"}
MAX_BATCH_SIZE = 500


class OfflineAttendee(BaseModel):
    """Statuts minimaux d'un participant, suffisants pour valider un scan hors-ligne."""
    qr_code: str
    checked_in: bool = False
    lunch_distributed: bool = False
    kit_distributed: bool = False

    model_config = {"from_attributes": True}


class OfflineSyncResponse(BaseModel):
    """Snapshot complet téléchargé par le poste (pull)."""
    status: str = "success"
    data: List[OfflineAttendee]
    timestamp: datetime


class OfflineAttendeeDetail(OfflineAttendee):
    """Participant avec identité, pour l'affichage après un scan."""
    name: str
    email: str
    phone: Optional[str] = None


class QueueAction(BaseModel):
    """
    Une action enregistrée hors-ligne par un poste.
    Champs permissifs : une action mal formée produit une entrée "error"
    dans le rapport, pas un rejet de tout le batch.
    """
    qr_code: Optional[str] = None
    action_type: Optional[str] = None
    timestamp: Optional[str] = None  # Horodatage local du poste, informatif uniquement


class ProcessQueueRequest(BaseModel):
    """Corps de la requête de rejeu de la file offline."""
    actions: List[QueueAction]

    @field_validator("actions")
    @classmethod
    def actions_not_too_large(cls, v: List[QueueAction]) -> List[QueueAction]:
        if len(v) > MAX_BATCH_SIZE:
            raise ValueError(f"Batch trop grand : maximum {MAX_BATCH_SIZE} actions par requête.")
        return v


class QueueActionResult(BaseModel):
    """Résultat du traitement d'une action, dans l'ordre du batch reçu."""
    qr_code: Optional[str] = None
    action_type: Optional[str] = None
    status: str          # success, warning, error
    message: str
    synced: bool         # True = le poste peut retirer l'action de sa file


class ProcessQueueResponse(BaseModel):
    """Rapport de rejeu renvoyé au poste."""
    status: str = "completed"
    results: List[QueueActionResult]
