"""
Modèles du poste de scan : tables SQLite locales et objets métier.

Deux tables, indépendantes du schéma serveur (LocalBase séparée) :
- attendees  : miroir des statuts, clé = qr_code
- sync_queue : file des actions faites hors-ligne, id auto-incrémenté (ordre FIFO)
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel
from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import declarative_base

LocalBase = declarative_base()

# Les trois statuts suivis ; chaque nom est à la fois la colonne et le type d'action
FLAGS = ("checked_in", "lunch_distributed", "kit_distributed")


class LocalAttendee(LocalBase):
    """Statuts d'un participant tels que connus du poste."""
    __tablename__ = "attendees"

    qr_code = Column(String(64), primary_key=True)
    checked_in = Column(Boolean, default=False, nullable=False)
    lunch_distributed = Column(Boolean, default=False, nullable=False)
    kit_distributed = Column(Boolean, default=False, nullable=False)
    last_updated = Column(DateTime(timezone=True), nullable=True)


class QueueEntry(LocalBase):
    """Action enregistrée localement, en attente d'acquittement serveur."""
    __tablename__ = "sync_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    qr_code = Column(String(64), nullable=False, index=True)
    action_type = Column(String(30), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)  # Horloge du poste, informatif
    synced = Column(Boolean, default=False, nullable=False, index=True)


class AttendeeSnapshot(BaseModel):
    """Statuts d'un participant dans le cache local."""
    code: str
    checked_in: bool = False
    lunch_distributed: bool = False
    kit_distributed: bool = False
    last_updated: Optional[datetime] = None

    def merged_with(self, other: "AttendeeSnapshot") -> "AttendeeSnapshot":
        """OU logique des statuts : un statut à True ne redescend jamais."""
        return self.model_copy(update={
            flag: getattr(self, flag) or getattr(other, flag) for flag in FLAGS
        })


class PulledAttendee(BaseModel):
    """Ligne du snapshot serveur ; les statuts absents ou NULL valent False."""
    qr_code: str
    checked_in: Optional[bool] = None
    lunch_distributed: Optional[bool] = None
    kit_distributed: Optional[bool] = None

    def to_snapshot(self) -> "AttendeeSnapshot":
        return AttendeeSnapshot(
            code=self.qr_code,
            **{flag: bool(getattr(self, flag)) for flag in FLAGS},
        )


class PullResponse(BaseModel):
    """Réponse de GET /offline/sync telle qu'acceptée par le poste."""
    status: str
    data: List[PulledAttendee]
    timestamp: Optional[datetime] = None


class SyncAction(BaseModel):
    """Entrée de la file de synchronisation."""
    id: int
    code: str
    action_type: str
    timestamp: datetime
    synced: bool = False


class SyncResult(BaseModel):
    """
    Résultat d'un pull ou d'un push.
    Les conditions attendues (hors-ligne, file vide, sync déjà en cours)
    sont signalées par `error`, jamais par une exception.
    """
    success: bool = False
    error: Optional[str] = None      # offline, in_progress, network, server_error, invalid_response
    count: int = 0
    message: str = ""
    details: List[Any] = []


class BackupResult(BaseModel):
    path: str
    timestamp: str
    compacted: int = 0
