"""
Schémas Pydantic pour les scans en ligne : check-in, repas, kit.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


class ScanRequest(BaseModel):
    """QR code lu par la caméra du poste."""
    qr_code: str = Field(alias="qrCode")

    model_config = {"populate_by_name": True}

    @field_validator("qr_code")
    @classmethod
    def qr_code_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Le QR code est obligatoire.")
        return v.strip()


class AttendeeSummary(BaseModel):
    name: str
    email: str

    model_config = {"from_attributes": True}


class ScanResponse(BaseModel):
    """Réponse d'un scan accepté."""
    status: str = "success"
    message: str
    attendee: AttendeeSummary


class AttendeeStatus(BaseModel):
    """Statut complet d'un participant (GET /api/checkin/{qr_code})."""
    name: str
    email: str
    checked_in: bool
    lunch_distributed: bool
    kit_distributed: bool
    phone: Optional[str] = None

    model_config = {"from_attributes": True}


class DashboardStats(BaseModel):
    """Compteurs du tableau de bord."""
    total: int
    checked_in_count: int
    lunch_distributed_count: int
    kit_distributed_count: int
