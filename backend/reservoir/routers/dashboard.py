"""
Router du tableau de bord : compteurs globaux.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from reservoir.database import get_db
from reservoir.schemas.distribution import DashboardStats
from reservoir.services import distribution_service

router = APIRouter(prefix="/api/dashboard", tags=["Tableau de bord"])


@router.get("/stats", response_model=DashboardStats, summary="Compteurs de l'événement")
def get_stats(db: Session = Depends(get_db)):
    """Total des participants et nombre de check-ins, repas et kits remis."""
    return distribution_service.get_dashboard_stats(db)
