"""
Routers pour les scans en ligne : distribution du repas et du kit, check-in.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from reservoir.database import get_db
from reservoir.schemas.distribution import AttendeeStatus, ScanRequest, ScanResponse
from reservoir.services import distribution_service
from reservoir.services.distribution_service import AlreadyProcessedError

# POST /api/distribute/{lunch|kit}
router = APIRouter(prefix="/api/distribute", tags=["Distribution"])

# POST /api/checkin, GET /api/checkin/{qr_code}
checkin_router = APIRouter(prefix="/api/checkin", tags=["Check-in"])


def _already_processed_response(exc: AlreadyProcessedError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "status": exc.status,
            "error": str(exc),
            "attendee": {"name": exc.attendee.name, "email": exc.attendee.email},
        },
    )


def _not_found_response(exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"status": "error", "error": str(exc)})


@router.post(
    "/{item}",
    response_model=ScanResponse,
    summary="Remettre le repas ou le kit à un participant",
)
def distribute(item: str, data: ScanRequest, db: Session = Depends(get_db)):
    """
    item vaut "lunch" ou "kit".

    Retourne 404 si le participant est introuvable (ou l'item inconnu),
    400 avec status="already_distributed" si la remise est déjà enregistrée.
    """
    try:
        return distribution_service.distribute(db, data.qr_code, item)
    except AlreadyProcessedError as e:
        return _already_processed_response(e)
    except ValueError as e:
        return _not_found_response(e)


@checkin_router.post(
    "",
    response_model=ScanResponse,
    summary="Enregistrer l'arrivée d'un participant",
)
def check_in(data: ScanRequest, db: Session = Depends(get_db)):
    """
    Retourne 404 si le participant est introuvable,
    400 avec status="already_checked_in" s'il est déjà enregistré.
    """
    try:
        return distribution_service.check_in(db, data.qr_code)
    except AlreadyProcessedError as e:
        return _already_processed_response(e)
    except ValueError as e:
        return _not_found_response(e)


@checkin_router.get(
    "/{qr_code}",
    response_model=AttendeeStatus,
    summary="Statut complet d'un participant",
)
def get_status(qr_code: str, db: Session = Depends(get_db)):
    try:
        return distribution_service.get_attendee_status(db, qr_code)
    except ValueError as e:
        return _not_found_response(e)
