# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant que SQLAlchemy tente de résoudre les clés étrangères inter-modèles.
# emails.attendee_id → attendees.id impose que attendee.py soit chargé en premier.

from reservoir.models.attendee import Attendee  # noqa: F401  (doit précéder email)
from reservoir.models.email import Email  # noqa: F401
