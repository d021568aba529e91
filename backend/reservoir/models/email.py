"""
Modèle SQLAlchemy pour la file d'envoi des emails de notification.

Chaque confirmation (check-in, repas, kit) crée une ligne PENDING dans la même
transaction que la mise à jour du participant ; l'envoi SMTP est fait plus tard
par le job planifié (reservoir.scheduler), avec retries.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, func

from reservoir.database import Base


class Email(Base):
    """Notification email en attente, envoyée ou en échec."""
    __tablename__ = "emails"

    id = Column(Integer, primary_key=True, autoincrement=True)
    attendee_id = Column(Integer, ForeignKey("attendees.id", ondelete="CASCADE"), nullable=False)
    email_type = Column(String(30), nullable=False)     # check_in, lunch_distribution, kit_distribution
    status = Column(String(20), default="pending")      # pending, sent, failed
    attempts = Column(Integer, default=0, nullable=False)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    sent_at = Column(DateTime, nullable=True)
