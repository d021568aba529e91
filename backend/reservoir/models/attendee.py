"""
Modèle SQLAlchemy pour la table attendees (source de vérité serveur).

Les trois statuts sont monotones : ils passent de False à True et ne
reviennent jamais en arrière.
"""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, func

from reservoir.database import Base


class Attendee(Base):
    __tablename__ = "attendees"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    phone = Column(String(50), nullable=True)
    qr_code = Column(String(64), nullable=False, unique=True, index=True)  # Attribué à l'onboarding

    checked_in = Column(Boolean, default=False, nullable=False)
    lunch_distributed = Column(Boolean, default=False, nullable=False)
    kit_distributed = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
