"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for the SLA module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.config import IncidentSeverity, IncidentStatus
from src.infrastructure.database import Base, UTCDateTime


class IncidentModel(Base):
    """
    Database model for Incident entity.

    Maps to the 'incidents' table.
    """
    __tablename__ = "incidents"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default=IncidentSeverity.MEDIUM.value)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=IncidentStatus.OPEN.value, index=True)

    # SLA clock inputs
    reported_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    sla_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    assigned_to: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
