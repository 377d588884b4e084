"""Service model definitions."""

import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Numeric, String
from clinic_booking.database import Base


class Service(Base):
    """A bookable service; only its duration matters to scheduling."""
    __tablename__ = "services"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    clinic_id = Column(String, ForeignKey("clinics.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2))
    duration = Column(Integer, nullable=False)  # minutes
    is_upsell = Column(Boolean, default=False, nullable=False)
