"""User model definitions."""

import uuid

from sqlalchemy import Column, String
from clinic_booking.database import Base


class User(Base):
    """Represents a patron who books appointments."""
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String)
    phone = Column(String)
