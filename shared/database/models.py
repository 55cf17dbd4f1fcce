"""Modelos SQLAlchemy de SETU (eventos, participantes y tickets)"""
from sqlalchemy import Column, String, Boolean, DateTime, Float, ForeignKey, Numeric, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
import uuid
from shared.database.connection import Base


class TicketStatus(str, enum.Enum):
    VALID = "valid"
    USED = "used"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class Event(Base):
    __tablename__ = "events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False, unique=True)
    date = Column(DateTime(timezone=True), nullable=False)
    venue = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relaciones
    participants = relationship("Participant", back_populates="event")
    tickets = relationship("Ticket", back_populates="event")


class Participant(Base):
    __tablename__ = "participants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, index=True)
    phone = Column(String, nullable=True)
    event_id = Column(Uuid, ForeignKey("events.id"), nullable=False)
    ticket_id = Column(Uuid, nullable=True)  # Último ticket emitido, lo enlaza quien emite
    checked_in = Column(Boolean, nullable=False, default=False)
    check_in_time = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relaciones
    event = relationship("Event", back_populates="participants")
    tickets = relationship("Ticket", back_populates="participant")


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_number = Column(String, unique=True, index=True, nullable=False)
    verification_token = Column(Text, nullable=False)
    participant_id = Column(Uuid, ForeignKey("participants.id"), nullable=False, index=True)
    event_id = Column(Uuid, ForeignKey("events.id"), nullable=False, index=True)
    ticket_type = Column(String, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    status = Column(String, nullable=False, default=TicketStatus.VALID.value)  # valid, used, cancelled, expired
    check_in_time = Column(DateTime(timezone=True), nullable=True)  # Solo con status used
    check_in_by = Column(String, nullable=True)  # user_id del staff que escaneó
    check_in_latitude = Column(Float, nullable=True)
    check_in_longitude = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relaciones
    participant = relationship("Participant", back_populates="tickets")
    event = relationship("Event", back_populates="tickets")

    @property
    def check_in_location(self):
        if self.check_in_latitude is None or self.check_in_longitude is None:
            return None
        return {"latitude": self.check_in_latitude, "longitude": self.check_in_longitude}
