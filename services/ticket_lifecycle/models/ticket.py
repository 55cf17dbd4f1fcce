"""Modelos Pydantic para el ciclo de vida de tickets"""
from pydantic import BaseModel, Field
from typing import Optional, Dict
from datetime import datetime
from decimal import Decimal
from uuid import UUID


class CheckInLocation(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class IssueTicketRequest(BaseModel):
    """Request para emitir un ticket (registro gratuito o pago completado)"""
    participant_id: UUID
    event_id: UUID
    ticket_type: str = Field(min_length=1)
    price: Decimal = Field(ge=0)


class ValidateTicketRequest(BaseModel):
    """Request del scanner: token leído del QR y ubicación opcional"""
    verification_token: str
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)

    def location(self) -> Optional[CheckInLocation]:
        # Solo se registra si vienen ambas coordenadas
        if self.latitude is None or self.longitude is None:
            return None
        return CheckInLocation(latitude=self.latitude, longitude=self.longitude)


class ParticipantSummary(BaseModel):
    """Datos del participante que muestra el scanner"""
    id: UUID
    name: str
    email: str
    phone: Optional[str] = None

    class Config:
        from_attributes = True


class EventSummary(BaseModel):
    id: UUID
    title: str
    date: datetime
    venue: Optional[str] = None

    class Config:
        from_attributes = True


class PublicTicketResponse(BaseModel):
    """Ticket serializado sin el token de verificación"""
    id: UUID
    ticket_number: str
    participant_id: UUID
    event_id: UUID
    participant: Optional[ParticipantSummary] = None
    event: Optional[EventSummary] = None
    ticket_type: str
    price: Decimal
    status: str
    check_in_time: Optional[datetime] = None
    check_in_by: Optional[str] = None
    check_in_location: Optional[CheckInLocation] = None
    created_at: datetime

    class Config:
        from_attributes = True


class TicketResponse(PublicTicketResponse):
    """Ticket con su token, solo para la emisión y el organizador"""
    verification_token: str


class TicketActionResponse(BaseModel):
    """Respuesta de validación / cancelación"""
    success: bool
    message: str
    ticket: PublicTicketResponse


class CheckInStatsResponse(BaseModel):
    """Estadísticas de check-in de un evento"""
    event_id: UUID
    total_tickets: int
    checked_in_tickets: int
    valid_tickets: int
    cancelled_tickets: int
    expired_tickets: int
    check_in_rate: float
    hourly_check_ins: Dict[int, int]
