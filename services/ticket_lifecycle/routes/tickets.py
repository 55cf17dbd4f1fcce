"""Rutas del ciclo de vida de tickets"""
from fastapi import APIRouter, Depends, Request, Query, status
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, List, Optional
import logging

from shared.database.session import get_db
from shared.database.models import TicketStatus
from shared.auth.dependencies import get_current_organizer, get_current_staff
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.ticket_lifecycle.models.ticket import (
    IssueTicketRequest,
    ValidateTicketRequest,
    PublicTicketResponse,
    TicketResponse,
    TicketActionResponse,
    CheckInStatsResponse
)
from services.ticket_lifecycle.services.exceptions import (
    TicketError,
    TicketNotFound,
    InvalidTicketToken,
    InvalidTicketState,
    TicketExpired
)
from services.ticket_lifecycle.services.ticket_service import TicketLifecycleService

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_STATUS_CODES = {
    TicketNotFound: status.HTTP_404_NOT_FOUND,
    InvalidTicketToken: status.HTTP_400_BAD_REQUEST,
    InvalidTicketState: status.HTTP_409_CONFLICT,
    TicketExpired: status.HTTP_410_GONE,
}


def ticket_error_handler(request: Request, exc: TicketError) -> JSONResponse:
    """
    Handler para errores esperados del ciclo de vida.
    Incluye el estado actual y el ticket (sin token) para que el scanner muestre el motivo.
    """
    content = {"error": exc.message, "kind": exc.kind}
    if exc.ticket is not None:
        content["status"] = exc.ticket.status
        content["ticket"] = jsonable_encoder(PublicTicketResponse.model_validate(exc.ticket))

    return JSONResponse(
        status_code=ERROR_STATUS_CODES.get(type(exc), status.HTTP_400_BAD_REQUEST),
        content=content
    )


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_LIMITS["issue"])
async def issue_ticket(
    request: Request,
    body: IssueTicketRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_organizer)
):
    """
    Emitir ticket para un participante y enlazarlo en su registro

    Requiere autenticación de organizer/admin
    """
    service = TicketLifecycleService()

    ticket = await service.issue_ticket(
        db=db,
        participant_id=body.participant_id,
        event_id=body.event_id,
        ticket_type=body.ticket_type,
        price=body.price
    )
    await service.participant_store.link_ticket(db, ticket.participant_id, ticket.id)

    return TicketResponse.model_validate(ticket)


@router.post("/validate", response_model=TicketActionResponse)
@limiter.limit(RATE_LIMITS["validation"])
async def validate_ticket(
    request: Request,
    body: ValidateTicketRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_staff)
):
    """
    Validar QR y registrar check-in

    Requiere autenticación de scanner/organizer/admin
    """
    service = TicketLifecycleService()

    ticket = await service.validate_and_check_in(
        db=db,
        verification_token=body.verification_token,
        performed_by=current_user["user_id"],
        location=body.location()
    )

    return TicketActionResponse(
        success=True,
        message="Ticket validado exitosamente",
        ticket=PublicTicketResponse.model_validate(ticket)
    )


@router.get("/number/{ticket_number}", response_model=PublicTicketResponse)
async def get_ticket_by_number(
    ticket_number: str,
    db: AsyncSession = Depends(get_db)
):
    """Obtener ticket por número (endpoint público, sin token de verificación)"""
    service = TicketLifecycleService()
    ticket = await service.get_ticket_by_number(db, ticket_number)
    return PublicTicketResponse.model_validate(ticket)


@router.get("/event/{event_id}", response_model=List[TicketResponse])
async def get_event_tickets(
    event_id: str,
    ticket_status: Optional[TicketStatus] = Query(default=None, alias="status"),
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_organizer)
):
    """
    Obtener tickets de un evento, filtrando opcionalmente por estado

    Requiere autenticación de organizer/admin
    """
    service = TicketLifecycleService()
    tickets = await service.list_event_tickets(
        db,
        event_id,
        status=ticket_status.value if ticket_status else None
    )
    return [TicketResponse.model_validate(ticket) for ticket in tickets]


@router.get("/event/{event_id}/stats", response_model=CheckInStatsResponse)
async def get_check_in_stats(
    event_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_organizer)
):
    """
    Estadísticas de check-in de un evento

    Requiere autenticación de organizer/admin
    """
    service = TicketLifecycleService()
    stats = await service.compute_check_in_stats(db, event_id)
    return CheckInStatsResponse(**stats)


@router.get("/participant/{participant_id}", response_model=List[PublicTicketResponse])
async def get_participant_tickets(
    participant_id: str,
    db: AsyncSession = Depends(get_db)
):
    """Obtener tickets de un participante (endpoint público, sin token de verificación)"""
    service = TicketLifecycleService()
    tickets = await service.list_participant_tickets(db, participant_id)
    return [PublicTicketResponse.model_validate(ticket) for ticket in tickets]


@router.put("/{ticket_id}/cancel", response_model=TicketActionResponse)
async def cancel_ticket(
    ticket_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_organizer)
):
    """
    Cancelar ticket

    Requiere autenticación de organizer/admin
    """
    service = TicketLifecycleService()
    ticket = await service.cancel_ticket(db, ticket_id)

    logger.info(f"Ticket {ticket.ticket_number} cancelado por {current_user['user_id']}")

    return TicketActionResponse(
        success=True,
        message="Ticket cancelado exitosamente",
        ticket=PublicTicketResponse.model_validate(ticket)
    )


@router.get("/{ticket_id}", response_model=PublicTicketResponse)
async def get_ticket(
    ticket_id: str,
    db: AsyncSession = Depends(get_db)
):
    """Obtener ticket por ID (endpoint público, sin token de verificación)"""
    service = TicketLifecycleService()
    ticket = await service.get_ticket(db, ticket_id)
    return PublicTicketResponse.model_validate(ticket)
