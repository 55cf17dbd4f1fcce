"""Servicio del ciclo de vida de tickets: emisión, check-in, cancelación y estadísticas"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import selectinload
from typing import Callable, Dict, List, Optional, Union
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import logging
import uuid

from shared.config import settings
from shared.database.models import Ticket, TicketStatus
from shared.utils.qr_generator import (
    TicketTokenPayload,
    TokenDecodeError,
    decode_ticket_token,
    encode_ticket_token,
    generate_ticket_number,
)
from shared.utils.retry import retry_with_backoff
from services.ticket_lifecycle.models.ticket import CheckInLocation
from services.ticket_lifecycle.services.exceptions import (
    InvalidTicketState,
    InvalidTicketToken,
    TicketExpired,
    TicketNotFound,
)
from services.ticket_lifecycle.services.stores import EventStore, ParticipantStore

logger = logging.getLogger(__name__)


class DuplicateTicketNumber(Exception):
    """Colisión del número de ticket al insertar"""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Fechas sin zona horaria (p.ej. leídas de SQLite) se interpretan como UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_uuid(value: Union[str, uuid.UUID], entity: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        # Un id mal formado no puede existir
        raise TicketNotFound(entity, value)


def _ticket_query():
    """SELECT de tickets con participante y evento cargados"""
    return select(Ticket).options(
        selectinload(Ticket.participant),
        selectinload(Ticket.event)
    )


class TicketLifecycleService:
    """
    Estados: valid -> used | cancelled | expired (los tres terminales).

    Cada transición es un UPDATE condicionado a status = 'valid', de modo que
    dos scanners leyendo el mismo QR no pueden hacer check-in dos veces.
    La expiración se evalúa al intentar el check-in, no hay barrido periódico.
    """

    def __init__(
        self,
        participant_store: Optional[ParticipantStore] = None,
        event_store: Optional[EventStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
        grace_period: Optional[timedelta] = None
    ):
        self.participant_store = participant_store or ParticipantStore()
        self.event_store = event_store or EventStore()
        self.clock = clock or utc_now
        self.grace_period = grace_period or timedelta(hours=settings.CHECK_IN_GRACE_HOURS)

    async def issue_ticket(
        self,
        db: AsyncSession,
        participant_id: Union[str, uuid.UUID],
        event_id: Union[str, uuid.UUID],
        ticket_type: str,
        price: Union[Decimal, int, float]
    ) -> Ticket:
        """
        Emitir ticket para un participante

        El enlace participante -> ticket lo hace quien llama
        (ParticipantStore.link_ticket).

        Raises:
            TicketNotFound: si el participante o el evento no existen
        """
        participant_uuid = _parse_uuid(participant_id, "participante")
        event_uuid = _parse_uuid(event_id, "evento")

        participant = await self.participant_store.find_by_id(db, participant_uuid)
        if not participant:
            raise TicketNotFound("participante", participant_uuid)

        event = await self.event_store.find_by_id(db, event_uuid)
        if not event:
            raise TicketNotFound("evento", event_uuid)

        price = Decimal(str(price))

        async def insert_ticket() -> Ticket:
            now = self.clock()
            ticket_number = generate_ticket_number(now)
            token = encode_ticket_token(TicketTokenPayload(
                ticket_number=ticket_number,
                event_id=str(event_uuid),
                participant_id=str(participant_uuid),
                issued_at=int(now.timestamp() * 1000)
            ))
            ticket = Ticket(
                id=uuid.uuid4(),
                ticket_number=ticket_number,
                verification_token=token,
                participant_id=participant_uuid,
                event_id=event_uuid,
                ticket_type=ticket_type,
                price=price,
                status=TicketStatus.VALID.value,
                created_at=now,
                updated_at=now
            )
            db.add(ticket)
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise DuplicateTicketNumber(ticket_number) from e
            return ticket

        ticket = await retry_with_backoff(
            insert_ticket,
            max_retries=max(settings.TICKET_NUMBER_MAX_ATTEMPTS - 1, 0),
            initial_delay=0.0,
            exceptions=(DuplicateTicketNumber,)
        )
        # Participante y evento embebidos en la respuesta
        ticket = await self._reload(db, ticket.id)

        logger.info(
            f"Ticket {ticket.ticket_number} emitido para participante {participant_uuid} "
            f"(evento {event_uuid}, tipo {ticket_type})"
        )
        return ticket

    async def validate_and_check_in(
        self,
        db: AsyncSession,
        verification_token: str,
        performed_by: str,
        location: Optional[CheckInLocation] = None
    ) -> Ticket:
        """
        Validar el QR y registrar el check-in

        Raises:
            InvalidTicketToken: token corrupto, alterado o de otro ticket
            TicketNotFound: el ticket (o su evento) no existe
            InvalidTicketState: el ticket no está valid (used, cancelled, expired)
            TicketExpired: fuera de la ventana de gracia; el ticket queda expired
        """
        try:
            payload = decode_ticket_token(verification_token)
        except TokenDecodeError as e:
            logger.warning(f"Check-in rechazado, token inválido: {e}")
            raise InvalidTicketToken(str(e)) from e

        ticket = await self._find_by_number(db, payload.ticket_number)
        if not ticket:
            raise TicketNotFound("ticket", payload.ticket_number)
        ticket_id = ticket.id

        if str(ticket.event_id) != payload.event_id or str(ticket.participant_id) != payload.participant_id:
            logger.warning(f"Token no corresponde al ticket {ticket.ticket_number}")
            raise InvalidTicketToken("no corresponde al ticket")

        if ticket.status != TicketStatus.VALID.value:
            logger.warning(f"Check-in rechazado, ticket {ticket.ticket_number} está {ticket.status}")
            raise InvalidTicketState(ticket, "check_in")

        event = await self.event_store.find_by_id(db, ticket.event_id)
        if not event:
            raise TicketNotFound("evento", ticket.event_id)

        now = self.clock()
        if now - ensure_utc(event.date) > self.grace_period:
            if not await self._transition(db, ticket, TicketStatus.EXPIRED):
                raise InvalidTicketState(ticket, "check_in")
            logger.warning(f"Ticket {ticket.ticket_number} expirado (evento {event.id} del {event.date})")
            raise TicketExpired(ticket)

        values = {"check_in_time": now, "check_in_by": performed_by}
        if location is not None:
            values["check_in_latitude"] = location.latitude
            values["check_in_longitude"] = location.longitude

        if not await self._transition(db, ticket, TicketStatus.USED, **values):
            # Otro check-in o una cancelación ganó la carrera
            logger.warning(f"Check-in concurrente sobre ticket {ticket.ticket_number}, estado actual {ticket.status}")
            raise InvalidTicketState(ticket, "check_in")

        logger.info(f"Check-in de ticket {ticket.ticket_number} por {performed_by}")

        # Segunda escritura independiente, no revierte el check-in si falla
        try:
            await self.participant_store.set_checked_in(db, ticket.participant_id, now)
        except SQLAlchemyError as e:
            logger.error(
                f"Ticket {ticket.ticket_number} usado pero no se pudo marcar al participante "
                f"{ticket.participant_id}: {e}",
                exc_info=True
            )
            await db.rollback()
            ticket = await self._reload(db, ticket_id)

        return ticket

    async def cancel_ticket(
        self,
        db: AsyncSession,
        ticket_id: Union[str, uuid.UUID]
    ) -> Ticket:
        """
        Cancelar ticket

        Cancelar un ticket ya cancelado no hace nada y lo retorna tal cual.

        Raises:
            TicketNotFound: si el ticket no existe
            InvalidTicketState: si el ticket está used o expired
        """
        ticket = await self.get_ticket(db, ticket_id)

        if ticket.status == TicketStatus.CANCELLED.value:
            logger.info(f"Ticket {ticket.ticket_number} ya estaba cancelado")
            return ticket

        if ticket.status != TicketStatus.VALID.value:
            logger.warning(f"Cancelación rechazada, ticket {ticket.ticket_number} está {ticket.status}")
            raise InvalidTicketState(ticket, "cancel")

        if not await self._transition(db, ticket, TicketStatus.CANCELLED):
            if ticket.status == TicketStatus.CANCELLED.value:
                return ticket
            raise InvalidTicketState(ticket, "cancel")

        logger.info(f"Ticket {ticket.ticket_number} cancelado")
        return ticket

    async def compute_check_in_stats(
        self,
        db: AsyncSession,
        event_id: Union[str, uuid.UUID]
    ) -> Dict:
        """
        Estadísticas de check-in de un evento

        Returns:
            Dict con conteos por estado, check_in_rate (%) y check-ins por hora
            (UTC) de las últimas 24 horas
        """
        event_uuid = _parse_uuid(event_id, "evento")

        stmt = (
            select(Ticket.status, func.count(Ticket.id))
            .where(Ticket.event_id == event_uuid)
            .group_by(Ticket.status)
        )
        result = await db.execute(stmt)
        by_status = {ticket_status: count for ticket_status, count in result.all()}

        total = sum(by_status.values())
        checked_in = by_status.get(TicketStatus.USED.value, 0)

        since = self.clock() - timedelta(hours=24)
        stmt_recent = select(Ticket.check_in_time).where(
            Ticket.event_id == event_uuid,
            Ticket.status == TicketStatus.USED.value,
            Ticket.check_in_time >= since
        )
        result_recent = await db.execute(stmt_recent)

        hourly = {hour: 0 for hour in range(24)}
        for check_in_time in result_recent.scalars().all():
            hourly[ensure_utc(check_in_time).hour] += 1

        return {
            "event_id": event_uuid,
            "total_tickets": total,
            "checked_in_tickets": checked_in,
            "valid_tickets": by_status.get(TicketStatus.VALID.value, 0),
            "cancelled_tickets": by_status.get(TicketStatus.CANCELLED.value, 0),
            "expired_tickets": by_status.get(TicketStatus.EXPIRED.value, 0),
            "check_in_rate": round(checked_in / total * 100, 2) if total > 0 else 0.0,
            "hourly_check_ins": hourly
        }

    async def get_ticket(self, db: AsyncSession, ticket_id: Union[str, uuid.UUID]) -> Ticket:
        """Obtener ticket por ID"""
        ticket_uuid = _parse_uuid(ticket_id, "ticket")
        stmt = _ticket_query().where(Ticket.id == ticket_uuid)
        result = await db.execute(stmt)
        ticket = result.scalar_one_or_none()
        if not ticket:
            raise TicketNotFound("ticket", ticket_uuid)
        return ticket

    async def get_ticket_by_number(self, db: AsyncSession, ticket_number: str) -> Ticket:
        """Obtener ticket por número (TKT-YYYYMM-XXXXXX)"""
        ticket = await self._find_by_number(db, ticket_number)
        if not ticket:
            raise TicketNotFound("ticket", ticket_number)
        return ticket

    async def list_event_tickets(
        self,
        db: AsyncSession,
        event_id: Union[str, uuid.UUID],
        status: Optional[str] = None
    ) -> List[Ticket]:
        """Tickets de un evento, más recientes primero, opcionalmente filtrados por estado"""
        event_uuid = _parse_uuid(event_id, "evento")
        stmt = _ticket_query().where(Ticket.event_id == event_uuid)
        if status:
            stmt = stmt.where(Ticket.status == status)
        stmt = stmt.order_by(Ticket.created_at.desc())
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def list_participant_tickets(
        self,
        db: AsyncSession,
        participant_id: Union[str, uuid.UUID]
    ) -> List[Ticket]:
        """Tickets de un participante, más recientes primero"""
        participant_uuid = _parse_uuid(participant_id, "participante")
        stmt = (
            _ticket_query()
            .where(Ticket.participant_id == participant_uuid)
            .order_by(Ticket.created_at.desc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def _find_by_number(self, db: AsyncSession, ticket_number: str) -> Optional[Ticket]:
        stmt = _ticket_query().where(Ticket.ticket_number == ticket_number)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def _transition(
        self,
        db: AsyncSession,
        ticket: Ticket,
        to_status: TicketStatus,
        **values
    ) -> bool:
        """
        UPDATE atómico valid -> to_status

        Recarga el ticket en cualquier caso. Retorna False si el ticket ya no
        estaba valid al momento de escribir.
        """
        ticket_id = ticket.id
        stmt = (
            update(Ticket)
            .where(Ticket.id == ticket_id, Ticket.status == TicketStatus.VALID.value)
            .values(status=to_status.value, **values)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        await db.commit()
        await self._reload(db, ticket_id)
        return result.rowcount == 1

    async def _reload(self, db: AsyncSession, ticket_id: uuid.UUID) -> Ticket:
        # populate_existing sobrescribe la instancia que ya está en la sesión
        stmt = _ticket_query().where(Ticket.id == ticket_id).execution_options(populate_existing=True)
        result = await db.execute(stmt)
        return result.scalar_one()
