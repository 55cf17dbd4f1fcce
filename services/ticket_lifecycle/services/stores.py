"""Acceso a participantes y eventos usado por el ciclo de vida de tickets"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from typing import Optional
from datetime import datetime
from uuid import UUID

from shared.database.models import Participant, Event


class ParticipantStore:
    """Participantes: lectura, enlace al ticket emitido y flag de check-in"""

    async def find_by_id(self, db: AsyncSession, participant_id: UUID) -> Optional[Participant]:
        stmt = select(Participant).where(Participant.id == participant_id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def link_ticket(self, db: AsyncSession, participant_id: UUID, ticket_id: UUID) -> None:
        """Guardar la referencia al ticket recién emitido en el participante"""
        stmt = (
            update(Participant)
            .where(Participant.id == participant_id)
            .values(ticket_id=ticket_id)
            .execution_options(synchronize_session=False)
        )
        await db.execute(stmt)
        await db.commit()

    async def set_checked_in(self, db: AsyncSession, participant_id: UUID, check_in_time: datetime) -> None:
        """Marcar al participante como presente en el evento"""
        stmt = (
            update(Participant)
            .where(Participant.id == participant_id)
            .values(checked_in=True, check_in_time=check_in_time)
            .execution_options(synchronize_session=False)
        )
        await db.execute(stmt)
        await db.commit()


class EventStore:
    """Eventos (solo lectura)"""

    async def find_by_id(self, db: AsyncSession, event_id: UUID) -> Optional[Event]:
        stmt = select(Event).where(Event.id == event_id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()
