import os
import typing
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

os.environ.setdefault('RATE_LIMIT_ENABLED', 'false')
os.environ.setdefault('APP_ENV', 'test')

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from main import app
from shared.auth.jwt_handler import create_access_token
from shared.database.connection import Base, get_db
from shared.database.models import Event, Participant


@pytest.fixture
async def async_session() -> typing.AsyncGenerator[AsyncSession, None]:
    async_engine = create_async_engine(
        'sqlite+aiosqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        autoflush=False,
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session

    await async_engine.dispose()


@pytest.fixture
async def async_client(
    async_session: AsyncSession
) -> typing.AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_db] = lambda: async_session
    _transport = ASGITransport(app=app)

    async with AsyncClient(
        transport=_transport, base_url='http://test', follow_redirects=True
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def make_event(async_session: AsyncSession):
    async def _make_event(date: datetime, title: Optional[str] = None) -> Event:
        event = Event(
            id=uuid.uuid4(),
            title=title or f'Hackathon {uuid.uuid4().hex[:6]}',
            date=date,
            venue='Auditorio principal',
        )
        async_session.add(event)
        await async_session.commit()
        return event

    return _make_event


@pytest.fixture
def make_participant(async_session: AsyncSession):
    async def _make_participant(event: Event, name: str = 'Asha Rao') -> Participant:
        participant = Participant(
            id=uuid.uuid4(),
            name=name,
            email=f'{uuid.uuid4().hex[:8]}@example.com',
            event_id=event.id,
            checked_in=False,
        )
        async_session.add(participant)
        await async_session.commit()
        return participant

    return _make_participant


@pytest.fixture
async def upcoming_event(make_event) -> Event:
    return await make_event(datetime.now(timezone.utc) + timedelta(days=2))


@pytest.fixture
async def participant(make_participant, upcoming_event) -> Participant:
    return await make_participant(upcoming_event)


@pytest.fixture
def auth_headers():
    def _auth_headers(role: str, user_id: Optional[str] = None) -> dict:
        token = create_access_token({'sub': user_id or str(uuid.uuid4()), 'role': role})
        return {'Authorization': f'Bearer {token}'}

    return _auth_headers


@pytest.fixture
def organizer_headers(auth_headers) -> dict:
    return auth_headers('organizer')


@pytest.fixture
def scanner_headers(auth_headers) -> dict:
    return auth_headers('scanner', user_id='scanner-01')
