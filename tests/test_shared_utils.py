import pytest

from shared.database.connection import build_async_url
from shared.utils.retry import retry_with_backoff


class Flaky(Exception):
    pass


async def test_retry_returns_after_transient_failures():
    calls = []

    async def operation():
        calls.append(1)
        if len(calls) < 3:
            raise Flaky('try again')
        return 'ok'

    result = await retry_with_backoff(operation, max_retries=3, initial_delay=0.0, exceptions=(Flaky,))

    assert result == 'ok'
    assert len(calls) == 3


async def test_retry_reraises_when_exhausted():
    calls = []

    def operation():
        calls.append(1)
        raise Flaky('still failing')

    with pytest.raises(Flaky):
        await retry_with_backoff(operation, max_retries=2, initial_delay=0.0, exceptions=(Flaky,))

    assert len(calls) == 3


async def test_retry_does_not_catch_other_errors():
    async def operation():
        raise KeyError('boom')

    with pytest.raises(KeyError):
        await retry_with_backoff(operation, max_retries=5, initial_delay=0.0, exceptions=(Flaky,))


@pytest.mark.parametrize(
    ('configured', 'expected'),
    [
        ('postgresql://setu:setu@db:5432/setu', 'postgresql+asyncpg://setu:setu@db:5432/setu'),
        ('postgresql+psycopg://u:p@h/db?sslmode=require', 'postgresql+asyncpg://u:p@h/db'),
        ('sqlite:///./setu.db', 'sqlite+aiosqlite:///./setu.db'),
        ('sqlite+aiosqlite:///:memory:', 'sqlite+aiosqlite:///:memory:'),
    ],
)
def test_build_async_url(configured, expected):
    assert build_async_url(configured) == expected
