import base64
import json
import re
from datetime import datetime, timezone

import pytest

from shared.utils.qr_generator import (
    TicketTokenPayload,
    TokenDecodeError,
    decode_ticket_token,
    encode_ticket_token,
    generate_ticket_number,
)

SECRET = 'test-qr-secret'


@pytest.fixture
def payload() -> TicketTokenPayload:
    return TicketTokenPayload(
        ticket_number='TKT-202610-AB12CD',
        event_id='5b1f6a0c-3d1e-4a5b-9c7d-2e8f0a1b2c3d',
        participant_id='9a8b7c6d-5e4f-4a3b-8c2d-1e0f9a8b7c6d',
        issued_at=1760745600000,
    )


def test_ticket_number_format():
    number = generate_ticket_number(datetime(2026, 3, 15, tzinfo=timezone.utc))

    assert re.fullmatch(r'TKT-202603-[A-Z0-9]{6}', number)


def test_ticket_numbers_are_random():
    now = datetime(2026, 10, 1, tzinfo=timezone.utc)
    numbers = {generate_ticket_number(now) for _ in range(50)}

    assert len(numbers) > 1


def test_decode_returns_encoded_payload(payload):
    token = encode_ticket_token(payload, secret=SECRET)

    assert decode_ticket_token(token, secret=SECRET) == payload


def test_token_keeps_legacy_payload_keys(payload):
    token = encode_ticket_token(payload, secret=SECRET)
    body = token.split('.')[0]
    raw = base64.urlsafe_b64decode(body + '=' * (-len(body) % 4))

    assert json.loads(raw) == {
        'ticket': 'TKT-202610-AB12CD',
        'event': payload.event_id,
        'participant': payload.participant_id,
        'timestamp': 1760745600000,
    }


def test_tampered_body_is_rejected(payload):
    token = encode_ticket_token(payload, secret=SECRET)
    forged = payload.model_copy(update={'ticket_number': 'TKT-202610-ZZZZZZ'})
    forged_body = encode_ticket_token(forged, secret=SECRET).split('.')[0]
    signature = token.split('.')[1]

    with pytest.raises(TokenDecodeError):
        decode_ticket_token(f'{forged_body}.{signature}', secret=SECRET)


def test_other_secret_is_rejected(payload):
    token = encode_ticket_token(payload, secret='another-secret')

    with pytest.raises(TokenDecodeError):
        decode_ticket_token(token, secret=SECRET)


@pytest.mark.parametrize(
    'token',
    ['', '   ', 'not-a-token', '.', 'abc.', '.abc', '%%%.###', 'ñandú.firma'],
)
def test_malformed_tokens_raise_decode_error(token):
    with pytest.raises(TokenDecodeError):
        decode_ticket_token(token, secret=SECRET, accept_legacy=False)


def test_legacy_token_requires_flag():
    legacy = base64.b64encode(json.dumps({
        'ticket': 'TKT-202401-QWERTY',
        'event': '65a1b2c3d4e5f60718293a4b',
        'participant': '65a1b2c3d4e5f60718293a4c',
        'timestamp': 1704067200000,
    }).encode()).decode()

    with pytest.raises(TokenDecodeError):
        decode_ticket_token(legacy, secret=SECRET, accept_legacy=False)

    decoded = decode_ticket_token(legacy, secret=SECRET, accept_legacy=True)
    assert decoded.ticket_number == 'TKT-202401-QWERTY'
    assert decoded.issued_at == 1704067200000


@pytest.mark.parametrize(
    'content',
    [b'not json', b'[1, 2, 3]', b'{"ticket": "TKT-202401-QWERTY"}'],
)
def test_legacy_garbage_raises_decode_error(content):
    token = base64.b64encode(content).decode()

    with pytest.raises(TokenDecodeError):
        decode_ticket_token(token, secret=SECRET, accept_legacy=True)
