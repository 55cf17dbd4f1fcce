"""Utilidades para generar y leer los tokens de verificación del QR de un ticket"""
import base64
import binascii
import hashlib
import hmac
import json
import secrets
import string
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shared.config import settings


TICKET_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
TICKET_NUMBER_RANDOM_LENGTH = 6


class TokenDecodeError(ValueError):
    """El token no se pudo decodificar (corrupto, alterado o con formato inválido)"""


class TicketTokenPayload(BaseModel):
    """
    Datos que viajan dentro del QR.

    Se serializa con las mismas claves que los tickets emitidos antes de la
    firma (ticket, event, participant, timestamp).
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    ticket_number: str = Field(alias="ticket", min_length=1)
    event_id: str = Field(alias="event", min_length=1)
    participant_id: str = Field(alias="participant", min_length=1)
    issued_at: int = Field(alias="timestamp")  # epoch en milisegundos


def generate_ticket_number(now: datetime) -> str:
    """
    Generar número de ticket legible: TKT-{YYYYMM}-{6 caracteres A-Z0-9}

    Args:
        now: Fecha de emisión (se usan año y mes)
    """
    random_part = "".join(
        secrets.choice(TICKET_NUMBER_ALPHABET) for _ in range(TICKET_NUMBER_RANDOM_LENGTH)
    )
    return f"TKT-{now.year:04d}{now.month:02d}-{random_part}"


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def _sign(body: str, secret: str) -> str:
    signature = hmac.new(
        secret.encode("utf-8"),
        body.encode("ascii"),
        hashlib.sha256
    ).digest()
    return _b64url_encode(signature)


def _parse_payload(raw: bytes) -> TicketTokenPayload:
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise TokenDecodeError("Contenido del token no es JSON válido") from e

    if not isinstance(data, dict):
        raise TokenDecodeError("Contenido del token no es un objeto")

    try:
        return TicketTokenPayload.model_validate(data)
    except ValidationError as e:
        raise TokenDecodeError("Token con campos faltantes o inválidos") from e


def encode_ticket_token(payload: TicketTokenPayload, secret: Optional[str] = None) -> str:
    """
    Generar el token firmado para el QR

    Formato: {base64url(json)}.{base64url(HMAC-SHA256(secret, body))}

    Args:
        payload: Datos del ticket
        secret: Secret key para HMAC (default: settings.QR_SECRET)

    Returns:
        String listo para codificar en el QR
    """
    if secret is None:
        secret = settings.QR_SECRET

    raw = json.dumps(
        payload.model_dump(by_alias=True),
        separators=(",", ":"),
        sort_keys=True
    )
    body = _b64url_encode(raw.encode("utf-8"))
    return f"{body}.{_sign(body, secret)}"


def decode_ticket_token(
    token: str,
    secret: Optional[str] = None,
    accept_legacy: Optional[bool] = None
) -> TicketTokenPayload:
    """
    Leer y verificar un token de QR

    Args:
        token: Token escaneado
        secret: Secret key para HMAC (default: settings.QR_SECRET)
        accept_legacy: Aceptar tokens base64 sin firma
            (default: settings.TICKET_ACCEPT_LEGACY_TOKENS)

    Raises:
        TokenDecodeError: si el token está mal formado o la firma no coincide
    """
    if secret is None:
        secret = settings.QR_SECRET
    if accept_legacy is None:
        accept_legacy = settings.TICKET_ACCEPT_LEGACY_TOKENS

    if not isinstance(token, str) or not token.strip():
        raise TokenDecodeError("Token vacío")
    token = token.strip()

    if "." not in token:
        if not accept_legacy:
            raise TokenDecodeError("Token sin firma")
        try:
            raw = base64.b64decode(token, validate=True)
        except (binascii.Error, ValueError) as e:
            raise TokenDecodeError("Token no es base64 válido") from e
        return _parse_payload(raw)

    body, _, signature = token.partition(".")
    if not body or not signature:
        raise TokenDecodeError("Token incompleto")

    try:
        expected = _sign(body, secret)
    except UnicodeEncodeError as e:
        raise TokenDecodeError("Token con caracteres inválidos") from e
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("ascii")):
        raise TokenDecodeError("Firma del token inválida")

    try:
        raw = _b64url_decode(body)
    except (binascii.Error, ValueError) as e:
        raise TokenDecodeError("Token no es base64 válido") from e
    return _parse_payload(raw)
