"""Errores del ciclo de vida de tickets"""
from typing import Optional


class TicketError(Exception):
    """Error esperado de una operación sobre tickets"""
    kind = "ticket_error"

    def __init__(self, message: str, ticket=None):
        super().__init__(message)
        self.message = message
        self.ticket = ticket


class TicketNotFound(TicketError):
    """Ticket, participante o evento inexistente"""
    kind = "not_found"

    def __init__(self, entity: str, identifier):
        super().__init__(f"{entity.capitalize()} no encontrado: {identifier}")
        self.entity = entity
        self.identifier = identifier


class InvalidTicketToken(TicketError):
    """El token del QR no se pudo decodificar o no corresponde al ticket"""
    kind = "invalid_token"

    def __init__(self, reason: Optional[str] = None):
        message = "Código QR inválido"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.reason = reason


class InvalidTicketState(TicketError):
    """La operación no está permitida desde el estado actual del ticket"""
    kind = "invalid_state"

    def __init__(self, ticket, action: str):
        self.status = ticket.status
        self.action = action
        if action == "cancel":
            message = f"No se puede cancelar un ticket {self.status}"
        else:
            message = f"El ticket está {self.status}"
        super().__init__(message, ticket=ticket)


class TicketExpired(TicketError):
    """Check-in fuera de la ventana de gracia, el ticket quedó expired"""
    kind = "expired"

    def __init__(self, ticket):
        super().__init__("El ticket expiró", ticket=ticket)
        self.status = ticket.status
