"""Presentación de resultados de verificación para la UI de los scanners"""
from typing import Callable, Dict, List, Optional, get_args

from services.ticket_validation.models.ticket import Ticket
from services.ticket_validation.services.outcomes import (
    AdmitFailed,
    Admitted,
    AlreadyUsed,
    Found,
    LookupFailed,
    Malformed,
    NotFound,
    VerificationOutcome,
)


def _ticket_view(ticket: Optional[Ticket]) -> Optional[Dict]:
    if ticket is None:
        return None
    return {
        "reference": ticket.reference,
        "status": ticket.status_label,
        "quantity": ticket.quantity,
        "holder_name": ticket.holder_name,
        "holder_email": ticket.holder_email,
        "holder_phone": ticket.holder_phone,
        "event_label": ticket.event_label,
        "verified_at": ticket.verified_at.isoformat() if ticket.verified_at else None,
        "verified_by": ticket.verified_by,
    }


def _admissions(quantity: int) -> str:
    return f"{quantity} {'entrada' if quantity == 1 else 'entradas'}"


def _render(
    outcome: str,
    title: str,
    message: str,
    severity: str,
    retryable: bool = False,
    can_admit: bool = False,
    reference: Optional[str] = None,
    ticket: Optional[Ticket] = None,
) -> Dict:
    return {
        "outcome": outcome,
        "title": title,
        "message": message,
        "severity": severity,
        "retryable": retryable,
        "can_admit": can_admit,
        "reference": reference if reference is not None else (ticket.reference if ticket else None),
        "ticket": _ticket_view(ticket),
    }


def render_malformed(outcome: Malformed) -> Dict:
    return _render(
        "malformed",
        "QR inválido",
        f"{outcome.reason}. Vuelve a escanear o ingresa el código manualmente.",
        "error",
    )


def render_not_found(outcome: NotFound) -> Dict:
    return _render(
        "not_found",
        "Ticket no encontrado",
        f"No existe un ticket con la referencia {outcome.reference}.",
        "error",
        reference=outcome.reference,
    )


def render_found(outcome: Found) -> Dict:
    ticket = outcome.ticket
    if outcome.admittable:
        return _render(
            "found",
            "Pago verificado",
            f"Ticket válido. Puede ingresar con {_admissions(ticket.quantity)}.",
            "success",
            can_admit=True,
            ticket=ticket,
        )
    return _render(
        "found",
        f"Estado del pago: {ticket.status_label}",
        "Verifica el estado del pago antes de permitir el ingreso.",
        "warning",
        ticket=ticket,
    )


def render_already_used(outcome: AlreadyUsed) -> Dict:
    ticket = outcome.ticket
    when = ticket.verified_at.strftime("%d/%m/%Y %H:%M") if ticket.verified_at else "fecha desconocida"
    return _render(
        "already_used",
        "Ticket ya utilizado",
        f"Este ticket ya fue admitido ({when}, operador {ticket.verified_by or 'desconocido'}).",
        "warning",
        ticket=ticket,
    )


def render_lookup_failed(outcome: LookupFailed) -> Dict:
    return _render(
        "lookup_failed",
        "No se pudo consultar el ticket",
        "Error de conexión con el servidor. Intenta nuevamente.",
        "error",
        retryable=True,
        reference=outcome.reference,
    )


def render_admitted(outcome: Admitted) -> Dict:
    return _render(
        "admitted",
        "Ingreso registrado",
        f"Ticket marcado como usado. Permitir el ingreso de {_admissions(outcome.ticket.quantity)}.",
        "success",
        ticket=outcome.ticket,
    )


def render_admit_failed(outcome: AdmitFailed) -> Dict:
    return _render(
        "admit_failed",
        "No se pudo registrar el ingreso",
        "El ticket no fue marcado como usado. Intenta nuevamente.",
        "error",
        retryable=True,
        reference=outcome.reference,
    )


RENDERERS: Dict[type, Callable[..., Dict]] = {
    Malformed: render_malformed,
    NotFound: render_not_found,
    Found: render_found,
    AlreadyUsed: render_already_used,
    LookupFailed: render_lookup_failed,
    Admitted: render_admitted,
    AdmitFailed: render_admit_failed,
}


def missing_renderers() -> List[type]:
    """Variantes de VerificationOutcome sin renderer registrado"""
    return [variant for variant in get_args(VerificationOutcome) if variant not in RENDERERS]


def render_outcome(outcome: VerificationOutcome) -> Dict:
    renderer = RENDERERS.get(type(outcome))
    if renderer is None:
        # Sin fallback: un resultado desconocido nunca se muestra como éxito
        raise TypeError(f"Resultado de verificación sin renderer: {type(outcome).__name__}")
    return renderer(outcome)
