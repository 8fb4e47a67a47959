"""Resultados de un ciclo de verificación"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from services.ticket_validation.models.ticket import Ticket


@dataclass(frozen=True)
class Malformed:
    """No se pudo extraer una referencia del payload escaneado"""
    raw_payload: str
    reason: str


@dataclass(frozen=True)
class NotFound:
    reference: str


@dataclass(frozen=True)
class Found:
    ticket: Ticket
    admittable: bool


@dataclass(frozen=True)
class AlreadyUsed:
    ticket: Ticket


@dataclass(frozen=True)
class LookupFailed:
    reference: str
    reason: str


@dataclass(frozen=True)
class Admitted:
    ticket: Ticket


@dataclass(frozen=True)
class AdmitFailed:
    reference: str
    reason: str


VerificationOutcome = Union[Malformed, NotFound, Found, AlreadyUsed, LookupFailed, Admitted, AdmitFailed]

OUTCOME_TYPES = (Malformed, NotFound, Found, AlreadyUsed, LookupFailed, Admitted, AdmitFailed)


class ScanResolution(str, Enum):
    MATCHED = "matched"
    NOT_FOUND = "not-found"
    MALFORMED = "malformed"


@dataclass
class ScanAttempt:
    """Un evento de decodificación; vive solo durante un ciclo de verificación"""
    raw_payload: str
    reference: Optional[str] = None
    resolution: Optional[ScanResolution] = None
    scanned_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
