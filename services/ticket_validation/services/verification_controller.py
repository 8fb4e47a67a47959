"""
Controlador de verificación de tickets.

Un ciclo: payload -> referencia -> lookup -> decisión -> (operador) admitir.

    IDLE -> SCANNING -> RESOLVING -> {FOUND, NOT_FOUND, MALFORMED, LOOKUP_FAILED}
         FOUND -> ADMITTING -> {ADMITTED, ALREADY_USED, ADMIT_FAILED}

Todas las fallas conocidas se devuelven como un resultado de `outcomes`;
solo los errores de programación se propagan.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Set, TypeVar
import asyncio
import logging

from services.ticket_validation.models.ticket import Ticket, TicketStatus
from services.ticket_validation.services.outcomes import (
    AdmitFailed,
    Admitted,
    AlreadyUsed,
    Found,
    LookupFailed,
    Malformed,
    NotFound,
    ScanAttempt,
    ScanResolution,
    VerificationOutcome,
)
from services.ticket_validation.services.payload_extractor import MalformedPayload, extract_reference
from services.ticket_validation.services.ticket_repository import (
    CasAdmitted,
    PreconditionFailed,
    RepositoryError,
    TicketRepository,
)
from shared.auth.access import ScannerAccess

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CycleState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    RESOLVING = "resolving"
    FOUND = "found"
    NOT_FOUND = "not_found"
    MALFORMED = "malformed"
    LOOKUP_FAILED = "lookup_failed"
    ADMITTING = "admitting"
    ADMITTED = "admitted"
    ALREADY_USED = "already_used"
    ADMIT_FAILED = "admit_failed"


class OperatorNotAuthorized(Exception):
    """El operador no tiene rol de scanner ni admin"""

    def __init__(self, operator_id: str):
        super().__init__(f"Operador {operator_id} sin permisos de scanner")
        self.operator_id = operator_id


class VerificationController:
    """Orquesta extractor + repositorio para una sesión de operador"""

    def __init__(
        self,
        repository: TicketRepository,
        access: Optional[ScannerAccess] = None,
        timeout_seconds: float = 8.0,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._repository = repository
        self._access = access
        self.timeout_seconds = timeout_seconds
        self._clock = clock

        self.state = CycleState.IDLE
        self.ticket: Optional[Ticket] = None
        self.attempt: Optional[ScanAttempt] = None
        self._generation = 0
        self._inflight: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Ciclo
    # ------------------------------------------------------------------

    def begin_scan(self):
        """El operador abrió la cámara / el diálogo de carga"""
        self._new_cycle()
        self.state = CycleState.SCANNING

    def reset(self):
        """Volver a IDLE descartando el ciclo actual"""
        self._new_cycle()

    def cancel(self):
        """
        Cancelar el ciclo en curso (el operador cerró la vista o detuvo la cámara).

        Todas las llamadas en vuelo (lookups o admisiones solapadas) se cancelan
        y, si alguna igual llega a resolverse, su resultado se descarta sin
        tocar el estado.
        """
        inflight = list(self._inflight)
        self._inflight.clear()
        self._new_cycle()
        for task in inflight:
            if not task.done():
                task.cancel()

    def _new_cycle(self):
        self._generation += 1
        self.state = CycleState.IDLE
        self.ticket = None
        self.attempt = None

    def _apply(self, generation: int, state: CycleState, ticket: Optional[Ticket] = None) -> bool:
        if generation != self._generation:
            logger.debug(f"Discarding stale result for cycle {generation} (current {self._generation})")
            return False
        self.state = state
        self.ticket = ticket
        return True

    async def _call(self, generation: int, operation: Callable[[], Awaitable[T]]) -> T:
        task = asyncio.ensure_future(asyncio.wait_for(operation(), timeout=self.timeout_seconds))
        self._inflight.add(task)
        try:
            return await task
        finally:
            self._inflight.discard(task)

    # ------------------------------------------------------------------
    # Operaciones
    # ------------------------------------------------------------------

    async def verify(self, raw_payload: str) -> VerificationOutcome:
        """Resolver un payload escaneado. Nunca escribe en el store."""
        if self.state not in (CycleState.SCANNING, CycleState.IDLE):
            # Un nuevo escaneo reemplaza el resultado anterior
            self._new_cycle()
        generation = self._generation
        attempt = ScanAttempt(
            raw_payload=raw_payload if isinstance(raw_payload, str) else "",
            scanned_at=self._clock(),
        )
        self.attempt = attempt

        extraction = extract_reference(raw_payload)
        if isinstance(extraction, MalformedPayload):
            attempt.resolution = ScanResolution.MALFORMED
            self._apply(generation, CycleState.MALFORMED)
            self._log_attempt(attempt)
            return Malformed(raw_payload=extraction.raw_payload, reason=extraction.reason)

        reference = extraction.reference
        attempt.reference = reference
        self._apply(generation, CycleState.RESOLVING)

        try:
            ticket = await self._call(generation, lambda: self._repository.find_by_reference(reference))
        except asyncio.TimeoutError:
            logger.warning(f"Ticket lookup timed out after {self.timeout_seconds}s: {reference}")
            self._apply(generation, CycleState.LOOKUP_FAILED)
            return LookupFailed(reference=reference, reason="Tiempo de espera agotado")
        except RepositoryError as e:
            self._apply(generation, CycleState.LOOKUP_FAILED)
            return LookupFailed(reference=reference, reason=str(e))

        if ticket is None:
            attempt.resolution = ScanResolution.NOT_FOUND
            self._apply(generation, CycleState.NOT_FOUND)
            self._log_attempt(attempt)
            return NotFound(reference=reference)

        attempt.resolution = ScanResolution.MATCHED
        self._log_attempt(attempt)

        if ticket.is_used:
            self._apply(generation, CycleState.ALREADY_USED, ticket)
            return AlreadyUsed(ticket=ticket)

        self._apply(generation, CycleState.FOUND, ticket)
        return Found(ticket=ticket, admittable=ticket.is_admittable)

    async def admit(self, reference: str, operator: Dict) -> VerificationOutcome:
        """
        Admitir al portador: success -> used vía compare-and-set.

        Args:
            reference: referencia clasificada como success en este ciclo
            operator: usuario autenticado ({'user_id', 'email', 'role'}). El dict
                completo se usa para el chequeo de rol; su user_id (como str) queda
                registrado en verified_by.

        Returns:
            Admitted, AlreadyUsed o AdmitFailed (Found/NotFound si el ticket
            cambió de estado entre el lookup y el click)
        """
        operator_id = str(operator["user_id"])
        if self._access is not None and not await self._access.can_scan(operator):
            raise OperatorNotAuthorized(operator_id)

        # Misma referencia, mismo ciclo, ya resuelta: no se emite una segunda escritura
        if (
            self.state in (CycleState.ADMITTED, CycleState.ALREADY_USED)
            and self.ticket is not None
            and self.ticket.reference == reference
        ):
            return AlreadyUsed(ticket=self.ticket)

        if self.ticket is None or self.ticket.reference != reference or self.state is not CycleState.FOUND:
            logger.debug(f"Admit for {reference} without a matching verified cycle; relying on storage precondition")

        generation = self._generation
        previous_ticket = self.ticket
        self._apply(generation, CycleState.ADMITTING, previous_ticket)

        try:
            result = await self._call(
                generation, lambda: self._repository.compare_and_set_used(reference, operator_id)
            )
        except asyncio.TimeoutError:
            logger.warning(f"Admit timed out after {self.timeout_seconds}s: {reference}")
            self._apply(generation, CycleState.ADMIT_FAILED, previous_ticket)
            return AdmitFailed(reference=reference, reason="Tiempo de espera agotado")
        except RepositoryError as e:
            self._apply(generation, CycleState.ADMIT_FAILED, previous_ticket)
            return AdmitFailed(reference=reference, reason=str(e))

        if isinstance(result, CasAdmitted):
            ticket = result.ticket
            if ticket.status is not TicketStatus.USED or ticket.verified_by != operator_id or ticket.verified_at is None:
                logger.error(
                    f"Storage reported admit for {reference} but returned status={ticket.status.value} "
                    f"verified_by={ticket.verified_by}"
                )
                self._apply(generation, CycleState.ADMIT_FAILED, previous_ticket)
                return AdmitFailed(reference=reference, reason="Respuesta inconsistente del backend")

            logger.info(f"Ticket {reference} admitted by {operator_id} (quantity={ticket.quantity})")
            self._apply(generation, CycleState.ADMITTED, ticket)
            return Admitted(ticket=ticket)

        if isinstance(result, PreconditionFailed):
            return self._classify_precondition_failure(generation, reference, result.ticket)

        raise TypeError(f"Resultado de compare_and_set_used desconocido: {type(result).__name__}")

    def _classify_precondition_failure(
        self, generation: int, reference: str, ticket: Optional[Ticket]
    ) -> VerificationOutcome:
        if ticket is None:
            self._apply(generation, CycleState.NOT_FOUND)
            return NotFound(reference=reference)
        if ticket.is_used:
            logger.info(f"Ticket {reference} already used (verified_by={ticket.verified_by})")
            self._apply(generation, CycleState.ALREADY_USED, ticket)
            return AlreadyUsed(ticket=ticket)
        # Cambió a pending/failed/cancelled entre el lookup y el click
        logger.warning(f"Ticket {reference} no longer admittable: status={ticket.status_label}")
        self._apply(generation, CycleState.FOUND, ticket)
        return Found(ticket=ticket, admittable=False)

    async def operator_tally(self, operator_id: str) -> Optional[int]:
        """Tickets admitidos por el operador (solo display; None si no se pudo consultar)"""
        try:
            return await asyncio.wait_for(
                self._repository.count_used_by(operator_id), timeout=self.timeout_seconds
            )
        except (RepositoryError, asyncio.TimeoutError) as e:
            logger.warning(f"Could not load scanned count for {operator_id}: {e}")
            return None

    def _log_attempt(self, attempt: ScanAttempt):
        logger.info(
            f"Scan {attempt.resolution.value if attempt.resolution else '?'}: "
            f"reference={attempt.reference!r} at {attempt.scanned_at.isoformat()}"
        )
