"""
Acceso a tickets para el núcleo de verificación.

El controlador solo depende de tres operaciones:
- find_by_reference: lectura
- compare_and_set_used: success -> used en UNA escritura condicional
- count_used_by: contador del operador (solo display)

compare_and_set_used es el único lugar que arbitra admisiones concurrentes
sobre la misma referencia.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Iterable, Optional, Protocol, Union
import asyncio
import logging

from pydantic import ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from services.ticket_validation.models.ticket import Ticket, TicketStatus
from shared.database.models import Ticket as TicketRecord
from shared.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

# Valores almacenados que cuentan como "pagado" (ver STATUS_SYNONYMS)
ADMITTABLE_DB_STATUSES = ("success", "successful", "completed")


class RepositoryError(Exception):
    """Falla de transporte o del backend; la operación se puede reintentar"""


@dataclass(frozen=True)
class CasAdmitted:
    ticket: Ticket


@dataclass(frozen=True)
class PreconditionFailed:
    """El ticket no estaba en success al momento de escribir"""
    ticket: Optional[Ticket]


CasResult = Union[CasAdmitted, PreconditionFailed]


class TicketRepository(Protocol):
    async def find_by_reference(self, reference: str) -> Optional[Ticket]:
        ...

    async def compare_and_set_used(self, reference: str, operator_id: str) -> CasResult:
        ...

    async def count_used_by(self, operator_id: str) -> int:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SqlTicketRepository:
    """Repositorio sobre la tabla `tickets` (SQLAlchemy async)"""

    def __init__(self, session_factory, clock: Callable[[], datetime] = _utcnow, lookup_retries: int = 2):
        self._session_factory = session_factory
        self._clock = clock
        self._lookup_retries = lookup_retries

    async def _fetch(self, reference: str) -> Optional[Ticket]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketRecord).where(TicketRecord.tx_ref == reference)
            )
            record = result.scalar_one_or_none()
            return Ticket.from_record(record) if record is not None else None

    async def find_by_reference(self, reference: str) -> Optional[Ticket]:
        try:
            # Solo las lecturas se reintentan ante errores de red transitorios
            return await retry_with_backoff(
                lambda: self._fetch(reference),
                max_retries=self._lookup_retries,
                exceptions=(OSError,),
            )
        except (SQLAlchemyError, OSError, ValidationError) as e:
            logger.warning(f"Ticket lookup failed for {reference}: {type(e).__name__}: {e}")
            raise RepositoryError(f"No se pudo consultar el ticket: {e}") from e

    async def compare_and_set_used(self, reference: str, operator_id: str) -> CasResult:
        now = self._clock()
        stmt = (
            update(TicketRecord)
            .where(
                TicketRecord.tx_ref == reference,
                func.lower(TicketRecord.status).in_(ADMITTABLE_DB_STATUSES),
            )
            .values(
                status=TicketStatus.USED.value,
                verified_at=now,
                verified_by=operator_id,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                if result.rowcount == 1:
                    await session.commit()
                    updated = await session.execute(
                        select(TicketRecord).where(TicketRecord.tx_ref == reference)
                    )
                    return CasAdmitted(Ticket.from_record(updated.scalar_one()))

                await session.rollback()
                current = await session.execute(
                    select(TicketRecord).where(TicketRecord.tx_ref == reference)
                )
                record = current.scalar_one_or_none()
                return PreconditionFailed(Ticket.from_record(record) if record is not None else None)
        except (SQLAlchemyError, OSError, ValidationError) as e:
            logger.error(f"Admit write failed for {reference}: {type(e).__name__}: {e}")
            raise RepositoryError(f"No se pudo marcar el ticket como usado: {e}") from e

    async def count_used_by(self, operator_id: str) -> int:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(func.count(TicketRecord.id)).where(
                        TicketRecord.status == TicketStatus.USED.value,
                        TicketRecord.verified_by == operator_id,
                    )
                )
                return result.scalar() or 0
        except (SQLAlchemyError, OSError) as e:
            raise RepositoryError(f"No se pudo contar tickets escaneados: {e}") from e


class InMemoryTicketRepository:
    """
    Doble de pruebas con la misma semántica que la tabla real.

    `latency` simula el round-trip al backend (se cede el loop antes de tomar
    el lock, así dos admisiones concurrentes realmente compiten) y `fault`
    permite inyectar fallas por operación.
    """

    def __init__(
        self,
        tickets: Iterable[Ticket] = (),
        clock: Callable[[], datetime] = _utcnow,
        latency: float = 0.0,
        fault: Optional[Callable[[str, str], Awaitable[None]]] = None,
    ):
        self._tickets: Dict[str, Ticket] = {}
        for ticket in tickets:
            self.add(ticket)
        self._clock = clock
        self._lock = asyncio.Lock()
        self.latency = latency
        self.fault = fault
        self.writes = 0

    def add(self, ticket: Ticket):
        if ticket.reference in self._tickets:
            raise ValueError(f"Referencia duplicada: {ticket.reference}")
        self._tickets[ticket.reference] = ticket

    def get(self, reference: str) -> Optional[Ticket]:
        return self._tickets.get(reference)

    async def _roundtrip(self, operation: str, reference: str):
        await asyncio.sleep(self.latency)
        if self.fault is not None:
            await self.fault(operation, reference)

    async def find_by_reference(self, reference: str) -> Optional[Ticket]:
        await self._roundtrip("find", reference)
        return self._tickets.get(reference)

    async def compare_and_set_used(self, reference: str, operator_id: str) -> CasResult:
        await self._roundtrip("cas", reference)
        async with self._lock:
            current = self._tickets.get(reference)
            if current is None or current.status is not TicketStatus.SUCCESS:
                return PreconditionFailed(current)

            updated = current.model_copy(update={
                "status": TicketStatus.USED,
                "verified_at": self._clock(),
                "verified_by": operator_id,
            })
            self._tickets[reference] = updated
            self.writes += 1
            return CasAdmitted(updated)

    async def count_used_by(self, operator_id: str) -> int:
        await self._roundtrip("count", operator_id)
        return sum(
            1 for ticket in self._tickets.values()
            if ticket.status is TicketStatus.USED and ticket.verified_by == operator_id
        )
