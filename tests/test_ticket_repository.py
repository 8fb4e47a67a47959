import asyncio
import pytest
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy.exc import OperationalError

from services.ticket_validation.models.ticket import Ticket, TicketStatus
from services.ticket_validation.services.ticket_repository import (
    CasAdmitted,
    PreconditionFailed,
    RepositoryError,
    SqlTicketRepository,
)
from services.ticket_validation.services.outcomes import Found
from services.ticket_validation.services.presenter import render_outcome
from services.ticket_validation.services.verification_controller import VerificationController

NOW = datetime(2026, 3, 14, 21, 30, tzinfo=timezone.utc)


def _record(tx_ref="TEST-100", status="success", verified_by=None, verified_at=None):
    return SimpleNamespace(
        tx_ref=tx_ref,
        status=status,
        quantity=2,
        customer_name="Ana Pérez",
        customer_email="ana@example.com",
        customer_phone=None,
        event_title="Festival de Verano",
        verified_at=verified_at,
        verified_by=verified_by,
    )


def _result(rowcount=None, one=None, one_or_none=None, scalar=None):
    result = MagicMock()
    result.rowcount = rowcount
    result.scalar_one.return_value = one
    result.scalar_one_or_none.return_value = one_or_none
    result.scalar.return_value = scalar
    return result


def _session_factory(*results):
    session = AsyncMock()
    session.execute.side_effect = list(results)
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=session)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory, session


# --- Ticket model ---

def test_ticket_from_orm_row_maps_columns():
    ticket = Ticket.model_validate(_record(status="SUCCESSFUL"))

    assert ticket.reference == "TEST-100"
    assert ticket.status is TicketStatus.SUCCESS
    assert ticket.holder_name == "Ana Pérez"
    assert ticket.event_label == "Festival de Verano"
    assert ticket.is_admittable


@pytest.mark.parametrize("quantity", [None, 0, -3])
def test_ticket_invalid_quantity_counts_as_one(quantity):
    ticket = Ticket(reference="Q-1", status="success", quantity=quantity)

    assert ticket.quantity == 1


def test_ticket_status_synonyms():
    assert Ticket(reference="S-1", status="Canceled").status is TicketStatus.CANCELLED
    assert Ticket(reference="S-2", status=" completed ").status is TicketStatus.SUCCESS


def test_unrecognized_status_is_never_admittable():
    ticket = Ticket.from_record(_record(status=" Refunded "))

    assert ticket.status is TicketStatus.UNKNOWN
    assert not ticket.is_admittable
    assert not ticket.is_used
    assert ticket.status_label == "Refunded"


# --- SqlTicketRepository ---

async def test_sql_find_returns_ticket():
    factory, _ = _session_factory(_result(one_or_none=_record()))
    repo = SqlTicketRepository(factory)

    ticket = await repo.find_by_reference("TEST-100")

    assert ticket.reference == "TEST-100"
    assert ticket.quantity == 2


async def test_sql_find_missing_returns_none():
    factory, _ = _session_factory(_result(one_or_none=None))

    assert await SqlTicketRepository(factory).find_by_reference("GHOST-1") is None


async def test_sql_find_retries_transient_network_error():
    factory, session = _session_factory(ConnectionResetError("reset"), _result(one_or_none=_record()))
    repo = SqlTicketRepository(factory, lookup_retries=1)

    ticket = await repo.find_by_reference("TEST-100")

    assert ticket is not None
    assert session.execute.await_count == 2


async def test_sql_find_wraps_database_errors():
    factory, _ = _session_factory(OperationalError("SELECT", {}, Exception("connection refused")))

    with pytest.raises(RepositoryError):
        await SqlTicketRepository(factory).find_by_reference("TEST-100")


async def test_sql_find_unrecognized_status_renders_as_not_admittable():
    factory, _ = _session_factory(_result(one_or_none=_record(status="refunded")))
    controller = VerificationController(SqlTicketRepository(factory))

    outcome = await controller.verify("TEST-100")

    assert isinstance(outcome, Found)
    assert outcome.admittable is False
    view = render_outcome(outcome)
    assert view["can_admit"] is False
    assert "refunded" in view["title"]
    assert view["ticket"]["status"] == "refunded"


async def test_sql_find_invalid_row_is_repository_error():
    factory, _ = _session_factory(_result(one_or_none=_record(status=None)))

    with pytest.raises(RepositoryError):
        await SqlTicketRepository(factory).find_by_reference("TEST-100")


async def test_sql_cas_is_a_single_conditional_update():
    used = _record(status="used", verified_by="op1", verified_at=NOW)
    factory, session = _session_factory(_result(rowcount=1), _result(one=used))
    repo = SqlTicketRepository(factory, clock=lambda: NOW)

    result = await repo.compare_and_set_used("TEST-100", "op1")

    assert isinstance(result, CasAdmitted)
    assert result.ticket.status is TicketStatus.USED
    assert result.ticket.verified_by == "op1"
    session.commit.assert_awaited_once()

    update_stmt = session.execute.await_args_list[0].args[0]
    sql = str(update_stmt)
    assert sql.startswith("UPDATE tickets")
    assert "lower(tickets.status) IN" in sql
    assert "tickets.tx_ref =" in sql


async def test_sql_cas_precondition_failed_returns_current_ticket():
    used = _record(status="used", verified_by="op1", verified_at=NOW)
    factory, session = _session_factory(_result(rowcount=0), _result(one_or_none=used))

    result = await SqlTicketRepository(factory).compare_and_set_used("TEST-100", "op2")

    assert isinstance(result, PreconditionFailed)
    assert result.ticket.verified_by == "op1"
    session.commit.assert_not_awaited()
    session.rollback.assert_awaited_once()


async def test_sql_cas_missing_reference():
    factory, _ = _session_factory(_result(rowcount=0), _result(one_or_none=None))

    result = await SqlTicketRepository(factory).compare_and_set_used("GHOST-1", "op1")

    assert result == PreconditionFailed(None)


async def test_sql_cas_is_not_retried():
    factory, session = _session_factory(ConnectionResetError("reset"), _result(rowcount=1))

    with pytest.raises(RepositoryError):
        await SqlTicketRepository(factory).compare_and_set_used("TEST-100", "op1")
    assert session.execute.await_count == 1


async def test_sql_count_used_by():
    factory, _ = _session_factory(_result(scalar=3))

    assert await SqlTicketRepository(factory).count_used_by("op1") == 3


# --- InMemoryTicketRepository ---

async def test_memory_cas_transitions_once(repository):
    first = await repository.compare_and_set_used("TEST-100", "op1")
    second = await repository.compare_and_set_used("TEST-100", "op2")

    assert isinstance(first, CasAdmitted)
    assert first.ticket.verified_by == "op1"
    assert isinstance(second, PreconditionFailed)
    assert second.ticket.verified_by == "op1"
    assert repository.writes == 1


async def test_memory_cas_requires_success(repository):
    result = await repository.compare_and_set_used("PEND-1", "op1")

    assert isinstance(result, PreconditionFailed)
    assert result.ticket.status is TicketStatus.PENDING
    assert repository.writes == 0


async def test_memory_concurrent_cas_has_single_winner(repository):
    repository.latency = 0.01

    results = await asyncio.gather(*[
        repository.compare_and_set_used("TEST-100", f"op{i}") for i in range(5)
    ])

    winners = [r for r in results if isinstance(r, CasAdmitted)]
    assert len(winners) == 1
    assert repository.get("TEST-100").verified_by == winners[0].ticket.verified_by
    assert repository.writes == 1


async def test_memory_count_used_by(repository):
    await repository.compare_and_set_used("TEST-100", "op-9")

    assert await repository.count_used_by("op-9") == 2
    assert await repository.count_used_by("nobody") == 0


def test_memory_rejects_duplicate_reference(repository, make_ticket):
    with pytest.raises(ValueError):
        repository.add(make_ticket("TEST-100"))
