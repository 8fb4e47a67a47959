import asyncio
import pytest
from unittest.mock import AsyncMock

from services.ticket_validation.models.ticket import TicketStatus
from services.ticket_validation.services.outcomes import (
    AdmitFailed,
    Admitted,
    AlreadyUsed,
    Found,
    LookupFailed,
    Malformed,
    NotFound,
    ScanResolution,
)
from services.ticket_validation.services.ticket_repository import (
    CasAdmitted,
    InMemoryTicketRepository,
    RepositoryError,
)
from services.ticket_validation.services.verification_controller import (
    CycleState,
    OperatorNotAuthorized,
    VerificationController,
)
from shared.auth.access import ScannerAccess

from conftest import FIXED_NOW

OP1 = {"user_id": "op1", "email": "op1@venue.cl", "role": "scanner"}
OP2 = {"user_id": "op2", "email": "op2@venue.cl", "role": "scanner"}


def _controller(repository, **kwargs):
    access = ScannerAccess(AsyncMock(return_value="scanner"))
    return VerificationController(repository, access=access, **kwargs)


# --- End-to-end ---

async def test_verify_then_admit_then_second_operator(repository):
    controller = _controller(repository)

    controller.begin_scan()
    found = await controller.verify("TEST-100")
    assert isinstance(found, Found)
    assert found.admittable
    assert found.ticket.quantity == 2
    assert controller.state is CycleState.FOUND

    admitted = await controller.admit("TEST-100", OP1)
    assert isinstance(admitted, Admitted)
    assert admitted.ticket.status is TicketStatus.USED
    assert admitted.ticket.verified_by == "op1"
    assert admitted.ticket.verified_at == FIXED_NOW
    assert controller.state is CycleState.ADMITTED

    other = _controller(repository)
    other.begin_scan()
    second = await other.admit("TEST-100", OP2)
    assert isinstance(second, AlreadyUsed)
    assert second.ticket.verified_by == "op1"


async def test_ghost_reference_from_json_payload(repository):
    controller = _controller(repository)

    outcome = await controller.verify('{"tx_ref":"GHOST-1"}')

    assert outcome == NotFound(reference="GHOST-1")
    assert controller.attempt.resolution is ScanResolution.NOT_FOUND
    assert repository.writes == 0


# --- verify ---

async def test_verify_malformed_payload_skips_repository():
    repo = AsyncMock()
    controller = _controller(repo)

    outcome = await controller.verify("{}")

    assert isinstance(outcome, Malformed)
    assert controller.state is CycleState.MALFORMED
    repo.find_by_reference.assert_not_awaited()


async def test_verify_used_ticket_is_already_used(repository):
    outcome = await _controller(repository).verify("USED-1")

    assert isinstance(outcome, AlreadyUsed)
    assert outcome.ticket.verified_by == "op-9"


@pytest.mark.parametrize("reference", ["PEND-1", "CANC-1"])
async def test_verify_non_admittable_status_is_surfaced(repository, reference):
    outcome = await _controller(repository).verify(reference)

    assert isinstance(outcome, Found)
    assert not outcome.admittable


async def test_verify_never_writes(repository):
    controller = _controller(repository)

    await controller.verify("TEST-100")
    await controller.verify("TEST-100")

    assert repository.get("TEST-100").status is TicketStatus.SUCCESS
    assert repository.writes == 0


async def test_verify_repository_error_is_lookup_failed():
    repo = AsyncMock()
    repo.find_by_reference.side_effect = RepositoryError("connection refused")
    controller = _controller(repo)

    outcome = await controller.verify("TEST-100")

    assert isinstance(outcome, LookupFailed)
    assert outcome.reference == "TEST-100"
    assert controller.state is CycleState.LOOKUP_FAILED


async def test_verify_timeout_is_lookup_failed(repository):
    repository.latency = 1.0
    controller = _controller(repository, timeout_seconds=0.01)

    outcome = await controller.verify("TEST-100")

    assert isinstance(outcome, LookupFailed)


async def test_cancel_discards_inflight_lookup(repository):
    repository.latency = 0.05
    controller = _controller(repository)
    controller.begin_scan()

    task = asyncio.create_task(controller.verify("TEST-100"))
    await asyncio.sleep(0.01)
    controller.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert controller.state is CycleState.IDLE
    assert controller.ticket is None


async def test_cancel_stops_every_overlapping_call(repository):
    repository.latency = 0.05
    controller = _controller(repository)
    controller.begin_scan()

    first = asyncio.create_task(controller.verify("TEST-100"))
    await asyncio.sleep(0.01)
    second = asyncio.create_task(controller.verify("PEND-1"))
    await asyncio.sleep(0.01)
    controller.cancel()

    results = await asyncio.gather(first, second, return_exceptions=True)

    assert all(isinstance(r, asyncio.CancelledError) for r in results)
    assert controller.state is CycleState.IDLE
    assert controller.ticket is None


async def test_result_of_old_cycle_does_not_touch_state():
    release = asyncio.Event()
    repo = InMemoryTicketRepository()

    async def slow_fault(operation, reference):
        await release.wait()

    repo.fault = slow_fault
    controller = _controller(repo)

    task = asyncio.create_task(controller.verify("TEST-100"))
    await asyncio.sleep(0)
    controller.reset()
    controller.begin_scan()
    release.set()

    # El llamador recibe el resultado, pero el ciclo nuevo no cambia
    assert await task == NotFound(reference="TEST-100")
    assert controller.state is CycleState.SCANNING
    assert controller.attempt is None


# --- admit ---

async def test_concurrent_admits_single_winner(repository):
    repository.latency = 0.01
    first, second = _controller(repository), _controller(repository)
    await first.verify("TEST-100")
    await second.verify("TEST-100")

    results = await asyncio.gather(
        first.admit("TEST-100", OP1),
        second.admit("TEST-100", OP2),
    )

    assert sorted(type(r).__name__ for r in results) == ["Admitted", "AlreadyUsed"]
    winner = next(r for r in results if isinstance(r, Admitted))
    stored = repository.get("TEST-100")
    assert stored.status is TicketStatus.USED
    assert stored.verified_by == winner.ticket.verified_by
    assert repository.writes == 1


async def test_readmit_is_always_already_used(repository):
    for _ in range(3):
        outcome = await _controller(repository).admit("USED-1", OP1)
        assert isinstance(outcome, AlreadyUsed)
        assert outcome.ticket.verified_by == "op-9"
    assert repository.writes == 0


async def test_repeated_admit_in_same_cycle_issues_no_second_write(repository):
    controller = _controller(repository)
    await controller.verify("TEST-100")
    await controller.admit("TEST-100", OP1)

    repository.fault = AsyncMock(side_effect=AssertionError("unexpected call"))
    outcome = await controller.admit("TEST-100", OP1)

    assert isinstance(outcome, AlreadyUsed)
    assert repository.writes == 1


async def test_admit_after_cancellation_between_lookup_and_click(repository, make_ticket):
    controller = _controller(repository)
    await controller.verify("TEST-100")
    repository._tickets["TEST-100"] = make_ticket("TEST-100", status="cancelled")

    outcome = await controller.admit("TEST-100", OP1)

    assert isinstance(outcome, Found)
    assert not outcome.admittable
    assert outcome.ticket.status is TicketStatus.CANCELLED


async def test_admit_unknown_reference_is_not_found(repository):
    assert await _controller(repository).admit("GHOST-1", OP1) == NotFound(reference="GHOST-1")


async def test_admit_transport_failure_is_retryable(repository):
    async def broken(operation, reference):
        if operation == "cas":
            raise RepositoryError("network down")

    repository.fault = broken
    controller = _controller(repository)
    await controller.verify("TEST-100")

    outcome = await controller.admit("TEST-100", OP1)

    assert isinstance(outcome, AdmitFailed)
    assert controller.state is CycleState.ADMIT_FAILED

    repository.fault = None
    retried = await controller.admit("TEST-100", OP1)
    assert isinstance(retried, Admitted)


async def test_admit_timeout_is_admit_failed(repository):
    repository.latency = 1.0
    controller = _controller(repository, timeout_seconds=0.01)

    outcome = await controller.admit("TEST-100", OP1)

    assert isinstance(outcome, AdmitFailed)


async def test_admit_rejects_inconsistent_storage_response(make_ticket):
    repo = AsyncMock()
    repo.compare_and_set_used.return_value = CasAdmitted(
        make_ticket("TEST-100", status="used", verified_by="someone-else", verified_at=FIXED_NOW)
    )

    outcome = await _controller(repo).admit("TEST-100", OP1)

    assert isinstance(outcome, AdmitFailed)


async def test_admit_records_user_id_as_verified_by(repository):
    operator = {"user_id": 42, "email": "door@venue.cl", "role": "scanner"}
    controller = _controller(repository)

    outcome = await controller.admit("TEST-100", operator)

    assert isinstance(outcome, Admitted)
    assert outcome.ticket.verified_by == "42"
    assert repository.get("TEST-100").verified_by == "42"
    assert await controller.operator_tally("42") == 1


async def test_admit_requires_scanner_role(repository):
    access = ScannerAccess(AsyncMock(return_value="user"))
    controller = VerificationController(repository, access=access)

    with pytest.raises(OperatorNotAuthorized):
        await controller.admit("TEST-100", {"user_id": "guest", "role": "user"})
    assert repository.writes == 0


# --- tally ---

async def test_operator_tally(repository):
    controller = _controller(repository)
    await controller.admit("TEST-100", OP1)

    assert await controller.operator_tally("op1") == 1


async def test_operator_tally_failure_is_none():
    repo = AsyncMock()
    repo.count_used_by.side_effect = RepositoryError("down")

    assert await _controller(repo).operator_tally("op1") is None
