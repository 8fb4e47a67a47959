# tests/conftest.py

import pytest
from datetime import datetime, timezone

from services.ticket_validation.models.ticket import Ticket
from services.ticket_validation.services.ticket_repository import InMemoryTicketRepository
from shared.utils.rate_limiter import limiter

FIXED_NOW = datetime(2026, 3, 14, 21, 30, tzinfo=timezone.utc)


def _make_ticket(reference: str = "TEST-100", status: str = "success", **overrides) -> Ticket:
    data = {
        "reference": reference,
        "status": status,
        "quantity": 2,
        "holder_name": "Ana Pérez",
        "holder_email": "ana@example.com",
        "holder_phone": "+56911111111",
        "event_label": "Festival de Verano",
    }
    data.update(overrides)
    return Ticket(**data)


@pytest.fixture
def make_ticket():
    return _make_ticket


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def repository(clock):
    """Repositorio en memoria con un ticket por estado relevante"""
    return InMemoryTicketRepository(
        [
            _make_ticket("TEST-100"),
            _make_ticket("PEND-1", status="pending", quantity=1),
            _make_ticket("CANC-1", status="cancelled"),
            _make_ticket(
                "USED-1",
                status="used",
                verified_at=datetime(2026, 3, 14, 20, 0, tzinfo=timezone.utc),
                verified_by="op-9",
            ),
        ],
        clock=clock,
    )


@pytest.fixture(autouse=True)
def disable_rate_limits():
    limiter.enabled = False
    yield
    limiter.enabled = True
