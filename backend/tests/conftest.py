from datetime import datetime
from decimal import Decimal

import pytest

from finance_core.lifecycle import DocumentLifecycle
from finance_core.lifecycle_wiring import build_lifecycles
from finance_core.permissions import Actor, Role
from tests.fakes import InMemoryUnitOfWork

FIXED_NOW = datetime(2025, 1, 15, 10, 30, 0)


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    """Keep number-collision backoff short in tests."""
    monkeypatch.setattr(DocumentLifecycle, "RETRY_DELAY_MS", 1)


@pytest.fixture
def uow() -> InMemoryUnitOfWork:
    uow = InMemoryUnitOfWork()
    uow.add_project(
        "proj-1",
        manager_id="pm-1",
        team_members=["tm-1", "tm-2"],
        cost=Decimal("0.00"),
        revenue=Decimal("0.00"),
        profit=Decimal("0.00"),
    )
    uow.add_project("proj-2", manager_id="pm-2", team_members=["tm-3"])
    return uow


@pytest.fixture
def lifecycles(uow):
    return build_lifecycles(uow, clock=lambda: FIXED_NOW)


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin-1", role=Role.ADMIN)


@pytest.fixture
def finance() -> Actor:
    return Actor(id="fin-1", role=Role.FINANCE_MANAGER)


@pytest.fixture
def manager() -> Actor:
    return Actor(id="pm-1", role=Role.PROJECT_MANAGER)


@pytest.fixture
def other_manager() -> Actor:
    return Actor(id="pm-2", role=Role.PROJECT_MANAGER)


@pytest.fixture
def member() -> Actor:
    return Actor(id="tm-1", role=Role.TEAM_MEMBER)


@pytest.fixture
def teammate() -> Actor:
    return Actor(id="tm-2", role=Role.TEAM_MEMBER)


@pytest.fixture
def outsider() -> Actor:
    return Actor(id="tm-3", role=Role.TEAM_MEMBER)

