"""Shared pytest fixtures for the pricing negotiation test suite.

Test users (see ``authorization``):

* 1 and 2: commercial managers (1 opens negotiations, 2 approves them)
* 3: director
* 10: plan admin representing health plan 100
* 11: plan admin representing health plan 200
* 12: clinic admin representing clinic 100
* 99: no roles
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterable, Iterator, Sequence
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import Any

import pytest

from pricing_negotiation.catalog import Procedure, Specialty, SqliteCatalog
from pricing_negotiation.config import Settings
from pricing_negotiation.domain.models import Negotiation, NewItem, NewNegotiation, SubjectEntity
from pricing_negotiation.domain.types import ItemDecision, Role, SubjectEntityType
from pricing_negotiation.lifecycle.service import NegotiationService
from pricing_negotiation.notifications.events import NotificationEvent
from pricing_negotiation.state.schema import open_database

CREATOR = 1
APPROVER = 2
DIRECTOR = 3
PLAN_REP = 10

HEALTH_PLAN = SubjectEntity(type=SubjectEntityType.HEALTH_PLAN, id=100)


class FakeAuthorization:
    """In-memory role and ownership tables."""

    def __init__(
        self,
        roles: dict[int, set[Role]],
        ownership: set[tuple[int, SubjectEntityType, int]],
    ) -> None:
        self.roles = roles
        self.ownership = ownership

    def has_role(self, user_id: int, roles: Iterable[Role]) -> bool:
        return bool(self.roles.get(user_id, set()) & set(roles))

    def owns_entity(self, user_id: int, entity_type: SubjectEntityType, entity_id: int) -> bool:
        return (user_id, entity_type, entity_id) in self.ownership


class RecordingNotifications:
    """Notification gateway that keeps every event it receives."""

    def __init__(self) -> None:
        self.sent: list[tuple[NotificationEvent, Negotiation, dict[str, Any]]] = []

    def notify(
        self, event: NotificationEvent, negotiation: Negotiation, extra: dict[str, Any]
    ) -> None:
        self.sent.append((event, negotiation, extra))

    @property
    def events(self) -> list[NotificationEvent]:
        return [event for event, _, _ in self.sent]


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def conn() -> Iterator[sqlite3.Connection]:
    """In-memory database with the negotiation schema."""
    connection = open_database(":memory:")
    yield connection
    connection.close()


@pytest.fixture
def catalog(conn: sqlite3.Connection) -> SqliteCatalog:
    """Catalog with active procedures 1-6, inactive procedure 7, and specialty 1."""
    cat = SqliteCatalog(conn)
    for procedure_id in range(1, 7):
        cat.add_procedure(
            Procedure(
                id=procedure_id, code=f"P{procedure_id:03d}", name=f"Procedure {procedure_id}"
            )
        )
    cat.add_procedure(Procedure(id=7, code="P007", name="Retired procedure", active=False))
    cat.add_specialty(Specialty(id=1, name="Cardiology"))
    return cat


@pytest.fixture
def authorization() -> FakeAuthorization:
    """Role and ownership tables for the test users."""
    return FakeAuthorization(
        roles={
            1: {Role.COMMERCIAL_MANAGER},
            2: {Role.COMMERCIAL_MANAGER},
            3: {Role.DIRECTOR},
            10: {Role.PLAN_ADMIN},
            11: {Role.PLAN_ADMIN},
            12: {Role.CLINIC_ADMIN},
        },
        ownership={
            (10, SubjectEntityType.HEALTH_PLAN, 100),
            (11, SubjectEntityType.HEALTH_PLAN, 200),
            (12, SubjectEntityType.CLINIC, 100),
        },
    )


@pytest.fixture
def notifications() -> RecordingNotifications:
    return RecordingNotifications()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 3, 2, 9, 0, tzinfo=UTC))


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)  # type: ignore[call-arg]


@pytest.fixture
def service(
    conn: sqlite3.Connection,
    authorization: FakeAuthorization,
    notifications: RecordingNotifications,
    catalog: SqliteCatalog,
    settings: Settings,
    clock: FixedClock,
) -> NegotiationService:
    """NegotiationService wired to the in-memory fixtures."""
    return NegotiationService(
        conn, authorization, notifications, catalog, settings=settings, clock=clock
    )


@pytest.fixture
def new_request() -> Callable[..., NewNegotiation]:
    """Factory for creation requests; item *n* uses procedure *n*."""

    def _build(values: Sequence[str] = ("100", "200"), **overrides: Any) -> NewNegotiation:
        data: dict[str, Any] = {
            "entity": HEALTH_PLAN,
            "title": "2026 consultation prices",
            "start_date": date(2026, 4, 1),
            "end_date": date(2027, 3, 31),
            "items": [
                NewItem(procedure_id=index, proposed_value=Decimal(value))
                for index, value in enumerate(values, start=1)
            ],
        }
        data.update(overrides)
        return NewNegotiation(**data)

    return _build


@pytest.fixture
def submitted(
    service: NegotiationService, new_request: Callable[..., NewNegotiation]
) -> Callable[..., Negotiation]:
    """Factory for a negotiation created by user 1 and submitted."""

    def _build(values: Sequence[str] = ("100", "200"), **overrides: Any) -> Negotiation:
        draft = service.create(CREATOR, new_request(values, **overrides))
        assert draft.id is not None
        return service.submit(draft.id, CREATOR)

    return _build


@pytest.fixture
def pending(
    service: NegotiationService, submitted: Callable[..., Negotiation]
) -> Callable[..., Negotiation]:
    """Factory for a negotiation whose items were all approved by the plan representative."""

    def _build(values: Sequence[str] = ("100", "200"), **overrides: Any) -> Negotiation:
        negotiation = submitted(values, **overrides)
        for item in negotiation.items:
            assert item.id is not None
            negotiation = service.respond_to_item(item.id, PLAN_REP, ItemDecision.APPROVED)
        return negotiation

    return _build


@pytest.fixture
def approved(
    service: NegotiationService, pending: Callable[..., Negotiation]
) -> Callable[..., Negotiation]:
    """Factory for a negotiation approved internally by user 2."""

    def _build(values: Sequence[str] = ("100", "200"), **overrides: Any) -> Negotiation:
        negotiation = pending(values, **overrides)
        assert negotiation.id is not None
        return service.process_approval(negotiation.id, APPROVER, approved=True)

    return _build
