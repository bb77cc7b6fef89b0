from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.engine import SessionLifecycleEngine
from app.models import ParkingLot, ParkingSession, PaymentStatus, UserPlate, utcnow
from app.results import LotUpdateResult, PreAuthResponse, PriceResult, UserPlateListResult


def make_session(id, plate="AB-12-CD", lot_id=1, started=None, stopped=None, cost=None,
                 status=PaymentStatus.PRE_AUTHORIZED):
    return ParkingSession(
        id=id,
        license_plate=plate,
        parking_lot_id=lot_id,
        started=started or utcnow() - timedelta(hours=2),
        stopped=stopped,
        cost=cost,
        payment_status=status,
    )


def make_lot(id=1, capacity=50, reserved=10, tariff="2.50", day_tariff="20.00"):
    return ParkingLot(
        id=id, name=f"Lot {id}", capacity=capacity, reserved=reserved,
        tariff=Decimal(tariff), day_tariff=Decimal(day_tariff), version=1,
    )


@dataclass
class UpdateCall:
    session_id: int
    stopped: object
    cost: object
    payment_status: PaymentStatus
    fields: frozenset


class FakeSessionStore:
    def __init__(self, sessions=()):
        self.rows = {s.id: s for s in sessions}
        self.next_id = max(self.rows, default=0) + 1
        self.created = []
        self.updates = []
        self.deleted = []
        self.queried = []
        self.create_ok = True
        self.create_error = None
        self.update_ok = True
        self.update_error = None
        self.delete_ok = True

    async def get_by_id(self, session_id):
        self.queried.append("get_by_id")
        return self.rows.get(session_id)

    async def get_active_by_plate(self, plate):
        self.queried.append("get_active_by_plate")
        return next((s for s in self.rows.values() if s.license_plate == plate and s.stopped is None), None)

    async def get_by_lot(self, lot_id):
        self.queried.append("get_by_lot")
        return [s for s in self.rows.values() if s.parking_lot_id == lot_id]

    async def get_by_plate(self, plate):
        self.queried.append("get_by_plate")
        return [s for s in self.rows.values() if s.license_plate == plate]

    async def get_by_status(self, status):
        self.queried.append("get_by_status")
        return [s for s in self.rows.values() if s.payment_status == status]

    async def get_all(self):
        self.queried.append("get_all")
        return list(self.rows.values())

    async def get_active(self):
        self.queried.append("get_active")
        return [s for s in self.rows.values() if s.stopped is None]

    async def get_recent_by_plate(self, plate, duration):
        self.queried.append("get_recent_by_plate")
        cutoff = utcnow() - duration
        return [s for s in self.rows.values() if s.license_plate == plate and s.started >= cutoff]

    async def create_with_id(self, session):
        self.created.append(session)
        if self.create_error is not None:
            raise self.create_error
        if not self.create_ok:
            return False, 0
        session_id = self.next_id
        self.next_id += 1
        self.rows[session_id] = session
        return True, session_id

    async def update(self, session, changeset):
        self.updates.append(UpdateCall(
            session.id, session.stopped, session.cost, session.payment_status,
            frozenset(changeset.model_fields_set),
        ))
        if self.update_error is not None:
            raise self.update_error
        if not self.update_ok:
            return False
        self.rows[session.id] = session
        return True

    async def delete(self, session):
        self.deleted.append(session.id)
        if not self.delete_ok:
            return False
        return self.rows.pop(session.id, None) is not None

    async def count(self):
        return len(self.rows)


class FakeLotService:
    def __init__(self, *lots):
        self.lots = {lot.id: lot for lot in lots}
        self.updates = []
        self.results = []
        self.error = None

    async def get_by_id(self, lot_id):
        return self.lots.get(lot_id)

    async def update_by_id(self, lot, lot_id):
        self.updates.append((lot_id, lot.reserved))
        if self.error is not None:
            raise self.error
        if self.results:
            return self.results.pop(0)
        return LotUpdateResult.Success()


class FakePricing:
    def __init__(self, price="10.00"):
        self.price = Decimal(price)
        self.error = None
        self.calls = []

    def calculate_cost(self, lot, start, stop):
        self.calls.append((lot.id, start, stop))
        if self.error is not None:
            return PriceResult.Error(self.error)
        return PriceResult.Success(self.price, 2, 0)


class FakePayments:
    def __init__(self):
        self.approved = True
        self.reason = None
        self.calls = []

    async def preauthorize(self, card_token, amount, simulate_insufficient_funds=False):
        self.calls.append((card_token, amount, simulate_insufficient_funds))
        if simulate_insufficient_funds:
            return PreAuthResponse(approved=False, reason="Insufficient funds")
        return PreAuthResponse(approved=self.approved, reason=self.reason)


class FakeGate:
    def __init__(self):
        self.opens = True
        self.error = None
        self.calls = []

    async def open_gate(self, lot_id, license_plate):
        self.calls.append((lot_id, license_plate))
        if self.error is not None:
            raise self.error
        return self.opens


class FakePlateDirectory:
    def __init__(self, plates=()):
        self.plates = list(plates)

    async def get_plates_by_user(self, user_id):
        owned = [p for p in self.plates if p.user_id == user_id]
        if not owned:
            return UserPlateListResult.NotFound()
        return UserPlateListResult.Success(owned)


def make_plate(user_id, plate, created_at):
    return UserPlate(user_id=user_id, license_plate=plate, created_at=created_at)


@pytest.fixture
def fakes():
    return SimpleNamespace(
        sessions=FakeSessionStore(),
        lots=FakeLotService(make_lot()),
        pricing=FakePricing(),
        payments=FakePayments(),
        gate=FakeGate(),
    )


@pytest.fixture
def engine(fakes):
    return SessionLifecycleEngine(
        sessions=fakes.sessions,
        lots=fakes.lots,
        pricing=fakes.pricing,
        payments=fakes.payments,
        gate=fakes.gate,
    )


@pytest.fixture
def t0():
    return datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)
