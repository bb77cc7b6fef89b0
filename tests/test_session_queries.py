from datetime import timedelta

import pytest

from app.models import PaymentStatus, utcnow
from app.results import GetSessionListResult, GetSessionResult
from conftest import make_session


@pytest.fixture
def seeded(fakes):
    now = utcnow()
    fakes.sessions.rows.update({
        1: make_session(1, plate="AB-12-CD", lot_id=1, started=now - timedelta(days=3),
                        stopped=now - timedelta(days=3) + timedelta(hours=1), status=PaymentStatus.PAID),
        2: make_session(2, plate="AB-12-CD", lot_id=2, started=now - timedelta(minutes=30)),
        3: make_session(3, plate="WX-99-YZ", lot_id=1, started=now - timedelta(hours=5)),
    })
    return fakes


async def test_get_by_id(engine, seeded):
    result = await engine.get_session_by_id(2)

    assert isinstance(result, GetSessionResult.Success)
    assert result.session.id == 2
    assert await engine.get_session_by_id(99) == GetSessionResult.NotFound()


async def test_active_by_plate_is_case_insensitive(engine, seeded):
    result = await engine.get_active_session_by_license_plate("ab-12-cd")

    assert isinstance(result, GetSessionResult.Success)
    assert result.session.id == 2


async def test_by_lot(engine, seeded):
    result = await engine.get_sessions_by_lot(1)

    assert sorted(s.id for s in result.sessions) == [1, 3]
    assert await engine.get_sessions_by_lot(77) == GetSessionListResult.NotFound()


async def test_by_plate(engine, seeded):
    result = await engine.get_sessions_by_license_plate("ab-12-cd")

    assert sorted(s.id for s in result.sessions) == [1, 2]


@pytest.mark.parametrize("raw, expected", [
    ("Paid", [1]),
    ("preauthorized", [2, 3]),
    ("PAID", [1]),
])
async def test_by_payment_status(engine, seeded, raw, expected):
    result = await engine.get_sessions_by_payment_status(raw)

    assert sorted(s.id for s in result.sessions) == expected


async def test_payment_status_with_no_matches_is_not_found(engine, seeded):
    assert await engine.get_sessions_by_payment_status("Failed") == GetSessionListResult.NotFound()


@pytest.mark.parametrize("raw", ["NotARealStatus", None, " ", ""])
async def test_invalid_payment_status_skips_the_store(engine, fakes, raw):
    result = await engine.get_sessions_by_payment_status(raw)

    assert isinstance(result, GetSessionListResult.InvalidInput)
    assert "is not a valid payment status" in result.message
    assert fakes.sessions.queried == []


async def test_all_and_active(engine, seeded):
    all_sessions = await engine.get_all_sessions()
    active = await engine.get_active_sessions()

    assert len(all_sessions.sessions) == 3
    assert sorted(s.id for s in active.sessions) == [2, 3]


async def test_recent_by_plate(engine, seeded):
    result = await engine.get_recent_sessions_by_license_plate("ab-12-cd", timedelta(hours=1))

    assert [s.id for s in result.sessions] == [2]


@pytest.mark.parametrize("query", [
    lambda e: e.get_all_sessions(),
    lambda e: e.get_active_sessions(),
    lambda e: e.get_sessions_by_lot(1),
    lambda e: e.get_sessions_by_license_plate("AB-12-CD"),
    lambda e: e.get_sessions_by_payment_status("Paid"),
    lambda e: e.get_recent_sessions_by_license_plate("AB-12-CD", timedelta(days=1)),
])
async def test_empty_collections_are_not_found(engine, query):
    assert await query(engine) == GetSessionListResult.NotFound()


async def test_count(engine, seeded):
    assert await engine.count_sessions() == 3
