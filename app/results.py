"""
Tagged outcomes returned by the session engine and its collaborators.

Every operation returns exactly one variant of its result family, so callers
branch with ``match`` instead of catching exceptions:

    match await engine.start_session(...):
        case StartSessionResult.Success(session, spots):
            ...
        case StartSessionResult.LotFull():
            ...
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from app.models import ParkingSession, UserPlate


class StartSessionResult:
    @dataclass(frozen=True)
    class Success:
        session: ParkingSession
        available_spots: int

    @dataclass(frozen=True)
    class LotNotFound:
        pass

    @dataclass(frozen=True)
    class LotFull:
        pass

    @dataclass(frozen=True)
    class AlreadyActive:
        pass

    @dataclass(frozen=True)
    class PreAuthFailed:
        reason: str

    @dataclass(frozen=True)
    class Error:
        message: str


class StopSessionResult:
    @dataclass(frozen=True)
    class Success:
        session: ParkingSession
        total_amount: Decimal

    @dataclass(frozen=True)
    class LicensePlateNotFound:
        pass

    @dataclass(frozen=True)
    class AlreadyStopped:
        pass

    @dataclass(frozen=True)
    class PaymentFailed:
        reason: str

    @dataclass(frozen=True)
    class Error:
        message: str


class CreateSessionResult:
    @dataclass(frozen=True)
    class Success:
        session: ParkingSession

    @dataclass(frozen=True)
    class AlreadyExists:
        pass

    @dataclass(frozen=True)
    class Error:
        message: str


class UpdateSessionResult:
    @dataclass(frozen=True)
    class Success:
        session: ParkingSession

    @dataclass(frozen=True)
    class NoChanges:
        pass

    @dataclass(frozen=True)
    class NotFound:
        pass

    @dataclass(frozen=True)
    class Error:
        message: str


class DeleteSessionResult:
    @dataclass(frozen=True)
    class Success:
        pass

    @dataclass(frozen=True)
    class NotFound:
        pass

    @dataclass(frozen=True)
    class Error:
        message: str


class GetSessionResult:
    @dataclass(frozen=True)
    class Success:
        session: ParkingSession

    @dataclass(frozen=True)
    class NotFound:
        pass

    @dataclass(frozen=True)
    class Forbidden:
        pass


class GetSessionListResult:
    @dataclass(frozen=True)
    class Success:
        sessions: List[ParkingSession]

    @dataclass(frozen=True)
    class NotFound:
        pass

    @dataclass(frozen=True)
    class InvalidInput:
        message: str


# Collaborator outcomes

class LotUpdateResult:
    @dataclass(frozen=True)
    class Success:
        pass

    @dataclass(frozen=True)
    class NotFound:
        message: str = "Parking lot not found."

    @dataclass(frozen=True)
    class InvalidData:
        message: str

    @dataclass(frozen=True)
    class Error:
        message: str


class PriceResult:
    @dataclass(frozen=True)
    class Success:
        price: Decimal
        billable_hours: int
        billable_days: int

    @dataclass(frozen=True)
    class Error:
        message: str


class UserPlateListResult:
    @dataclass(frozen=True)
    class Success:
        plates: List[UserPlate] = field(default_factory=list)

    @dataclass(frozen=True)
    class NotFound:
        pass


@dataclass(frozen=True)
class PreAuthResponse:
    approved: bool
    reason: Optional[str] = None
