import enum
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Enum, Index, text
from sqlalchemy.types import TypeDecorator
from app.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps, also on backends that store naive values."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class PaymentStatus(str, enum.Enum):
    PRE_AUTHORIZED = "PreAuthorized"
    PAID = "Paid"
    FAILED = "Failed"

    @classmethod
    def parse(cls, value):
        """Case-insensitive lookup by value; None when nothing matches."""
        if value is None or not value.strip():
            return None
        wanted = value.strip().lower()
        for status in cls:
            if status.value.lower() == wanted:
                return status
        return None


class ParkingSession(Base):
    __tablename__ = "parking_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    license_plate = Column(String(20), nullable=False, index=True)
    parking_lot_id = Column(Integer, nullable=False, index=True)
    started = Column(UTCDateTime, nullable=False, default=utcnow)
    stopped = Column(UTCDateTime, nullable=True)
    cost = Column(Numeric(10, 2), nullable=True)
    payment_status = Column(
        Enum(PaymentStatus, values_callable=lambda e: [s.value for s in e], native_enum=False),
        nullable=False,
        default=PaymentStatus.PRE_AUTHORIZED,
    )

    # one active session per plate
    __table_args__ = (
        Index(
            "uq_parking_sessions_active_plate",
            "license_plate",
            unique=True,
            sqlite_where=text("stopped IS NULL"),
            postgresql_where=text("stopped IS NULL"),
        ),
    )

    def __repr__(self):
        return f"<ParkingSession {self.id} {self.license_plate} lot={self.parking_lot_id}>"


class ParkingLot(Base):
    __tablename__ = "parking_lots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    capacity = Column(Integer, nullable=False, default=0)
    reserved = Column(Integer, nullable=False, default=0)
    tariff = Column(Numeric(10, 2), nullable=False, default=0)
    day_tariff = Column(Numeric(10, 2), nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)

    @property
    def available_spots(self):
        return max(0, self.capacity - self.reserved)


class UserPlate(Base):
    __tablename__ = "user_plates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    license_plate = Column(String(20), nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
