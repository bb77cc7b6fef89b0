from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from app.models import PaymentStatus


def as_utc(value):
    # timestamps without an offset are taken as UTC
    if value is None:
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class StartSessionRequest(BaseModel):
    license_plate: str = Field(min_length=1, max_length=20)
    card_token: str = Field(min_length=1)
    estimated_amount: Decimal = Field(ge=0)
    simulate_insufficient_funds: bool = False

class StopSessionRequest(BaseModel):
    license_plate: str = Field(min_length=1, max_length=20)
    card_token: str = Field(min_length=1)

class SessionCreate(BaseModel):
    parking_lot_id: int
    license_plate: str = Field(min_length=1, max_length=20)
    started: datetime

    @field_validator("started")
    @classmethod
    def started_as_utc(cls, value):
        return as_utc(value)

class SessionUpdate(BaseModel):
    # only explicitly set fields are written by the store
    stopped: Optional[datetime] = None
    payment_status: Optional[PaymentStatus] = None

    @field_validator("stopped")
    @classmethod
    def stopped_as_utc(cls, value):
        return as_utc(value)

class SessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    license_plate: str
    parking_lot_id: int
    started: datetime
    stopped: Optional[datetime] = None
    cost: Optional[Decimal] = None
    payment_status: PaymentStatus

class StartSessionResponse(BaseModel):
    status: str
    session_id: int
    license_plate: str
    parking_lot_id: int
    started_at: datetime
    payment_status: PaymentStatus
    available_spots: int

class StopSessionResponse(BaseModel):
    status: str
    session_id: int
    license_plate: str
    parking_lot_id: int
    started_at: datetime
    stopped_at: datetime
    payment_status: PaymentStatus
    amount: Decimal
