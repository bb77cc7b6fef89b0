"""
Parking session lifecycle: entry and exit sagas, session mutation and queries.

Start and Stop each touch the lot capacity ledger, the session store, the
payment authorizer and the gate actuator, none of which share a transaction.
Every committed step pushes its undo onto a CompensationStack; a later failure
unwinds the stack before the error result is returned.

Known gaps, kept on purpose:
- a payment captured by stop_session is not refunded when the gate fails
  afterwards, only the session's stop fields are reverted;
- undo failures are logged and not reported to the caller.
"""

import logging
import os
from datetime import timedelta
from decimal import Decimal
from functools import partial
from typing import Optional

from app.hashing import payment_hash, transaction_validation_token
from app.models import ParkingSession, PaymentStatus, utcnow
from app.results import (
    CreateSessionResult,
    DeleteSessionResult,
    GetSessionListResult,
    GetSessionResult,
    LotUpdateResult,
    PriceResult,
    StartSessionResult,
    StopSessionResult,
    UpdateSessionResult,
)
from app.saga import CompensationStack
from app.schemas import SessionCreate, SessionUpdate

# a Stop for a plate whose last session closed within this window is a repeat
REPEAT_STOP_WINDOW = timedelta(minutes=int(os.getenv("REPEAT_STOP_WINDOW_MINUTES", "15")))


def normalize_plate(license_plate: str) -> str:
    return license_plate.strip().upper()


def _list_result(sessions):
    if not sessions:
        return GetSessionListResult.NotFound()
    return GetSessionListResult.Success(list(sessions))


def _recently_stopped(history):
    if not history:
        return False
    latest = max(history, key=lambda s: s.started)
    return latest.stopped is not None and utcnow() - latest.stopped <= REPEAT_STOP_WINDOW


class SessionLifecycleEngine:
    def __init__(self, sessions, lots, pricing, payments, gate):
        self.sessions = sessions
        self.lots = lots
        self.pricing = pricing
        self.payments = payments
        self.gate = gate

    # -- creation / deletion -------------------------------------------------

    async def create_session(self, request: SessionCreate):
        plate = normalize_plate(request.license_plate)
        if await self.sessions.get_active_by_plate(plate) is not None:
            return CreateSessionResult.AlreadyExists()

        session = ParkingSession(
            parking_lot_id=request.parking_lot_id,
            license_plate=plate,
            started=request.started,
            stopped=None,
            cost=None,
            payment_status=PaymentStatus.PRE_AUTHORIZED,
        )
        try:
            created, session_id = await self.sessions.create_with_id(session)
        except Exception as e:
            return CreateSessionResult.Error(str(e))
        if not created:
            return CreateSessionResult.Error("Database insertion failed.")

        session.id = session_id
        return CreateSessionResult.Success(session)

    async def delete_session(self, session_id: int):
        session = await self.sessions.get_by_id(session_id)
        if session is None:
            return DeleteSessionResult.NotFound()

        try:
            if not await self.sessions.delete(session):
                return DeleteSessionResult.Error("Database delete failed.")
        except Exception as e:
            return DeleteSessionResult.Error(str(e))
        return DeleteSessionResult.Success()

    async def count_sessions(self) -> int:
        return await self.sessions.count()

    # -- queries ---------------------------------------------------------------

    async def get_session_by_id(self, session_id: int):
        session = await self.sessions.get_by_id(session_id)
        if session is None:
            return GetSessionResult.NotFound()
        return GetSessionResult.Success(session)

    async def get_active_session_by_license_plate(self, license_plate: str):
        session = await self.sessions.get_active_by_plate(normalize_plate(license_plate))
        if session is None:
            return GetSessionResult.NotFound()
        return GetSessionResult.Success(session)

    async def get_sessions_by_lot(self, lot_id: int):
        return _list_result(await self.sessions.get_by_lot(lot_id))

    async def get_sessions_by_license_plate(self, license_plate: str):
        return _list_result(await self.sessions.get_by_plate(normalize_plate(license_plate)))

    async def get_sessions_by_payment_status(self, status: Optional[str]):
        parsed = PaymentStatus.parse(status)
        if parsed is None:
            return GetSessionListResult.InvalidInput(f"'{status}' is not a valid payment status.")
        return _list_result(await self.sessions.get_by_status(parsed))

    async def get_all_sessions(self):
        return _list_result(await self.sessions.get_all())

    async def get_active_sessions(self):
        return _list_result(await self.sessions.get_active())

    async def get_recent_sessions_by_license_plate(self, license_plate: str, duration: timedelta):
        plate = normalize_plate(license_plate)
        return _list_result(await self.sessions.get_recent_by_plate(plate, duration))

    # -- mutation ----------------------------------------------------------------

    async def update_session(self, session_id: int, changes: SessionUpdate):
        session = await self.sessions.get_by_id(session_id)
        if session is None:
            return UpdateSessionResult.NotFound()
        return await self._apply_update(session, changes)

    async def _apply_update(self, session, changes: SessionUpdate, cost: Optional[Decimal] = None):
        """
        Apply a stop time and/or payment status to ``session`` and persist it.

        A changed stop time re-prices the session, unless ``cost`` was already
        computed for that exact stop time by the caller.
        """
        stopped = session.stopped
        payment_status = session.payment_status
        changed = stop_changed = False

        if changes.stopped is not None and changes.stopped != session.stopped:
            if changes.stopped < session.started:
                return UpdateSessionResult.Error("Stopped time cannot be before started time.")
            stopped = changes.stopped
            changed = stop_changed = True

        if changes.payment_status is not None and changes.payment_status != session.payment_status:
            payment_status = changes.payment_status
            changed = True

        if not changed:
            return UpdateSessionResult.NoChanges()

        new_cost = session.cost
        if stop_changed and cost is not None:
            new_cost = cost
        elif stop_changed:
            try:
                lot = await self.lots.get_by_id(session.parking_lot_id)
            except Exception as e:
                return UpdateSessionResult.Error(str(e))
            if lot is None:
                return UpdateSessionResult.Error("Failed to retrieve parking lot for cost recalculation.")

            try:
                price_result = self.pricing.calculate_cost(lot, session.started, stopped)
            except Exception as e:
                return UpdateSessionResult.Error(str(e))

            match price_result:
                case PriceResult.Success(price=price):
                    new_cost = price
                case PriceResult.Error(message=message):
                    if not message or not message.strip():
                        message = "Failed to recalculate cost during update."
                    return UpdateSessionResult.Error(message)

        session.stopped = stopped
        session.payment_status = payment_status
        session.cost = new_cost

        try:
            updated = await self.sessions.update(session, changes)
        except Exception as e:
            return UpdateSessionResult.Error(str(e))
        if not updated:
            return UpdateSessionResult.Error("Session failed to update.")
        return UpdateSessionResult.Success(session)

    # -- entry saga --------------------------------------------------------------

    async def start_session(
        self,
        lot_id: int,
        license_plate: str,
        card_token: str,
        estimated_amount: Decimal,
        username: Optional[str] = None,
        simulate_insufficient_funds: bool = False,
    ):
        plate = normalize_plate(license_plate)
        logging.info(f"Start session requested for {plate} in lot {lot_id} by {username or 'anonymous'}")

        try:
            lot = await self.lots.get_by_id(lot_id)
        except Exception as e:
            return StartSessionResult.Error(str(e))
        if lot is None:
            return StartSessionResult.LotNotFound()

        if lot.capacity - lot.reserved <= 0:
            logging.warning(f"Lot {lot_id} is full ({lot.reserved}/{lot.capacity})")
            return StartSessionResult.LotFull()

        try:
            active = await self.sessions.get_active_by_plate(plate)
        except Exception as e:
            return StartSessionResult.Error(str(e))
        if active is not None:
            logging.warning(f"Plate {plate} already has active session {active.id}")
            return StartSessionResult.AlreadyActive()

        try:
            pre_auth = await self.payments.preauthorize(card_token, estimated_amount, simulate_insufficient_funds)
        except Exception as e:
            logging.error(f"Pre-authorization for {plate} failed: {e}")
            return StartSessionResult.Error(str(e))
        if not pre_auth.approved:
            return StartSessionResult.PreAuthFailed(pre_auth.reason or "Card declined")

        session = ParkingSession(
            parking_lot_id=lot.id,
            license_plate=plate,
            started=utcnow(),
            stopped=None,
            cost=None,
            payment_status=PaymentStatus.PRE_AUTHORIZED,
        )
        compensations = CompensationStack(f"start session {plate}")

        previous_reserved = lot.reserved
        lot.reserved = min(max(previous_reserved + 1, 0), lot.capacity)
        try:
            lot_update = await self.lots.update_by_id(lot, lot.id)
        except Exception as e:
            lot.reserved = previous_reserved
            return StartSessionResult.Error(str(e))
        if not isinstance(lot_update, LotUpdateResult.Success):
            lot.reserved = previous_reserved
            message = getattr(lot_update, "message", None) or "Failed to update parking lot capacity."
            logging.error(f"Capacity reservation on lot {lot.id} failed: {message}")
            return StartSessionResult.Error(message)
        compensations.push("reserve capacity", partial(self._release_reservation, lot, previous_reserved))

        try:
            created, session_id = await self.sessions.create_with_id(session)
            failure = None if created else "database error"
        except Exception as e:
            failure = str(e)
        if failure:
            logging.error(f"Persisting session for {plate} failed: {failure}")
            await compensations.unwind()
            return StartSessionResult.Error(f"Failed to persist parking session: {failure}")
        session.id = session_id
        compensations.push("persist session", partial(self._discard_session, session))

        failure = await self._open_gate(lot.id, plate)
        if failure:
            await compensations.unwind()
            return StartSessionResult.Error(f"Failed to open gate: {failure}")

        logging.info(f"Session {session.id} started for {plate} in lot {lot.id}")
        return StartSessionResult.Success(session, lot.available_spots)

    async def _release_reservation(self, lot, reserved: int):
        lot.reserved = reserved
        result = await self.lots.update_by_id(lot, lot.id)
        if not isinstance(result, LotUpdateResult.Success):
            logging.error(f"Could not release reservation on lot {lot.id}: {result}")

    async def _discard_session(self, session):
        if not session.id:
            return
        if not await self.sessions.delete(session):
            logging.error(f"Could not delete orphaned session {session.id}")

    async def _open_gate(self, lot_id: int, plate: str):
        """Returns None when the gate opened, otherwise the failure reason."""
        try:
            if await self.gate.open_gate(lot_id, plate):
                return None
            failure = "gate actuator reported failure"
        except Exception as e:
            failure = str(e)
        logging.error(f"Gate for lot {lot_id} did not open for {plate}: {failure}")
        return failure

    # -- exit saga ---------------------------------------------------------------

    async def stop_session(self, license_plate: str, card_token: str):
        plate = normalize_plate(license_plate)

        try:
            active = await self.sessions.get_active_by_plate(plate)
            history = [] if active is not None else await self.sessions.get_by_plate(plate)
        except Exception as e:
            return StopSessionResult.Error(str(e))

        if active is None:
            if _recently_stopped(history):
                return StopSessionResult.AlreadyStopped()
            return StopSessionResult.LicensePlateNotFound()
        if active.stopped is not None:
            return StopSessionResult.AlreadyStopped()

        try:
            lot = await self.lots.get_by_id(active.parking_lot_id)
        except Exception as e:
            logging.error(f"Lot lookup for session {active.id} failed: {e}")
            return StopSessionResult.Error(str(e))
        if lot is None:
            return StopSessionResult.Error("Failed to retrieve parking lot.")

        now = utcnow()
        try:
            price_result = self.pricing.calculate_cost(lot, active.started, now)
        except Exception as e:
            logging.error(f"Pricing for session {active.id} failed: {e}")
            return StopSessionResult.Error(str(e))
        if not isinstance(price_result, PriceResult.Success):
            return StopSessionResult.Error("Failed to calculate parking cost.")
        total_amount = price_result.price

        try:
            payment = await self.payments.preauthorize(card_token, total_amount)
        except Exception as e:
            logging.error(f"Payment for session {active.id} failed: {e}")
            return StopSessionResult.Error(str(e))
        if not payment.approved:
            return StopSessionResult.PaymentFailed(payment.reason or "Payment declined")

        compensations = CompensationStack(f"stop session {plate}")

        changes = SessionUpdate(stopped=now, payment_status=PaymentStatus.PAID)
        update_result = await self._apply_update(active, changes, cost=total_amount)
        if not isinstance(update_result, UpdateSessionResult.Success):
            logging.error(f"Payment of {total_amount} captured for session {active.id} but not recorded: {update_result}")
            return StopSessionResult.Error("Failed to update session after payment.")
        active = update_result.session
        compensations.push("record stop", partial(self._revert_stop, active))

        failure = await self._open_gate(active.parking_lot_id, plate)
        if failure:
            await compensations.unwind()
            return StopSessionResult.Error(f"Payment successful but gate error: {failure}")

        logging.info(f"Session {active.id} stopped for {plate}, charged {total_amount}")
        return StopSessionResult.Success(active, total_amount)

    async def _revert_stop(self, session):
        session.stopped = None
        session.cost = None
        session.payment_status = PaymentStatus.PRE_AUTHORIZED
        revert = SessionUpdate(stopped=None, payment_status=PaymentStatus.PRE_AUTHORIZED)
        if not await self.sessions.update(session, revert):
            logging.error(f"Could not revert stop of session {session.id}")

    # -- tokens ------------------------------------------------------------------

    def generate_payment_hash(self, session_id, license_plate: str) -> str:
        return payment_hash(session_id, license_plate)

    def generate_transaction_validation_hash(self) -> str:
        return transaction_validation_token()
