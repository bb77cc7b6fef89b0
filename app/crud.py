import logging
from datetime import timedelta
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from app.models import ParkingLot, ParkingSession, PaymentStatus, UserPlate, utcnow
from app.results import LotUpdateResult, UserPlateListResult
from app.schemas import SessionUpdate


class SessionStore:
    """Parking session persistence. Returned rows are detached from the db session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _one(self, stmt):
        result = await self.db.execute(stmt)
        session = result.scalars().first()
        if session is not None:
            self.db.expunge(session)
        return session

    async def _all(self, stmt):
        result = await self.db.execute(stmt)
        sessions = list(result.scalars().all())
        for session in sessions:
            self.db.expunge(session)
        return sessions

    async def get_by_id(self, session_id: int):
        return await self._one(select(ParkingSession).where(ParkingSession.id == session_id))

    async def get_active_by_plate(self, plate_number: str):
        return await self._one(
            select(ParkingSession).where(
                ParkingSession.license_plate == plate_number,
                ParkingSession.stopped.is_(None),
            )
        )

    async def get_by_lot(self, lot_id: int):
        return await self._all(
            select(ParkingSession)
            .where(ParkingSession.parking_lot_id == lot_id)
            .order_by(ParkingSession.started)
        )

    async def get_by_plate(self, plate_number: str):
        return await self._all(
            select(ParkingSession)
            .where(ParkingSession.license_plate == plate_number)
            .order_by(ParkingSession.started)
        )

    async def get_by_status(self, status: PaymentStatus):
        return await self._all(
            select(ParkingSession)
            .where(ParkingSession.payment_status == status)
            .order_by(ParkingSession.started)
        )

    async def get_all(self):
        return await self._all(select(ParkingSession).order_by(ParkingSession.id))

    async def get_active(self):
        return await self._all(
            select(ParkingSession)
            .where(ParkingSession.stopped.is_(None))
            .order_by(ParkingSession.started)
        )

    async def get_recent_by_plate(self, plate_number: str, duration: timedelta):
        cutoff = utcnow() - duration
        return await self._all(
            select(ParkingSession)
            .where(ParkingSession.license_plate == plate_number, ParkingSession.started >= cutoff)
            .order_by(ParkingSession.started.desc())
        )

    async def create_with_id(self, session: ParkingSession):
        self.db.add(session)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logging.warning(f"Session insert rejected for plate {session.license_plate}: {e.orig}")
            return False, 0
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        await self.db.refresh(session)
        self.db.expunge(session)
        return True, session.id

    async def update(self, session: ParkingSession, changeset: SessionUpdate):
        # partial update: only the fields the caller set, plus the cost derived from stopped
        values = {name: getattr(session, name) for name in changeset.model_fields_set}
        if "stopped" in values:
            values["cost"] = session.cost
        if not values:
            return True

        try:
            result = await self.db.execute(
                update(ParkingSession)
                .where(ParkingSession.id == session.id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        return result.rowcount == 1

    async def delete(self, session: ParkingSession):
        try:
            result = await self.db.execute(
                delete(ParkingSession)
                .where(ParkingSession.id == session.id)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        return result.rowcount == 1

    async def count(self):
        result = await self.db.execute(select(func.count()).select_from(ParkingSession))
        return result.scalar_one()


class LotCapacityService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, lot_id: int):
        result = await self.db.execute(select(ParkingLot).where(ParkingLot.id == lot_id))
        lot = result.scalars().first()
        if lot is not None:
            self.db.expunge(lot)
        return lot

    async def update_by_id(self, lot: ParkingLot, lot_id: int):
        """Compare-and-swap on the lot version; the in-memory lot gets the new version."""
        if lot.reserved < 0 or lot.reserved > lot.capacity:
            return LotUpdateResult.InvalidData(
                f"Reserved count {lot.reserved} is outside 0..{lot.capacity}."
            )

        try:
            result = await self.db.execute(
                update(ParkingLot)
                .where(ParkingLot.id == lot_id, ParkingLot.version == lot.version)
                .values(reserved=lot.reserved, capacity=lot.capacity, version=ParkingLot.version + 1)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logging.error(f"Failed to update parking lot {lot_id}: {e}")
            return LotUpdateResult.Error(str(e))

        if result.rowcount == 1:
            lot.version += 1
            return LotUpdateResult.Success()

        exists = await self.db.execute(select(ParkingLot.id).where(ParkingLot.id == lot_id))
        if exists.scalar_one_or_none() is None:
            return LotUpdateResult.NotFound(f"Parking lot {lot_id} not found.")

        logging.warning(f"Version mismatch updating parking lot {lot_id} (expected {lot.version})")
        return LotUpdateResult.Error(f"Parking lot {lot_id} was modified concurrently.")


class UserPlateDirectory:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_plates_by_user(self, user_id: int):
        result = await self.db.execute(
            select(UserPlate).where(UserPlate.user_id == user_id).order_by(UserPlate.created_at)
        )
        plates = list(result.scalars().all())
        if not plates:
            return UserPlateListResult.NotFound()
        return UserPlateListResult.Success(plates)
