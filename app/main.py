import uvicorn
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional
from fastapi import FastAPI, Depends, Header, HTTPException, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.status import HTTP_201_CREATED, HTTP_402_PAYMENT_REQUIRED, HTTP_409_CONFLICT
from app.authorization import AuthorizationFilter
from app.crud import LotCapacityService, SessionStore, UserPlateDirectory
from app.database import init_db, get_db
from app.engine import SessionLifecycleEngine
from app.gate import GateActuator
from app.pricing import PricingGateway
from app.results import (
    DeleteSessionResult,
    GetSessionListResult,
    GetSessionResult,
    StartSessionResult,
    StopSessionResult,
    UpdateSessionResult,
)
from app.schemas import (
    SessionResponse,
    SessionUpdate,
    StartSessionRequest,
    StartSessionResponse,
    StopSessionRequest,
    StopSessionResponse,
)
from app.services import PaymentAuthorizer
import logging

logging.basicConfig(level=logging.INFO)

app = FastAPI(title="Session Service", version="1.0.0")

MANAGE_SESSIONS_PERMISSION = "SESSIONS:MANAGE"


@app.on_event("startup")
async def on_startup():
    await init_db()


@dataclass
class Caller:
    user_id: int
    username: Optional[str]
    permissions: frozenset

    @property
    def can_manage_sessions(self):
        return MANAGE_SESSIONS_PERMISSION in self.permissions


# Identity headers are set by the API gateway after token validation
async def get_caller(
    x_user_id: int = Header(...),
    x_username: Optional[str] = Header(None),
    x_permissions: str = Header(""),
):
    permissions = frozenset(p.strip() for p in x_permissions.split(",") if p.strip())
    return Caller(user_id=x_user_id, username=x_username, permissions=permissions)


async def require_manager(caller: Caller = Depends(get_caller)):
    if not caller.can_manage_sessions:
        raise HTTPException(status_code=403, detail=f"Missing permission {MANAGE_SESSIONS_PERMISSION}")
    return caller


def get_engine(db: AsyncSession = Depends(get_db)):
    return SessionLifecycleEngine(
        sessions=SessionStore(db),
        lots=LotCapacityService(db),
        pricing=PricingGateway(),
        payments=PaymentAuthorizer(),
        gate=GateActuator(),
    )


def get_authorization(
    engine: SessionLifecycleEngine = Depends(get_engine),
    db: AsyncSession = Depends(get_db),
):
    return AuthorizationFilter(engine, UserPlateDirectory(db))


@app.post("/api/v1/lots/{lot_id}/sessions/start", response_model=StartSessionResponse, status_code=HTTP_201_CREATED)
async def start_session(
    lot_id: int,
    request: StartSessionRequest,
    caller: Caller = Depends(get_caller),
    engine: SessionLifecycleEngine = Depends(get_engine),
):
    logging.info(f"Received start request for plate {request.license_plate} at lot {lot_id}")
    result = await engine.start_session(
        lot_id,
        request.license_plate,
        request.card_token,
        request.estimated_amount,
        caller.username,
        request.simulate_insufficient_funds,
    )

    match result:
        case StartSessionResult.Success(session, available_spots):
            return StartSessionResponse(
                status="Started",
                session_id=session.id,
                license_plate=session.license_plate,
                parking_lot_id=session.parking_lot_id,
                started_at=session.started,
                payment_status=session.payment_status,
                available_spots=available_spots,
            )
        case StartSessionResult.LotNotFound():
            raise HTTPException(status_code=404, detail={"error": "Parking lot not found"})
        case StartSessionResult.LotFull():
            raise HTTPException(status_code=HTTP_409_CONFLICT, detail={"error": "Parking lot is full", "code": "LOT_FULL"})
        case StartSessionResult.AlreadyActive():
            raise HTTPException(
                status_code=HTTP_409_CONFLICT,
                detail={"error": "An active session already exists for this license plate", "code": "ACTIVE_SESSION_EXISTS"},
            )
        case StartSessionResult.PreAuthFailed(reason):
            raise HTTPException(status_code=HTTP_402_PAYMENT_REQUIRED, detail={"error": reason, "code": "PAYMENT_DECLINED"})
        case StartSessionResult.Error(message):
            raise HTTPException(status_code=500, detail={"error": message})


@app.post("/api/v1/sessions/stop", response_model=StopSessionResponse)
async def stop_session(request: StopSessionRequest, engine: SessionLifecycleEngine = Depends(get_engine)):
    logging.info(f"Received stop request for plate {request.license_plate}")
    result = await engine.stop_session(request.license_plate, request.card_token)

    match result:
        case StopSessionResult.Success(session, total_amount):
            return StopSessionResponse(
                status="Stopped",
                session_id=session.id,
                license_plate=session.license_plate,
                parking_lot_id=session.parking_lot_id,
                started_at=session.started,
                stopped_at=session.stopped,
                payment_status=session.payment_status,
                amount=total_amount,
            )
        case StopSessionResult.LicensePlateNotFound():
            raise HTTPException(status_code=404, detail={"error": "Active session for the provided license plate not found"})
        case StopSessionResult.AlreadyStopped():
            raise HTTPException(status_code=400, detail={"error": "The parking session has already been stopped"})
        case StopSessionResult.PaymentFailed(reason):
            raise HTTPException(status_code=HTTP_402_PAYMENT_REQUIRED, detail={"error": reason, "code": "PAYMENT_FAILED"})
        case StopSessionResult.Error(message):
            raise HTTPException(status_code=500, detail={"error": message})


@app.get("/api/v1/lots/{lot_id}/sessions", response_model=List[SessionResponse])
async def list_lot_sessions(
    lot_id: int,
    caller: Caller = Depends(get_caller),
    authorization: AuthorizationFilter = Depends(get_authorization),
):
    return await authorization.get_authorized_sessions(caller.user_id, lot_id, caller.can_manage_sessions)


@app.get("/api/v1/lots/{lot_id}/sessions/{session_id}", response_model=SessionResponse)
async def get_lot_session(
    lot_id: int,
    session_id: int,
    caller: Caller = Depends(get_caller),
    authorization: AuthorizationFilter = Depends(get_authorization),
):
    result = await authorization.get_authorized_session(caller.user_id, lot_id, session_id, caller.can_manage_sessions)

    match result:
        case GetSessionResult.Success(session):
            return session
        case GetSessionResult.NotFound():
            raise HTTPException(status_code=404, detail={"error": "Parking session not found in this lot."})
        case GetSessionResult.Forbidden():
            raise HTTPException(status_code=403, detail={"error": "You do not have access to this parking session."})


@app.delete("/api/v1/lots/{lot_id}/sessions/{session_id}")
async def delete_lot_session(
    lot_id: int,
    session_id: int,
    caller: Caller = Depends(require_manager),
    engine: SessionLifecycleEngine = Depends(get_engine),
):
    found = await engine.get_session_by_id(session_id)
    if not isinstance(found, GetSessionResult.Success) or found.session.parking_lot_id != lot_id:
        raise HTTPException(status_code=404, detail={"error": "Session not found in this lot"})

    match await engine.delete_session(session_id):
        case DeleteSessionResult.Success():
            logging.info(f"Session {session_id} deleted by {caller.username or caller.user_id}")
            return {"status": "Deleted"}
        case DeleteSessionResult.NotFound():
            raise HTTPException(status_code=404, detail={"error": "Session not found"})
        case DeleteSessionResult.Error(message):
            raise HTTPException(status_code=500, detail={"error": message})


@app.get("/api/v1/sessions/count")
async def count_sessions(
    caller: Caller = Depends(require_manager),
    engine: SessionLifecycleEngine = Depends(get_engine),
):
    return {"count": await engine.count_sessions()}


@app.get("/api/v1/sessions", response_model=List[SessionResponse])
async def search_sessions(
    payment_status: Optional[str] = Query(None, description="PreAuthorized, Paid or Failed (case-insensitive)"),
    license_plate: Optional[str] = Query(None),
    active: bool = Query(False, description="Only sessions without a stop time"),
    recent_minutes: Optional[int] = Query(None, ge=1, description="With license_plate: sessions started in this window"),
    caller: Caller = Depends(require_manager),
    engine: SessionLifecycleEngine = Depends(get_engine),
):
    if payment_status is not None:
        result = await engine.get_sessions_by_payment_status(payment_status)
    elif license_plate and recent_minutes:
        result = await engine.get_recent_sessions_by_license_plate(license_plate, timedelta(minutes=recent_minutes))
    elif license_plate:
        result = await engine.get_sessions_by_license_plate(license_plate)
    elif active:
        result = await engine.get_active_sessions()
    else:
        result = await engine.get_all_sessions()

    match result:
        case GetSessionListResult.Success(sessions):
            return sessions
        case GetSessionListResult.NotFound():
            raise HTTPException(status_code=404, detail={"error": "No parking sessions found."})
        case GetSessionListResult.InvalidInput(message):
            raise HTTPException(status_code=400, detail={"error": message})


@app.patch("/api/v1/sessions/{session_id}", response_model=SessionResponse)
async def update_session(
    session_id: int,
    changes: SessionUpdate,
    caller: Caller = Depends(require_manager),
    engine: SessionLifecycleEngine = Depends(get_engine),
):
    match await engine.update_session(session_id, changes):
        case UpdateSessionResult.Success(session):
            return session
        case UpdateSessionResult.NoChanges():
            return Response(status_code=204)
        case UpdateSessionResult.NotFound():
            raise HTTPException(status_code=404, detail={"error": "Session not found"})
        case UpdateSessionResult.Error(message) if "before started" in message:
            raise HTTPException(status_code=400, detail={"error": message})
        case UpdateSessionResult.Error(message):
            raise HTTPException(status_code=500, detail={"error": message})


if __name__ == "__main__":
    uvicorn.run("app.main:app", host="0.0.0.0", port=int(os.getenv("SESSION_SERVICE_PORT", 8002)), reload=True)
