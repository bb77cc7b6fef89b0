from app.results import GetSessionListResult, GetSessionResult, UserPlateListResult


class AuthorizationFilter:
    """
    Decides which sessions of a lot a caller may see.

    Managers see everything. Other users only see sessions on plates they
    registered, and only those started at or after the registration, so a
    reassigned plate does not expose its previous owner's history.
    """

    def __init__(self, engine, plates):
        self.engine = engine
        self.plates = plates

    async def ownership_map(self, user_id: int):
        result = await self.plates.get_plates_by_user(user_id)
        if not isinstance(result, UserPlateListResult.Success):
            return {}

        ownership = {}
        for plate in result.plates:
            key = plate.license_plate.upper()
            if key not in ownership or plate.created_at < ownership[key]:
                ownership[key] = plate.created_at
        return ownership

    @staticmethod
    def owns(ownership, session) -> bool:
        registered_at = ownership.get(session.license_plate)
        return registered_at is not None and session.started >= registered_at

    async def get_authorized_sessions(self, user_id: int, lot_id: int, can_manage_sessions: bool):
        result = await self.engine.get_sessions_by_lot(lot_id)
        if not isinstance(result, GetSessionListResult.Success):
            return []
        if can_manage_sessions:
            return result.sessions

        ownership = await self.ownership_map(user_id)
        return [session for session in result.sessions if self.owns(ownership, session)]

    async def get_authorized_session(self, user_id: int, lot_id: int, session_id: int, can_manage_sessions: bool):
        result = await self.engine.get_session_by_id(session_id)
        if not isinstance(result, GetSessionResult.Success):
            return GetSessionResult.NotFound()

        session = result.session
        if session.parking_lot_id != lot_id:
            return GetSessionResult.NotFound()
        if can_manage_sessions:
            return result

        if not self.owns(await self.ownership_map(user_id), session):
            return GetSessionResult.Forbidden()
        return result
