from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import NotFound, Unauthenticated
from models import Meter


class TokenAuthenticator:
    """Resolve a device credential to its meter (exact match on the unique token)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def authenticate(self, token: str | None) -> Meter:
        if token is None or not str(token).strip():
            raise Unauthenticated("Missing device token")
        result = await self.session.execute(
            select(Meter).where(Meter.token == str(token).strip())
        )
        meter = result.scalar_one_or_none()
        if meter is None:
            raise NotFound("Unknown device token")
        return meter
