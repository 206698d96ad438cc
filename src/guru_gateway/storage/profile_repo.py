"""User profile lookups."""

from __future__ import annotations

from typing import Optional

from guru_gateway.storage.database import Database
from guru_gateway.storage.models import UserProfile


class ProfileRepository:
    def __init__(self, db: Database):
        self._db = db

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        cursor = await self._db.conn.execute(
            "SELECT id, first_name, last_name, email, role FROM user_profiles WHERE id = ?",
            (user_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return UserProfile(
            id=row["id"],
            role=row["role"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            email=row["email"],
        )
