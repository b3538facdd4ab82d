# model/profiles/_sql.py
from __future__ import annotations
from typing import Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...errors import ValidationError
from ...helpers import now_ts
from ..ports import ProfileDirectory as _ProfileDirectory
from ..records import ProfileRecord


class ProfileDirectory(_ProfileDirectory):
    """Read side of the identity provider's ``profiles`` table."""

    def __init__(self, *, sessions: async_sessionmaker[AsyncSession]) -> None:
        self.sessions = sessions

    async def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        if not user_id:
            return None
        async with self.sessions() as db:
            row = (await db.execute(text("""
                SELECT id, email, full_name, role, created_at
                FROM profiles WHERE id=:id
            """), {"id": user_id})).mappings().first()
        return ProfileRecord.from_row(row) if row else None

    async def add_profile(self, profile: ProfileRecord) -> None:
        try:
            async with self.sessions() as db:
                async with db.begin():
                    await db.execute(text("""
                        INSERT INTO profiles(id, email, full_name, role,
                                             created_at)
                        VALUES(:id, :email, :full_name, :role, :created_at)
                    """), {
                        "id": profile.id,
                        "email": profile.email,
                        "full_name": profile.full_name,
                        "role": profile.role,
                        "created_at": profile.created_at or now_ts(),
                    })
        except IntegrityError:
            raise ValidationError("profile already exists",
                                  {"user_id": profile.id}) from None
