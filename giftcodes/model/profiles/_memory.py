# model/profiles/_memory.py
from __future__ import annotations
from dataclasses import replace
from typing import Dict, Optional

from ...errors import ValidationError
from ...helpers import now_ts
from ..ports import ProfileDirectory as _ProfileDirectory
from ..records import ProfileRecord


class ProfileDirectory(_ProfileDirectory):
    def __init__(self) -> None:
        self.profiles: Dict[str, ProfileRecord] = {}

    async def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        p = self.profiles.get(user_id or "")
        return replace(p) if p else None

    async def add_profile(self, profile: ProfileRecord) -> None:
        if profile.id in self.profiles:
            raise ValidationError("profile already exists",
                                  {"user_id": profile.id})
        self.profiles[profile.id] = replace(
            profile, created_at=profile.created_at or now_ts()
        )
