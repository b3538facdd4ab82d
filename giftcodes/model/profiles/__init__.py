# model/profiles/__init__.py
import os
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

BACKEND = os.getenv("STORE_BACKEND", "sql").lower()  # 'sql' | 'memory'

if BACKEND == "memory":
    from ._memory import ProfileDirectory as _ProfileDirectory
else:
    from ._sql import ProfileDirectory as _ProfileDirectory


def new_store(*, sessions: Optional[async_sessionmaker[AsyncSession]] = None):
    if BACKEND == "memory":
        return _ProfileDirectory()
    if sessions is None:
        raise RuntimeError(
            "ProfileDirectory(sql) requires sessions=async_sessionmaker"
        )
    return _ProfileDirectory(sessions=sessions)


ProfileDirectory = _ProfileDirectory
__all__ = ["ProfileDirectory", "new_store", "BACKEND"]
