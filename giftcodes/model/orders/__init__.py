# model/orders/__init__.py
import os
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

BACKEND = os.getenv("STORE_BACKEND", "sql").lower()  # 'sql' | 'memory'

if BACKEND == "memory":
    from ._memory import OrderStore as _OrderStore
else:
    from ._sql import OrderStore as _OrderStore


def new_store(*, sessions: Optional[async_sessionmaker[AsyncSession]] = None):
    if BACKEND == "memory":
        return _OrderStore()
    if sessions is None:
        raise RuntimeError(
            "OrderStore(sql) requires sessions=async_sessionmaker"
        )
    return _OrderStore(sessions=sessions)


OrderStore = _OrderStore
__all__ = ["OrderStore", "new_store", "BACKEND"]
