# model/inventory/__init__.py
import os
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

BACKEND = os.getenv("STORE_BACKEND", "sql").lower()  # 'sql' | 'memory'

if BACKEND == "memory":
    from ._memory import InventoryStore as _InventoryStore
else:
    from ._sql import InventoryStore as _InventoryStore


# Factory keeps server.py simple and constructor-agnostic:
def new_store(*, sessions: Optional[async_sessionmaker[AsyncSession]] = None,
              max_claim_attempts: int = 50):
    if BACKEND == "memory":
        return _InventoryStore(max_claim_attempts=max_claim_attempts)
    if sessions is None:
        raise RuntimeError(
            "InventoryStore(sql) requires sessions=async_sessionmaker"
        )
    return _InventoryStore(sessions=sessions,
                           max_claim_attempts=max_claim_attempts)


InventoryStore = _InventoryStore
__all__ = ["InventoryStore", "new_store", "BACKEND"]
