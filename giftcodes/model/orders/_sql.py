# model/orders/_sql.py
from __future__ import annotations
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...helpers import now_ts
from ..ports import OrderStore as _OrderStore
from ..records import OrderRecord
from ..states import (
    ACTION_CONFIRM, ACTION_REJECT, ORDER_AWAITING, ORDER_COMPLETED,
    PAYMENT_AWAITING, target_of,
)

PENDING_GUARD = "status=:g_status AND payment_status=:g_payment"


class OrderStore(_OrderStore):
    def __init__(self, *, sessions: async_sessionmaker[AsyncSession]) -> None:
        self.sessions = sessions

    async def create(self, order: OrderRecord) -> None:
        row = order.as_dict()
        cols = ", ".join(row)
        vals = ", ".join(f":{k}" for k in row)
        async with self.sessions() as db:
            async with db.begin():
                await db.execute(
                    text(f"INSERT INTO orders({cols}) VALUES({vals})"), row
                )

    async def _one(self, where: str,
                   params: Dict[str, Any]) -> Optional[OrderRecord]:
        async with self.sessions() as db:
            row = (await db.execute(
                text(f"SELECT * FROM orders WHERE {where}"), params
            )).mappings().first()
        return OrderRecord.from_row(row) if row else None

    async def get(self, order_id: str) -> Optional[OrderRecord]:
        return await self._one("id=:id", {"id": order_id})

    async def get_for_buyer(self, order_id: str,
                            buyer_id: str) -> Optional[OrderRecord]:
        return await self._one("id=:id AND buyer_id=:buyer",
                               {"id": order_id, "buyer": buyer_id})

    async def get_by_token(self, token: str) -> Optional[OrderRecord]:
        if not token:
            return None
        return await self._one("confirmation_token=:t", {"t": token})

    async def list_recent(self, status: Optional[str] = None,
                          limit: int = 200) -> List[OrderRecord]:
        params: Dict[str, Any] = {"limit": max(1, min(int(limit), 500))}
        where = ""
        if status:
            where = "WHERE status=:status"
            params["status"] = status
        async with self.sessions() as db:
            rows = (await db.execute(text(f"""
                SELECT * FROM orders {where}
                ORDER BY created_at DESC
                LIMIT :limit
            """), params)).mappings().all()
        return [OrderRecord.from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # conditional transitions
    # ------------------------------------------------------------------
    async def _cas(self, set_clause: str, where: str,
                   params: Dict[str, Any]) -> bool:
        async with self.sessions() as db:
            async with db.begin():
                row = (await db.execute(text(f"""
                    UPDATE orders SET {set_clause}
                    WHERE {where}
                    RETURNING id
                """), params)).first()
        return row is not None

    def _pending_where(self, token: Optional[str],
                       params: Dict[str, Any]) -> str:
        params["g_status"] = ORDER_AWAITING
        params["g_payment"] = PAYMENT_AWAITING
        where = f"id=:id AND {PENDING_GUARD}"
        if token is not None:
            where += " AND confirmation_token=:token"
            params["token"] = token
        return where

    async def bind_item(self, order_id: str, item_id: str,
                        confirmed_by: Optional[str],
                        token: Optional[str] = None) -> bool:
        status, payment = target_of(ORDER_AWAITING, ACTION_CONFIRM)
        params: Dict[str, Any] = {
            "id": order_id, "item": item_id, "by": confirmed_by,
            "now": now_ts(), "status": status, "payment": payment,
        }
        where = self._pending_where(token, params)
        return await self._cas(
            "status=:status, payment_status=:payment, "
            "inventory_item_id=:item, confirmed_by=:by, confirmed_at=:now, "
            "confirmation_token=NULL",
            where, params,
        )

    async def reject(self, order_id: str, reason: str,
                     rejected_by: Optional[str],
                     token: Optional[str] = None) -> bool:
        status, payment = target_of(ORDER_AWAITING, ACTION_REJECT)
        params: Dict[str, Any] = {
            "id": order_id, "reason": reason, "by": rejected_by,
            "now": now_ts(), "status": status, "payment": payment,
        }
        where = self._pending_where(token, params)
        return await self._cas(
            "status=:status, payment_status=:payment, "
            "rejection_reason=:reason, confirmed_by=:by, confirmed_at=:now, "
            "confirmation_token=NULL",
            where, params,
        )

    async def cancel(self, order_id: str, buyer_id: str,
                     reason: str) -> bool:
        status, payment = target_of(ORDER_AWAITING, "cancel")
        params: Dict[str, Any] = {
            "id": order_id, "buyer": buyer_id, "reason": reason,
            "status": status, "payment": payment, "revealed": False,
        }
        where = self._pending_where(None, params)
        where += " AND buyer_id=:buyer AND code_revealed=:revealed"
        return await self._cas(
            "status=:status, payment_status=:payment, "
            "rejection_reason=:reason, inventory_item_id=NULL, "
            "confirmation_token=NULL",
            where, params,
        )

    async def mark_revealed(self, order_id: str, buyer_id: str) -> bool:
        return await self._cas(
            "code_revealed=:revealed, code_revealed_at=:now",
            "id=:id AND buyer_id=:buyer AND status=:completed "
            "AND code_revealed=:not_revealed",
            {
                "id": order_id, "buyer": buyer_id, "now": now_ts(),
                "completed": ORDER_COMPLETED, "revealed": True,
                "not_revealed": False,
            },
        )
