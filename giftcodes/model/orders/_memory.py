# model/orders/_memory.py
from __future__ import annotations
from dataclasses import replace
from typing import Dict, List, Optional

from ...errors import ValidationError
from ...helpers import now_ts
from ..ports import OrderStore as _OrderStore
from ..records import OrderRecord
from ..states import (
    ACTION_CONFIRM, ACTION_REJECT, ORDER_AWAITING, ORDER_COMPLETED,
    is_pending, target_of,
)


class OrderStore(_OrderStore):
    """Dict-backed orders; each transition checks and writes in one step."""

    def __init__(self) -> None:
        self.orders: Dict[str, OrderRecord] = {}

    async def create(self, order: OrderRecord) -> None:
        if order.id in self.orders:
            raise ValidationError("order already exists",
                                  {"order_id": order.id})
        token = order.confirmation_token
        if token and any(o.confirmation_token == token
                         for o in self.orders.values()):
            raise ValidationError("confirmation token collision")
        self.orders[order.id] = replace(order)

    async def get(self, order_id: str) -> Optional[OrderRecord]:
        o = self.orders.get(order_id)
        return replace(o) if o else None

    async def get_for_buyer(self, order_id: str,
                            buyer_id: str) -> Optional[OrderRecord]:
        o = self.orders.get(order_id)
        if o is None or o.buyer_id != buyer_id:
            return None
        return replace(o)

    async def get_by_token(self, token: str) -> Optional[OrderRecord]:
        if not token:
            return None
        for o in self.orders.values():
            if o.confirmation_token == token:
                return replace(o)
        return None

    async def list_recent(self, status: Optional[str] = None,
                          limit: int = 200) -> List[OrderRecord]:
        rows = [o for o in self.orders.values()
                if not status or o.status == status]
        rows.sort(key=lambda o: o.created_at, reverse=True)
        return [replace(o) for o in rows[:max(1, min(int(limit), 500))]]

    def _pending(self, order_id: str,
                 token: Optional[str]) -> Optional[OrderRecord]:
        o = self.orders.get(order_id)
        if o is None or not is_pending(o):
            return None
        if token is not None and o.confirmation_token != token:
            return None
        return o

    async def bind_item(self, order_id: str, item_id: str,
                        confirmed_by: Optional[str],
                        token: Optional[str] = None) -> bool:
        o = self._pending(order_id, token)
        if o is None:
            return False
        o.status, o.payment_status = target_of(o.status, ACTION_CONFIRM)
        o.inventory_item_id = item_id
        o.confirmed_by = confirmed_by
        o.confirmed_at = now_ts()
        o.confirmation_token = None
        return True

    async def reject(self, order_id: str, reason: str,
                     rejected_by: Optional[str],
                     token: Optional[str] = None) -> bool:
        o = self._pending(order_id, token)
        if o is None:
            return False
        o.status, o.payment_status = target_of(o.status, ACTION_REJECT)
        o.rejection_reason = reason
        o.confirmed_by = rejected_by
        o.confirmed_at = now_ts()
        o.confirmation_token = None
        return True

    async def cancel(self, order_id: str, buyer_id: str,
                     reason: str) -> bool:
        o = self._pending(order_id, None)
        if o is None or o.buyer_id != buyer_id or o.code_revealed:
            return False
        o.status, o.payment_status = target_of(ORDER_AWAITING, "cancel")
        o.rejection_reason = reason
        o.inventory_item_id = None
        o.confirmation_token = None
        return True

    async def mark_revealed(self, order_id: str, buyer_id: str) -> bool:
        o = self.orders.get(order_id)
        if (o is None or o.buyer_id != buyer_id
                or o.status != ORDER_COMPLETED or o.code_revealed):
            return False
        o.code_revealed = True
        o.code_revealed_at = now_ts()
        return True
