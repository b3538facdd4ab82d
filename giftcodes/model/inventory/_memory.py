# model/inventory/_memory.py
from __future__ import annotations
import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from ...errors import Conflict, OutOfStock, ValidationError
from ...helpers import new_id, now_ts
from ..ports import InventoryStore as _InventoryStore
from ..records import ItemRecord, ProductRecord
from ..states import ITEM_AVAILABLE, ITEM_SOLD

logger = logging.getLogger(__name__)


class InventoryStore(_InventoryStore):
    """
    Process-local inventory. Each check-and-set below runs without an await
    between the check and the write, which makes it atomic on the event
    loop. ``claim`` yields between picking a candidate and the conditional
    write, so concurrent claims really race like they do against a database.
    """

    def __init__(self, *, max_claim_attempts: int = 50) -> None:
        self.products: Dict[str, ProductRecord] = {}
        self.items: Dict[str, ItemRecord] = {}
        self.max_claim_attempts = max_claim_attempts

    async def add_product(self, product: ProductRecord) -> None:
        if product.id in self.products:
            raise ValidationError("product already exists",
                                  {"product_id": product.id})
        self.products[product.id] = replace(
            product, stock=0, created_at=product.created_at or now_ts()
        )

    async def get_product(self, product_id: str) -> Optional[ProductRecord]:
        p = self.products.get(product_id)
        return replace(p) if p else None

    async def add_code(self, product_id: str, code: str,
                       provider_id: Optional[str] = None) -> ItemRecord:
        code = (code or "").strip()
        if not code:
            raise ValidationError("code must not be empty")
        if product_id not in self.products or any(
            i.code == code for i in self.items.values()
        ):
            raise ValidationError("duplicate code or unknown product",
                                  {"product_id": product_id})
        item = ItemRecord(id=new_id(), product_id=product_id, code=code,
                          provider_id=provider_id, created_at=now_ts())
        self.items[item.id] = item
        self._adjust_stock(product_id, +1)
        return replace(item)

    async def get_item(self, item_id: str) -> Optional[ItemRecord]:
        item = self.items.get(item_id)
        return replace(item) if item else None

    def _next_candidate(self, product_id: str,
                        skip: List[str]) -> Optional[str]:
        candidates = sorted(
            (i for i in self.items.values()
             if i.product_id == product_id and i.status == ITEM_AVAILABLE
             and i.id not in skip),
            key=lambda i: (i.created_at, i.id),
        )
        return candidates[0].id if candidates else None

    def _try_claim(self, item_id: str,
                   owner_id: str) -> Optional[ItemRecord]:
        item = self.items.get(item_id)
        if item is None or item.status != ITEM_AVAILABLE:
            return None
        item.status = ITEM_SOLD
        item.buyer_id = owner_id
        item.sold_at = now_ts()
        return replace(item)

    async def claim(self, product_id: str, owner_id: str) -> ItemRecord:
        lost: List[str] = []
        for _ in range(self.max_claim_attempts):
            candidate = self._next_candidate(product_id, lost)
            if candidate is None:
                raise OutOfStock("no codes available for this product",
                                 product_id=product_id)
            # round trip between the read and the conditional write
            await asyncio.sleep(0)
            item = self._try_claim(candidate, owner_id)
            if item is not None:
                self._adjust_stock(product_id, -1)
                return item
            logger.debug("claim race lost product=%s item=%s",
                         product_id, candidate)
            lost.append(candidate)
        raise Conflict("inventory is under contention, retry the request",
                       context={"product_id": product_id})

    async def release(self, item_id: str) -> bool:
        item = self.items.get(item_id)
        if item is None or item.status != ITEM_SOLD:
            return False
        item.status = ITEM_AVAILABLE
        item.buyer_id = None
        item.sold_at = None
        self._adjust_stock(item.product_id, +1)
        return True

    def _adjust_stock(self, product_id: str, delta: int) -> None:
        p = self.products.get(product_id)
        if p is None:
            logger.error("stock counter update for unknown product=%s",
                         product_id)
            return
        p.stock = max(0, p.stock + delta)

    def _counts(self, product_id: str) -> Dict[str, int]:
        out = {ITEM_AVAILABLE: 0, ITEM_SOLD: 0}
        for i in self.items.values():
            if i.product_id == product_id:
                out[i.status] = out.get(i.status, 0) + 1
        return out

    async def count_available(self, product_id: str) -> int:
        return self._counts(product_id)[ITEM_AVAILABLE]

    async def inventory(self, product_id: str) -> Optional[Dict[str, Any]]:
        p = self.products.get(product_id)
        if p is None:
            return None
        counts = self._counts(product_id)
        return {
            "product_id": product_id,
            "stock": p.stock,
            "available": counts[ITEM_AVAILABLE],
            "sold": counts[ITEM_SOLD],
            "in_sync": p.stock == counts[ITEM_AVAILABLE],
        }

    async def recount(
        self, product_id: Optional[str] = None
    ) -> Dict[str, int]:
        ids = [product_id] if product_id is not None else list(self.products)
        out: Dict[str, int] = {}
        for pid in ids:
            p = self.products.get(pid)
            if p is None:
                continue
            p.stock = self._counts(pid)[ITEM_AVAILABLE]
            out[pid] = p.stock
        return out
