# model/inventory/_sql.py
"""
SQL inventory backend (PostgreSQL via asyncpg, SQLite via aiosqlite).

Every statement runs in its own short transaction. The only write that
matters for correctness is the conditional claim:

    UPDATE inventory_items SET status='sold', ...
    WHERE id=:id AND status='available'
    RETURNING ...

No row back means another request won that item; we move on to the next
candidate. The products.stock counter is adjusted afterwards in a separate
statement and is treated as a cache of the item table.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...errors import Conflict, OutOfStock, ValidationError
from ...helpers import new_id, now_ts
from ..ports import InventoryStore as _InventoryStore
from ..records import ItemRecord, ProductRecord
from ..states import ITEM_AVAILABLE, ITEM_SOLD

logger = logging.getLogger(__name__)

ITEM_COLUMNS = (
    "id, product_id, code, status, buyer_id, sold_at, provider_id, created_at"
)


class InventoryStore(_InventoryStore):
    def __init__(self, *, sessions: async_sessionmaker[AsyncSession],
                 max_claim_attempts: int = 50) -> None:
        self.sessions = sessions
        self.max_claim_attempts = max_claim_attempts

    # --------------------------------------------------------------------
    # products / codes
    # --------------------------------------------------------------------
    async def add_product(self, product: ProductRecord) -> None:
        async with self.sessions() as db:
            async with db.begin():
                await db.execute(text("""
                    INSERT INTO products(
                        id, name, price, currency, stock, is_active,
                        created_at)
                    VALUES(:id, :name, :price, :currency, 0, :is_active,
                           :created_at)
                """), {
                    "id": product.id,
                    "name": product.name,
                    "price": int(product.price),
                    "currency": product.currency,
                    "is_active": bool(product.is_active),
                    "created_at": product.created_at or now_ts(),
                })

    async def get_product(self, product_id: str) -> Optional[ProductRecord]:
        async with self.sessions() as db:
            row = (await db.execute(text("""
                SELECT id, name, price, currency, stock, is_active, created_at
                FROM products WHERE id=:id
            """), {"id": product_id})).mappings().first()
        return ProductRecord.from_row(row) if row else None

    async def add_code(self, product_id: str, code: str,
                       provider_id: Optional[str] = None) -> ItemRecord:
        code = (code or "").strip()
        if not code:
            raise ValidationError("code must not be empty")
        item = ItemRecord(id=new_id(), product_id=product_id, code=code,
                          provider_id=provider_id, created_at=now_ts())
        try:
            async with self.sessions() as db:
                async with db.begin():
                    await db.execute(text("""
                        INSERT INTO inventory_items(
                            id, product_id, code, status, provider_id,
                            created_at)
                        VALUES(:id, :product_id, :code, :status,
                               :provider_id, :created_at)
                    """), {
                        "id": item.id,
                        "product_id": product_id,
                        "code": code,
                        "status": ITEM_AVAILABLE,
                        "provider_id": provider_id,
                        "created_at": item.created_at,
                    })
        except IntegrityError:
            raise ValidationError(
                "duplicate code or unknown product",
                {"product_id": product_id},
            ) from None
        await self._adjust_stock(product_id, +1)
        return item

    async def get_item(self, item_id: str) -> Optional[ItemRecord]:
        async with self.sessions() as db:
            row = (await db.execute(
                text(f"SELECT {ITEM_COLUMNS} FROM inventory_items "
                     "WHERE id=:id"),
                {"id": item_id},
            )).mappings().first()
        return ItemRecord.from_row(row) if row else None

    # --------------------------------------------------------------------
    # claim / release
    # --------------------------------------------------------------------
    async def _next_candidate(
        self, product_id: str, skip: List[str]
    ) -> Optional[str]:
        if skip:
            stmt = text("""
                SELECT id FROM inventory_items
                WHERE product_id=:p AND status=:available
                  AND id NOT IN :skip
                ORDER BY created_at, id
                LIMIT 1
            """).bindparams(bindparam("skip", expanding=True))
            params = {"p": product_id, "available": ITEM_AVAILABLE,
                      "skip": list(skip)}
        else:
            stmt = text("""
                SELECT id FROM inventory_items
                WHERE product_id=:p AND status=:available
                ORDER BY created_at, id
                LIMIT 1
            """)
            params = {"p": product_id, "available": ITEM_AVAILABLE}
        async with self.sessions() as db:
            row = (await db.execute(stmt, params)).first()
        return row[0] if row else None

    async def _try_claim(self, item_id: str,
                         owner_id: str) -> Optional[ItemRecord]:
        async with self.sessions() as db:
            async with db.begin():
                row = (await db.execute(text(f"""
                    UPDATE inventory_items
                    SET status=:sold, buyer_id=:owner, sold_at=:now
                    WHERE id=:id AND status=:available
                    RETURNING {ITEM_COLUMNS}
                """), {
                    "sold": ITEM_SOLD,
                    "available": ITEM_AVAILABLE,
                    "owner": owner_id,
                    "now": now_ts(),
                    "id": item_id,
                })).mappings().first()
        return ItemRecord.from_row(row) if row else None

    async def claim(self, product_id: str, owner_id: str) -> ItemRecord:
        lost: List[str] = []
        for _ in range(self.max_claim_attempts):
            candidate = await self._next_candidate(product_id, lost)
            if candidate is None:
                raise OutOfStock("no codes available for this product",
                                 product_id=product_id)
            item = await self._try_claim(candidate, owner_id)
            if item is not None:
                await self._adjust_stock(product_id, -1)
                return item
            logger.debug("claim race lost product=%s item=%s",
                         product_id, candidate)
            lost.append(candidate)
        raise Conflict("inventory is under contention, retry the request",
                       context={"product_id": product_id})

    async def release(self, item_id: str) -> bool:
        async with self.sessions() as db:
            async with db.begin():
                row = (await db.execute(text("""
                    UPDATE inventory_items
                    SET status=:available, buyer_id=NULL, sold_at=NULL
                    WHERE id=:id AND status=:sold
                    RETURNING product_id
                """), {
                    "available": ITEM_AVAILABLE,
                    "sold": ITEM_SOLD,
                    "id": item_id,
                })).first()
        if row is None:
            return False
        await self._adjust_stock(row[0], +1)
        return True

    async def _adjust_stock(self, product_id: str, delta: int) -> None:
        # counter is a cache: a failure here is logged, never raised
        if delta < 0:
            sql = ("UPDATE products SET stock = stock - 1 "
                   "WHERE id=:p AND stock > 0")
        else:
            sql = "UPDATE products SET stock = stock + 1 WHERE id=:p"
        try:
            async with self.sessions() as db:
                async with db.begin():
                    await db.execute(text(sql), {"p": product_id})
        except Exception:
            logger.exception(
                "stock counter update failed product=%s delta=%d; "
                "run a recount", product_id, delta,
            )

    # --------------------------------------------------------------------
    # read APIs / reconciliation
    # --------------------------------------------------------------------
    async def count_available(self, product_id: str) -> int:
        async with self.sessions() as db:
            n = (await db.execute(text("""
                SELECT COUNT(*) FROM inventory_items
                WHERE product_id=:p AND status=:available
            """), {"p": product_id, "available": ITEM_AVAILABLE})
            ).scalar_one()
        return int(n)

    async def inventory(self, product_id: str) -> Optional[Dict[str, Any]]:
        async with self.sessions() as db:
            async with db.begin():
                stock = (await db.execute(
                    text("SELECT stock FROM products WHERE id=:p"),
                    {"p": product_id},
                )).scalar_one_or_none()
                if stock is None:
                    return None
                rows = (await db.execute(text("""
                    SELECT status, COUNT(*) AS n FROM inventory_items
                    WHERE product_id=:p GROUP BY status
                """), {"p": product_id})).all()
        counts = {r[0]: int(r[1]) for r in rows}
        available = counts.get(ITEM_AVAILABLE, 0)
        return {
            "product_id": product_id,
            "stock": int(stock),
            "available": available,
            "sold": counts.get(ITEM_SOLD, 0),
            "in_sync": int(stock) == available,
        }

    async def recount(
        self, product_id: Optional[str] = None
    ) -> Dict[str, int]:
        sql = """
            UPDATE products SET stock = (
                SELECT COUNT(*) FROM inventory_items i
                WHERE i.product_id = products.id AND i.status = :available
            )
        """
        params: Dict[str, Any] = {"available": ITEM_AVAILABLE}
        if product_id is not None:
            sql += " WHERE id = :p"
            params["p"] = product_id
        sql += " RETURNING id, stock"
        async with self.sessions() as db:
            async with db.begin():
                rows = (await db.execute(text(sql), params)).all()
        return {r[0]: int(r[1]) for r in rows}
