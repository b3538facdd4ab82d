"""
Claim -> bind -> compensate.

The inventory and order stores share no transaction, so confirming a
payment is a two-step saga:

1. claim an available code for the product (conditional update on the
   item row);
2. bind it to the order (conditional update on the order row, keyed on the
   order still awaiting confirmation and, on the link path, on the token);
3. if step 2 does not apply or blows up, release the claimed code before
   the error reaches the caller.

This is the only place where a successful downstream step is turned into a
caller-visible failure.
"""
from __future__ import annotations
import logging
from typing import Optional

from .errors import Conflict, GiftCodeError, InternalError, NotFoundError
from .errors import OutOfStock
from .model.ports import InventoryStore, OrderStore
from .model.records import ItemRecord, OrderRecord
from .model.states import already_processed_message, is_pending

logger = logging.getLogger(__name__)

NO_STOCK_MESSAGE = (
    "No codes available for this product. The payment was received but "
    "there is no stock: refund or restock needed."
)


def conflict_for(current: Optional[OrderRecord]) -> GiftCodeError:
    if current is None:
        return NotFoundError("order not found")
    if is_pending(current):
        return Conflict("order changed concurrently, retry",
                        current_status=current.status)
    return Conflict(already_processed_message(current),
                    current_status=current.status)


class FulfillmentCoordinator:
    def __init__(self, inventory: InventoryStore, orders: OrderStore) -> None:
        self.inventory = inventory
        self.orders = orders

    async def confirm(self, order: OrderRecord, confirmed_by: Optional[str],
                      token: Optional[str] = None) -> ItemRecord:
        tag = f"[order={order.id}]"
        logger.info("%s SAGA START product=%s by=%s", tag, order.product_id,
                    confirmed_by)

        try:
            item = await self.inventory.claim(order.product_id,
                                              order.buyer_id)
        except OutOfStock as e:
            logger.warning("%s SAGA ABORT out of stock product=%s", tag,
                           order.product_id)
            raise OutOfStock(NO_STOCK_MESSAGE, product_id=order.product_id,
                             needs_refund=True) from e
        logger.info("%s STEP claim OK item=%s", tag, item.id)

        try:
            bound = await self.orders.bind_item(order.id, item.id,
                                                confirmed_by, token=token)
        except Exception as e:
            logger.exception("%s STEP bind FAILED", tag)
            await self._compensate(tag, item)
            if isinstance(e, GiftCodeError):
                raise
            raise InternalError(
                "could not update the order; the code was returned to "
                "inventory"
            ) from e

        if not bound:
            logger.info("%s STEP bind lost the race", tag)
            await self._compensate(tag, item)
            raise conflict_for(await self.orders.get(order.id))

        logger.info("%s SAGA OK item=%s", tag, item.id)
        return item

    async def _compensate(self, tag: str, item: ItemRecord) -> None:
        logger.info("%s COMPENSATE release item=%s", tag, item.id)
        try:
            released = await self.inventory.release(item.id)
        except Exception:
            # the code stays sold with no order pointing at it
            logger.exception("%s COMPENSATION FAILED item=%s needs manual "
                             "release", tag, item.id)
            return
        if not released:
            logger.error("%s COMPENSATION no-op: item=%s was not sold", tag,
                         item.id)
            return
        logger.info("%s COMPENSATE release OK item=%s", tag, item.id)
