import logging

import pytest

from giftcodes.errors import Conflict, InternalError, OutOfStock
from giftcodes.errors import ValidationError
from giftcodes.fulfillment import FulfillmentCoordinator
from giftcodes.helpers import new_confirmation_token, new_id, now_ts
from giftcodes.model.inventory._memory import InventoryStore as MemInventory
from giftcodes.model.orders._memory import OrderStore as MemOrders
from giftcodes.model.profiles._memory import ProfileDirectory as MemProfiles
from giftcodes.model.records import OrderRecord
from giftcodes.model.states import ORDER_AWAITING, ORDER_COMPLETED

from tests.seed import ADMIN, BUYER, EMPTY, STEAM, XBOX, seed


class ExplodingOrders(MemOrders):
    def __init__(self, exc: Exception) -> None:
        super().__init__()
        self.exc = exc

    async def bind_item(self, order_id, item_id, confirmed_by, token=None):
        raise self.exc


class StuckInventory(MemInventory):
    async def release(self, item_id):
        raise RuntimeError("connection reset")


async def setup(inventory, orders, product_id=STEAM):
    await seed(inventory, MemProfiles())
    order = OrderRecord(id=new_id(), buyer_id=BUYER, product_id=product_id,
                        amount=25000, created_at=now_ts(),
                        confirmation_token=new_confirmation_token())
    await orders.create(order)
    return FulfillmentCoordinator(inventory, orders), order


async def test_confirm_claims_and_binds():
    inventory, orders = MemInventory(), MemOrders()
    coordinator, order = await setup(inventory, orders)

    item = await coordinator.confirm(order, ADMIN)

    got = await orders.get(order.id)
    assert got.status == ORDER_COMPLETED
    assert got.inventory_item_id == item.id
    assert (await inventory.get_item(item.id)).buyer_id == BUYER
    assert await inventory.count_available(STEAM) == 2


async def test_out_of_stock_leaves_order_pending():
    inventory, orders = MemInventory(), MemOrders()
    coordinator, order = await setup(inventory, orders, product_id=EMPTY)

    with pytest.raises(OutOfStock) as ei:
        await coordinator.confirm(order, ADMIN)

    assert ei.value.needs_refund is True
    assert ei.value.to_dict()["needs_refund"] is True
    assert (await orders.get(order.id)).status == ORDER_AWAITING


async def test_bind_crash_releases_code():
    inventory = MemInventory()
    orders = ExplodingOrders(RuntimeError("db went away"))
    coordinator, order = await setup(inventory, orders, product_id=XBOX)

    with pytest.raises(InternalError):
        await coordinator.confirm(order, ADMIN)

    assert await inventory.count_available(XBOX) == 1
    assert (await inventory.inventory(XBOX))["in_sync"] is True


async def test_bind_domain_error_propagates_after_release():
    inventory = MemInventory()
    orders = ExplodingOrders(ValidationError("bad order row"))
    coordinator, order = await setup(inventory, orders, product_id=XBOX)

    with pytest.raises(ValidationError):
        await coordinator.confirm(order, ADMIN)

    assert await inventory.count_available(XBOX) == 1


async def test_lost_bind_race_releases_code_and_reports_state():
    inventory, orders = MemInventory(), MemOrders()
    coordinator, order = await setup(inventory, orders, product_id=XBOX)
    # someone else rejected it between our read and our bind
    await orders.reject(order.id, "Payment not verified", ADMIN)

    with pytest.raises(Conflict) as ei:
        await coordinator.confirm(order, ADMIN)

    assert "REJECTED" in ei.value.message
    assert ei.value.current_status == "rejected"
    assert await inventory.count_available(XBOX) == 1


async def test_stale_token_loses_bind():
    inventory, orders = MemInventory(), MemOrders()
    coordinator, order = await setup(inventory, orders, product_id=XBOX)

    with pytest.raises(Conflict) as ei:
        await coordinator.confirm(order, "telegram-link", token="stale")

    assert ei.value.message == "order changed concurrently, retry"
    assert await inventory.count_available(XBOX) == 1
    assert (await orders.get(order.id)).status == ORDER_AWAITING


async def test_failed_compensation_is_logged_and_original_error_kept(caplog):
    inventory = StuckInventory()
    orders = ExplodingOrders(RuntimeError("db went away"))
    coordinator, order = await setup(inventory, orders, product_id=XBOX)

    with caplog.at_level(logging.INFO, logger="giftcodes.fulfillment"):
        with pytest.raises(InternalError):
            await coordinator.confirm(order, ADMIN)

    failed = [r for r in caplog.records
              if "COMPENSATION FAILED" in r.getMessage()]
    assert failed and failed[0].levelno == logging.ERROR
    assert await inventory.count_available(XBOX) == 0
