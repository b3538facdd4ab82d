import asyncio

import pytest
from sqlalchemy import text

from giftcodes.errors import Conflict, OutOfStock, ValidationError
from giftcodes.model.inventory._memory import InventoryStore as MemInventory
from giftcodes.model.profiles._memory import ProfileDirectory as MemProfiles
from giftcodes.model.states import ITEM_AVAILABLE, ITEM_SOLD

from tests.seed import BUYER, EMPTY, OTHER_BUYER, STEAM, XBOX, seed


async def test_claim_marks_item_sold_and_decrements_counter(stores):
    inventory, _, _ = stores

    item = await inventory.claim(STEAM, BUYER)

    assert item.status == ITEM_SOLD
    assert item.buyer_id == BUYER
    assert item.sold_at is not None
    stored = await inventory.get_item(item.id)
    assert stored.status == ITEM_SOLD
    assert await inventory.inventory(STEAM) == {
        "product_id": STEAM, "stock": 2, "available": 2, "sold": 1,
        "in_sync": True,
    }


async def test_claim_without_codes_raises_out_of_stock(stores):
    inventory, _, _ = stores

    with pytest.raises(OutOfStock) as ei:
        await inventory.claim(EMPTY, BUYER)

    assert ei.value.product_id == EMPTY
    assert ei.value.status_code == 409
    assert (await inventory.inventory(EMPTY))["stock"] == 0


async def test_concurrent_claims_never_hand_out_the_same_code(stores):
    inventory, _, _ = stores

    results = await asyncio.gather(
        *(inventory.claim(STEAM, f"buyer-{n}") for n in range(5)),
        return_exceptions=True,
    )

    items = [r for r in results if not isinstance(r, Exception)]
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(items) == 3
    assert len({i.id for i in items}) == 3
    assert len(errors) == 2
    assert all(isinstance(e, OutOfStock) for e in errors)
    inv = await inventory.inventory(STEAM)
    assert (inv["available"], inv["sold"], inv["stock"]) == (0, 3, 0)


async def test_release_returns_code_once(stores):
    inventory, _, _ = stores
    item = await inventory.claim(XBOX, BUYER)

    assert await inventory.release(item.id) is True
    assert await inventory.release(item.id) is False

    restored = await inventory.get_item(item.id)
    assert restored.status == ITEM_AVAILABLE
    assert restored.buyer_id is None
    assert await inventory.inventory(XBOX) == {
        "product_id": XBOX, "stock": 1, "available": 1, "sold": 0,
        "in_sync": True,
    }
    again = await inventory.claim(XBOX, OTHER_BUYER)
    assert again.id == item.id


async def test_release_unknown_item_is_a_noop(stores):
    inventory, _, _ = stores
    assert await inventory.release("no-such-item") is False


async def test_count_available_reads_item_table(stores):
    inventory, _, _ = stores
    assert await inventory.count_available(STEAM) == 3
    await inventory.claim(STEAM, BUYER)
    assert await inventory.count_available(STEAM) == 2
    assert await inventory.count_available(EMPTY) == 0


async def test_add_code_rejects_duplicates_and_blanks(stores):
    inventory, _, _ = stores

    with pytest.raises(ValidationError):
        await inventory.add_code(STEAM, "STEAM-CODE-0")
    with pytest.raises(ValidationError):
        await inventory.add_code(STEAM, "   ")

    assert await inventory.count_available(STEAM) == 3
    assert (await inventory.inventory(STEAM))["stock"] == 3


async def test_add_code_increments_counter(stores):
    inventory, _, _ = stores

    item = await inventory.add_code(EMPTY, "  PSN-NEW-1 ")

    assert item.code == "PSN-NEW-1"
    assert item.status == ITEM_AVAILABLE
    assert (await inventory.inventory(EMPTY))["stock"] == 1
    assert await inventory.count_available(EMPTY) == 1


async def test_unknown_product_lookups(stores):
    inventory, _, _ = stores
    assert await inventory.get_product("nope") is None
    assert await inventory.inventory("nope") is None
    assert await inventory.get_item("nope") is None


async def test_memory_recount_repairs_drifted_counter():
    inventory = MemInventory()
    await seed(inventory, MemProfiles())
    inventory.products[STEAM].stock = 17
    assert (await inventory.inventory(STEAM))["in_sync"] is False

    assert await inventory.recount(STEAM) == {STEAM: 3}
    assert (await inventory.inventory(STEAM))["in_sync"] is True


async def test_sql_recount_repairs_drifted_counter(sql_stores, sql_sessions):
    inventory, _, _ = sql_stores
    async with sql_sessions() as db:
        async with db.begin():
            await db.execute(text("UPDATE products SET stock = 42"))

    assert await inventory.recount() == {STEAM: 3, XBOX: 1, EMPTY: 0}
    for pid in (STEAM, XBOX, EMPTY):
        assert (await inventory.inventory(pid))["in_sync"] is True


async def test_counter_never_goes_negative(sql_stores, sql_sessions):
    inventory, _, _ = sql_stores
    async with sql_sessions() as db:
        async with db.begin():
            await db.execute(text("UPDATE products SET stock = 0"))

    await inventory.claim(XBOX, BUYER)

    inv = await inventory.inventory(XBOX)
    assert (inv["stock"], inv["available"], inv["in_sync"]) == (0, 0, True)


async def test_claim_gives_up_after_max_attempts():
    inventory = MemInventory(max_claim_attempts=1)
    await seed(inventory, MemProfiles())

    # both pick the single XBOX code; the loser has no attempts left
    results = await asyncio.gather(
        inventory.claim(XBOX, BUYER),
        inventory.claim(XBOX, OTHER_BUYER),
        return_exceptions=True,
    )

    assert results[0].buyer_id == BUYER
    assert isinstance(results[1], Conflict)
    assert await inventory.count_available(XBOX) == 0


async def test_add_code_unknown_product(stores):
    inventory, _, _ = stores

    with pytest.raises(ValidationError):
        await inventory.add_code("no-such-product", "ORPHAN-1")

    assert await inventory.count_available("no-such-product") == 0
