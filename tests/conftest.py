"""Shared fixtures: seeded in-memory stores, a SQLite-backed set of stores
and a fully wired gateway."""
import logging

import pytest
import pytest_asyncio

from giftcodes.gateway import ConfirmationGateway, ProofFile
from giftcodes.infra.sql import make_async_engine
from giftcodes.model import Base
from giftcodes.model.inventory._memory import InventoryStore as MemInventory
from giftcodes.model.inventory._sql import InventoryStore as SqlInventory
from giftcodes.model.orders._memory import OrderStore as MemOrders
from giftcodes.model.orders._sql import OrderStore as SqlOrders
from giftcodes.model.profiles._memory import ProfileDirectory as MemProfiles
from giftcodes.model.profiles._sql import ProfileDirectory as SqlProfiles
from giftcodes.notify import RecordingNotifier
from giftcodes.storage import MemoryProofStorage

from tests.seed import BASE_URL, BUYER, STEAM, seed

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


# ----------------------------
# in-memory backend
# ----------------------------
@pytest.fixture
def inventory():
    return MemInventory()


@pytest.fixture
def orders():
    return MemOrders()


@pytest.fixture
def profiles():
    return MemProfiles()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def storage():
    return MemoryProofStorage()


@pytest_asyncio.fixture
async def gateway(inventory, orders, profiles, storage, notifier):
    await seed(inventory, profiles)
    return ConfirmationGateway(
        inventory=inventory,
        orders=orders,
        profiles=profiles,
        storage=storage,
        notifier=notifier,
    )


@pytest.fixture
def proof():
    return ProofFile(filename="comprobante.JPG", data=b"\xff\xd8\xff proof",
                     content_type="image/jpeg")


@pytest.fixture
def place_order(gateway, proof):
    async def _place(product_id=STEAM, buyer_id=BUYER, amount=25000):
        return await gateway.create_purchase(
            product_id, amount, buyer_id, "Maria Perez", proof, BASE_URL,
        )
    return _place


# ----------------------------
# SQLite backend (aiosqlite)
# ----------------------------
async def open_sqlite(tmp_path):
    engine, sessions = make_async_engine(
        f"sqlite:///{tmp_path / 'giftcodes.db'}"
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, sessions


async def sql_backend(sessions):
    inv = SqlInventory(sessions=sessions)
    prof = SqlProfiles(sessions=sessions)
    await seed(inv, prof)
    return inv, SqlOrders(sessions=sessions), prof


@pytest_asyncio.fixture
async def sql_sessions(tmp_path):
    engine, sessions = await open_sqlite(tmp_path)
    yield sessions
    await engine.dispose()


@pytest_asyncio.fixture
async def sql_stores(sql_sessions):
    return await sql_backend(sql_sessions)


@pytest_asyncio.fixture
async def sql_gateway(sql_stores, storage, notifier):
    inv, ords, prof = sql_stores
    return ConfirmationGateway(
        inventory=inv, orders=ords, profiles=prof,
        storage=storage, notifier=notifier,
    )


@pytest_asyncio.fixture(params=["memory", "sql"])
async def stores(request, tmp_path):
    """(inventory, orders, profiles) for each backend, seeded."""
    if request.param == "memory":
        inv, ords, prof = MemInventory(), MemOrders(), MemProfiles()
        await seed(inv, prof)
        yield inv, ords, prof
        return
    engine, sessions = await open_sqlite(tmp_path)
    yield await sql_backend(sessions)
    await engine.dispose()
