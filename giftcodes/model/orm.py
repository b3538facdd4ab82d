from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
    ForeignKey,
    Index,
)

from .states import (
    ITEM_AVAILABLE, ORDER_AWAITING, PAYMENT_AWAITING, ROLE_CLIENT,
)


Base = declarative_base()


# ----------------------------
# ORM models (DDL only; queries are plain SQL in the store backends)
# ----------------------------
class Profile(Base):
    __tablename__ = "profiles"
    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True)
    full_name = Column(String, nullable=False, default="")
    # admin | cliente | proveedor
    role = Column(String, nullable=False, default=ROLE_CLIENT)
    created_at = Column(Float, nullable=False)


class Product(Base):
    __tablename__ = "products"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    price = Column(Integer, nullable=False)  # whole currency units
    currency = Column(String, nullable=False, default="cop")
    # cache of COUNT(inventory_items WHERE status='available')
    stock = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(Float, nullable=False)


class InventoryItem(Base):
    __tablename__ = "inventory_items"
    id = Column(String, primary_key=True)
    product_id = Column(String, ForeignKey("products.id"), nullable=False)
    code = Column(String, nullable=False, unique=True)
    # available | sold
    status = Column(String, nullable=False, default=ITEM_AVAILABLE)
    buyer_id = Column(String, nullable=True)
    sold_at = Column(Float, nullable=True)
    provider_id = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)

    __table_args__ = (
        Index("inventory_items_product_status_idx", "product_id", "status"),
    )


class Order(Base):
    __tablename__ = "orders"
    id = Column(String, primary_key=True)
    buyer_id = Column(String, nullable=False)
    product_id = Column(String, ForeignKey("products.id"), nullable=False)
    inventory_item_id = Column(String, ForeignKey("inventory_items.id"),
                               nullable=True, unique=True)
    amount = Column(Integer, nullable=False)

    # awaiting_confirmation | completed | rejected | refunded
    status = Column(String, nullable=False, default=ORDER_AWAITING)
    # awaiting_confirmation | confirmed | rejected
    payment_status = Column(String, nullable=False, default=PAYMENT_AWAITING)
    payment_method = Column(String, nullable=False, default="nequi")
    depositor_name = Column(String, nullable=True)
    payment_proof_url = Column(String, nullable=True)

    confirmation_token = Column(String, nullable=True, unique=True)
    code_revealed = Column(Boolean, nullable=False, default=False)
    code_revealed_at = Column(Float, nullable=True)
    rejection_reason = Column(String, nullable=True)
    confirmed_by = Column(String, nullable=True)
    confirmed_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)

    __table_args__ = (
        Index("orders_buyer_idx", "buyer_id"),
        Index("orders_created_at_idx", "created_at"),
    )
