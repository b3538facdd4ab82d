from __future__ import annotations
from dataclasses import dataclass, fields, asdict
from typing import Any, Dict, Mapping, Optional

from ..helpers import to_iso
from .states import ITEM_AVAILABLE, ORDER_AWAITING, PAYMENT_AWAITING


class _Row:
    @classmethod
    def from_row(cls, row: Mapping[str, Any]):
        names = {f.name for f in fields(cls)}
        return cls(**{k: row[k] for k in row.keys() if k in names})

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ProfileRecord(_Row):
    id: str
    email: str
    full_name: str
    role: str
    created_at: float = 0.0

    @property
    def display_name(self) -> str:
        return self.full_name or self.email


@dataclass
class ProductRecord(_Row):
    id: str
    name: str
    price: int
    stock: int = 0
    currency: str = "cop"
    is_active: bool = True
    created_at: float = 0.0


@dataclass
class ItemRecord(_Row):
    id: str
    product_id: str
    code: str
    status: str = ITEM_AVAILABLE
    buyer_id: Optional[str] = None
    sold_at: Optional[float] = None
    provider_id: Optional[str] = None
    created_at: float = 0.0


@dataclass
class OrderRecord(_Row):
    id: str
    buyer_id: str
    product_id: str
    amount: int
    created_at: float
    status: str = ORDER_AWAITING
    payment_status: str = PAYMENT_AWAITING
    payment_method: str = "nequi"
    depositor_name: Optional[str] = None
    payment_proof_url: Optional[str] = None
    inventory_item_id: Optional[str] = None
    confirmation_token: Optional[str] = None
    code_revealed: bool = False
    code_revealed_at: Optional[float] = None
    rejection_reason: Optional[str] = None
    confirmed_by: Optional[str] = None
    confirmed_at: Optional[float] = None

    def public_view(self) -> Dict[str, Any]:
        """Order as shown to buyers and admins: no token, no code."""
        return {
            "order_id": self.id,
            "buyer_id": self.buyer_id,
            "product_id": self.product_id,
            "amount": self.amount,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "depositor_name": self.depositor_name or "",
            "payment_proof_url": self.payment_proof_url or "",
            "has_code": self.inventory_item_id is not None,
            "code_revealed": bool(self.code_revealed),
            "code_revealed_at": to_iso(self.code_revealed_at),
            "rejection_reason": self.rejection_reason,
            "confirmed_by": self.confirmed_by,
            "confirmed_at": to_iso(self.confirmed_at),
            "created_at": to_iso(self.created_at),
        }
