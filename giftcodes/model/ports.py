"""
Store interfaces injected into the fulfillment coordinator and the gateway.

Every mutating method is a conditional update against the backing store and
reports whether it applied. Callers branch on that result; nothing here
holds a lock across calls.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .records import ItemRecord, OrderRecord, ProductRecord, ProfileRecord


class InventoryStore(ABC):
    @abstractmethod
    async def add_product(self, product: ProductRecord) -> None: ...

    @abstractmethod
    async def get_product(self, product_id: str) -> Optional[ProductRecord]:
        ...

    @abstractmethod
    async def add_code(self, product_id: str, code: str,
                       provider_id: Optional[str] = None) -> ItemRecord: ...

    @abstractmethod
    async def get_item(self, item_id: str) -> Optional[ItemRecord]: ...

    # available -> sold, raises OutOfStock when no candidate can be won
    @abstractmethod
    async def claim(self, product_id: str, owner_id: str) -> ItemRecord: ...

    # sold -> available; False if the item was not sold
    @abstractmethod
    async def release(self, item_id: str) -> bool: ...

    @abstractmethod
    async def count_available(self, product_id: str) -> int: ...

    @abstractmethod
    async def inventory(self, product_id: str) -> Optional[Dict[str, Any]]:
        ...

    # rewrite the stock counter(s) from item rows; {product_id: stock}
    @abstractmethod
    async def recount(
        self, product_id: Optional[str] = None
    ) -> Dict[str, int]: ...


class OrderStore(ABC):
    @abstractmethod
    async def create(self, order: OrderRecord) -> None: ...

    @abstractmethod
    async def get(self, order_id: str) -> Optional[OrderRecord]: ...

    @abstractmethod
    async def get_for_buyer(self, order_id: str,
                            buyer_id: str) -> Optional[OrderRecord]: ...

    @abstractmethod
    async def get_by_token(self, token: str) -> Optional[OrderRecord]: ...

    @abstractmethod
    async def list_recent(self, status: Optional[str] = None,
                          limit: int = 200) -> List[OrderRecord]: ...

    # awaiting -> completed with item bound; token, when given, must match
    @abstractmethod
    async def bind_item(self, order_id: str, item_id: str,
                        confirmed_by: Optional[str],
                        token: Optional[str] = None) -> bool: ...

    # awaiting -> rejected
    @abstractmethod
    async def reject(self, order_id: str, reason: str,
                     rejected_by: Optional[str],
                     token: Optional[str] = None) -> bool: ...

    # awaiting -> refunded, only while the code was never revealed
    @abstractmethod
    async def cancel(self, order_id: str, buyer_id: str,
                     reason: str) -> bool: ...

    # completed, code_revealed false -> true
    @abstractmethod
    async def mark_revealed(self, order_id: str, buyer_id: str) -> bool: ...


class ProfileDirectory(ABC):
    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[ProfileRecord]: ...

    @abstractmethod
    async def add_profile(self, profile: ProfileRecord) -> None: ...
