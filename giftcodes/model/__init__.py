from .orm import Base
from .records import ItemRecord, OrderRecord, ProductRecord, ProfileRecord

__all__ = [
    "Base", "ItemRecord", "OrderRecord", "ProductRecord", "ProfileRecord",
]
