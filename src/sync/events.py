"""
Change notifications emitted by the cloud sync manager
"""
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from database.models import Bill, Product


class SyncEventType(str, Enum):
    SYNC_COMPLETE = "sync_complete"
    SYNC_ERROR = "sync_error"
    PRODUCTS_UPDATED = "products_updated"
    BILLS_UPDATED = "bills_updated"
    PRODUCT_CREATED = "product_created"
    PRODUCT_UPDATED = "product_updated"
    PRODUCT_DELETED = "product_deleted"
    BILL_CREATED = "bill_created"
    CONNECTIVITY_CHANGED = "connectivity_changed"


@dataclass
class SyncEvent:
    type: SyncEventType
    timestamp: float = field(default_factory=time.time)
    error: Optional[str] = None
    count: Optional[int] = None
    products: Optional[List[Product]] = None
    bills: Optional[List[Bill]] = None
    product: Optional[Product] = None
    bill: Optional[Bill] = None
    product_id: Optional[str] = None
    online: Optional[bool] = None

    def to_dict(self) -> dict:
        """JSON-friendly form, leaving out unset fields"""
        data = {"type": self.type.value, "timestamp": self.timestamp}
        for name in ("error", "count", "product_id", "online"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        if self.product is not None:
            data["product"] = self.product.model_dump(mode="json")
        if self.bill is not None:
            data["bill"] = self.bill.model_dump(mode="json")
        if self.products is not None:
            data["products"] = [p.model_dump(mode="json") for p in self.products]
        if self.bills is not None:
            data["bills"] = [b.model_dump(mode="json") for b in self.bills]
        return data
