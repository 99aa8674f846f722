"""
Record models for the product catalog and bills
"""
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProductCreate(BaseModel):
    name: str
    barcode: Optional[str] = None
    price: float = 0.0
    quantity: int = 0
    sold_quantity: int = 0
    category: str = ""
    image: Optional[str] = None


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    barcode: Optional[str] = None
    price: Optional[float] = None
    quantity: Optional[int] = None
    sold_quantity: Optional[int] = None
    category: Optional[str] = None
    image: Optional[str] = None


class Product(ProductCreate):
    id: str
    barcode: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class CartItem(BaseModel):
    id: str
    product_id: str
    name: str
    barcode: str
    price: float
    original_price: float
    quantity: int = 1
    image: Optional[str] = None


class BillCreate(BaseModel):
    items: List[CartItem] = Field(default_factory=list)
    total: float = 0.0
    subtotal: Optional[float] = None
    discount: Optional[float] = None
    customer_phone: Optional[str] = None
    qr_code: str = ""
    upi_id: Optional[str] = None


class Bill(BillCreate):
    id: str
    # Stable client-side key, identical on every store the bill reaches
    reference: str
    created_at: datetime = Field(default_factory=utc_now)


class StockSummary(BaseModel):
    total_products: int = 0
    total_current_stock: int = 0
    total_sold_stock: int = 0
    total_stock_value: float = 0.0
    total_sold_value: float = 0.0
