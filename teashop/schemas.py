from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Optional

from fastapi import Path
from pydantic import BaseModel, ConfigDict, Field

Money = Decimal

# Integer columns are 32-bit on Postgres
INT_MAX = 2**31 - 1

RowId = Annotated[int, Field(ge=1, le=INT_MAX)]
RowIdPath = Annotated[int, Path(ge=1, le=INT_MAX)]


# ---------- Catalog ----------
class ProductIn(BaseModel):
    name: str = Field(min_length=1)
    price: Money = Field(ge=0, max_digits=10, decimal_places=2)
    stock: int = Field(ge=0, le=INT_MAX, default=0)
    category_id: Optional[RowId] = None
    image_filename: Optional[str] = None
    description: Optional[str] = None


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    price: Money
    stock: int
    category_id: Optional[int] = None
    image_filename: Optional[str] = None
    image_url: Optional[str] = None
    description: Optional[str] = None


class StockAdjustIn(BaseModel):
    delta: int = Field(ge=-INT_MAX, le=INT_MAX)


class StockOut(BaseModel):
    product_id: int
    stock: int


# ---------- Checkout ----------
class OrderItemIn(BaseModel):
    product_id: int = Field(alias="productId", ge=1, le=INT_MAX)
    # sign is checked by the checkout itself so it can answer with InvalidInput
    quantity: int = Field(le=INT_MAX)
    price: Money = Field(ge=0, max_digits=10, decimal_places=2)


class ShippingInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class OrderCreate(BaseModel):
    items: List[OrderItemIn]
    shipping_info: Optional[ShippingInfo] = Field(default=None, alias="shippingInfo")
    total_amount: Money = Field(alias="totalAmount", ge=0, max_digits=10, decimal_places=2)


class OrderCreated(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    order_id: int = Field(serialization_alias="orderId")
    order_number: str = Field(serialization_alias="orderNumber")


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    quantity: int
    unit_price: Money
    name: Optional[str] = None
    image_url: Optional[str] = None


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    total_amount: Money
    status: str
    shipping_info: Optional[dict] = None
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemOut] = []


class OrderPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    orders: List[OrderOut]
    page: int
    page_size: int = Field(serialization_alias="pageSize")
    total: int
    total_pages: int = Field(serialization_alias="totalPages")


class OrderStatusIn(BaseModel):
    # validated against ORDER_STATUSES by the handler so bad values answer 400
    status: str


class ErrorOut(BaseModel):
    error: str
    details: Optional[str] = None


# ---------- Categories ----------
class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    parent_id: Optional[int] = None
    children: List["CategoryOut"] = []


class CategoryProducts(BaseModel):
    category: CategoryOut
    products: List[ProductOut]


# ---------- Cart ----------
class CartAddIn(BaseModel):
    product_id: int = Field(alias="productId", ge=1, le=INT_MAX)
    quantity: int = Field(default=1, ge=1, le=INT_MAX)


class CartUpdateIn(BaseModel):
    product_id: int = Field(alias="productId", ge=1, le=INT_MAX)
    quantity: int = Field(ge=1, le=INT_MAX)


class CartRemoveIn(BaseModel):
    product_id: int = Field(alias="productId", ge=1, le=INT_MAX)


class CartLineOut(BaseModel):
    product_id: int
    name: str
    price: Money
    quantity: int
    image_url: Optional[str] = None


class MessageOut(BaseModel):
    message: str
