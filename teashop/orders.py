import logging
import random
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from fastapi import APIRouter, Depends, status
from prometheus_client import Counter
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .auth import Principal, require_user
from .catalog import decrement_stock, image_url
from .db import get_session
from .errors import InsufficientStock, InvalidInput, OrderCreationFailed, OrderNotFound, ProductNotFound
from .models import Order, OrderItem, Product
from .schemas import OrderCreate, OrderCreated, OrderItemOut, OrderOut, RowIdPath

logger = logging.getLogger(__name__)

router = APIRouter()

ORDERS_CREATED = Counter("orders_created_total", "Orders created successfully")
ORDERS_FAILED = Counter("order_create_failures_total", "Order create failures", ["reason"])


@dataclass(frozen=True)
class LineRequest:
    product_id: int
    quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class PlacedOrder:
    order_id: int
    order_number: str


# ---------- Order writer ----------
def create_order_header(
    session: Session,
    user_id: str,
    total_amount: Decimal,
    shipping_info: Optional[Dict[str, Any]] = None,
) -> int:
    order = Order(user_id=user_id, total_amount=total_amount, status="pending", shipping_info=shipping_info)
    session.add(order)
    try:
        session.flush()  # get order.id
    except SQLAlchemyError as exc:
        raise OrderCreationFailed(str(exc)) from exc
    return order.id


def create_order_line(
    session: Session, order_id: int, product_id: int, quantity: int, unit_price: Decimal
) -> OrderItem:
    line = OrderItem(order_id=order_id, product_id=product_id, quantity=quantity, unit_price=unit_price)
    session.add(line)
    session.flush()
    return line


def new_order_number() -> str:
    # Display label only; orders.id is the durable key.
    return f"ORD{str(int(time.time() * 1000))[-8:]}{random.randint(0, 999)}"


# ---------- Checkout ----------
def place_order(
    session: Session,
    user_id: str,
    items: Sequence[LineRequest],
    total_amount: Decimal,
    shipping_info: Optional[Dict[str, Any]] = None,
) -> PlacedOrder:
    """
    Persist an order for ``user_id`` and take its lines out of stock.

    Lines are written in the order given, each followed by its stock
    decrement. Runs inside the caller's transaction: when any line fails the
    caller rolls back and neither the header nor any line or decrement survives.
    """
    if not items:
        raise InvalidInput("items must not be empty")
    for it in items:
        if it.quantity <= 0:
            raise InvalidInput(f"quantity for product {it.product_id} must be positive")

    order_id = create_order_header(session, user_id, total_amount, shipping_info)

    for it in items:
        create_order_line(session, order_id, it.product_id, it.quantity, it.unit_price)
        decrement_stock(session, it.product_id, it.quantity)

    placed = PlacedOrder(order_id=order_id, order_number=new_order_number())
    logger.info("order %s (%s) placed by user %s with %d line(s)",
                placed.order_id, placed.order_number, user_id, len(items))
    return placed


def get_user_order(session: Session, user_id: str, order_id: int) -> Order:
    order = session.execute(
        select(Order).where(Order.id == order_id, Order.user_id == user_id)
    ).scalar_one_or_none()
    if order is None:
        raise OrderNotFound(order_id)
    return order


def order_out(session: Session, order: Order) -> OrderOut:
    """Order with its lines, each decorated with the product name and image."""
    out = OrderOut.model_validate(order)
    product_ids = [i.product_id for i in order.items]
    products: Dict[int, Product] = {}
    if product_ids:
        rows = session.execute(select(Product).where(Product.id.in_(product_ids))).scalars().all()
        products = {p.id: p for p in rows}
    items: List[OrderItemOut] = []
    for i in order.items:
        p = products.get(i.product_id)
        items.append(
            OrderItemOut(
                product_id=i.product_id,
                quantity=i.quantity,
                unit_price=i.unit_price,
                name=p.name if p else None,
                image_url=image_url(p.image_filename) if p else None,
            )
        )
    out.items = items
    return out


# ---------- Endpoints ----------
@router.post("/orders", status_code=status.HTTP_201_CREATED, response_model=OrderCreated)
def create_order(
    payload: OrderCreate,
    user: Principal = Depends(require_user),
    session: Session = Depends(get_session),
):
    lines = [LineRequest(product_id=i.product_id, quantity=i.quantity, unit_price=i.price) for i in payload.items]
    shipping = payload.shipping_info.model_dump(exclude_none=True) if payload.shipping_info else None
    try:
        placed = place_order(session, user.user_id, lines, payload.total_amount, shipping)
        # commit before answering so an order id is only ever handed out for a stored order
        session.commit()
    except InvalidInput:
        ORDERS_FAILED.labels(reason="invalid_input").inc()
        raise
    except InsufficientStock:
        ORDERS_FAILED.labels(reason="insufficient_stock").inc()
        raise
    except ProductNotFound:
        ORDERS_FAILED.labels(reason="missing_product").inc()
        raise
    except (OrderCreationFailed, SQLAlchemyError):
        ORDERS_FAILED.labels(reason="storage").inc()
        raise

    ORDERS_CREATED.inc()
    return OrderCreated(message="order created", order_id=placed.order_id, order_number=placed.order_number)


@router.get("/orders", response_model=List[OrderOut])
def list_my_orders(user: Principal = Depends(require_user), session: Session = Depends(get_session)):
    orders = session.execute(
        select(Order).where(Order.user_id == user.user_id).order_by(Order.created_at.desc(), Order.id.desc())
    ).scalars().all()
    return [OrderOut.model_validate(o) for o in orders]


@router.get("/orders/{order_id}", response_model=OrderOut)
def get_my_order(order_id: RowIdPath, user: Principal = Depends(require_user), session: Session = Depends(get_session)):
    return order_out(session, get_user_order(session, user.user_id, order_id))
