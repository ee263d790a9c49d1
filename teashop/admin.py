import logging
import math
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .auth import Principal, require_admin
from .catalog import adjust_stock, get_category, get_product, product_out
from .db import get_session
from .errors import InvalidInput, OrderNotFound
from .models import ORDER_STATUSES, Order, Product, utcnow
from .orders import order_out
from .schemas import (
    INT_MAX,
    OrderOut,
    OrderPage,
    OrderStatusIn,
    ProductIn,
    ProductOut,
    RowIdPath,
    StockAdjustIn,
    StockOut,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin")


# ---------- Products ----------
def check_category(session: Session, payload: ProductIn) -> None:
    if payload.category_id is not None:
        get_category(session, payload.category_id)


@router.get("/products", response_model=List[ProductOut])
def list_products(admin: Principal = Depends(require_admin), session: Session = Depends(get_session)):
    rows = session.execute(select(Product).order_by(Product.id)).scalars().all()
    return [product_out(p) for p in rows]


@router.post("/products", response_model=ProductOut, status_code=201)
def create_product(payload: ProductIn, admin: Principal = Depends(require_admin), session: Session = Depends(get_session)):
    check_category(session, payload)
    p = Product(**payload.model_dump())
    session.add(p)
    session.commit()
    session.refresh(p)
    logger.info("admin %s created product %s", admin.user_id, p.id)
    return product_out(p)


@router.put("/products/{pid}", response_model=ProductOut)
def update_product(pid: RowIdPath, payload: ProductIn, admin: Principal = Depends(require_admin), session: Session = Depends(get_session)):
    p = get_product(session, pid)
    check_category(session, payload)
    for field, value in payload.model_dump().items():
        setattr(p, field, value)
    session.add(p)
    session.commit()
    session.refresh(p)
    return product_out(p)


@router.delete("/products/{pid}", status_code=204)
def delete_product(pid: RowIdPath, admin: Principal = Depends(require_admin), session: Session = Depends(get_session)):
    p = get_product(session, pid)
    session.delete(p)
    session.commit()
    logger.info("admin %s deleted product %s", admin.user_id, pid)
    return Response(status_code=204)


@router.post("/products/{pid}/stock", response_model=StockOut)
def adjust_product_stock(pid: RowIdPath, payload: StockAdjustIn, admin: Principal = Depends(require_admin), session: Session = Depends(get_session)):
    stock = adjust_stock(session, pid, payload.delta)
    session.commit()
    logger.info("admin %s adjusted stock of product %s by %+d", admin.user_id, pid, payload.delta)
    return StockOut(product_id=pid, stock=stock)


# ---------- Orders ----------
@router.get("/orders", response_model=OrderPage)
def list_orders(
    page: int = Query(default=1, ge=1, le=INT_MAX),
    page_size: int = Query(default=10, ge=1, le=100, alias="pageSize"),
    status: Optional[str] = Query(default=None),
    admin: Principal = Depends(require_admin),
    session: Session = Depends(get_session),
):
    stmt = select(Order)
    count = select(func.count()).select_from(Order)
    if status:
        stmt = stmt.where(Order.status == status)
        count = count.where(Order.status == status)

    total = session.execute(count).scalar_one()
    orders = session.execute(
        stmt.order_by(Order.created_at.desc(), Order.id.desc()).limit(page_size).offset((page - 1) * page_size)
    ).scalars().all()
    return OrderPage(
        orders=[OrderOut.model_validate(o) for o in orders],
        page=page,
        page_size=page_size,
        total=total,
        total_pages=math.ceil(total / page_size),
    )


@router.get("/orders/{order_id}", response_model=OrderOut)
def get_order(order_id: RowIdPath, admin: Principal = Depends(require_admin), session: Session = Depends(get_session)):
    order = session.get(Order, order_id)
    if order is None:
        raise OrderNotFound(order_id)
    return order_out(session, order)


@router.put("/orders/{order_id}/status", response_model=OrderOut)
def update_order_status(
    order_id: RowIdPath,
    payload: OrderStatusIn,
    admin: Principal = Depends(require_admin),
    session: Session = Depends(get_session),
):
    if payload.status not in ORDER_STATUSES:
        raise InvalidInput(f"status must be one of {', '.join(ORDER_STATUSES)}")
    order = session.get(Order, order_id)
    if order is None:
        raise OrderNotFound(order_id)
    order.status = payload.status
    order.updated_at = utcnow()
    session.commit()
    logger.info("admin %s moved order %s to %s", admin.user_id, order_id, payload.status)
    return order_out(session, order)
