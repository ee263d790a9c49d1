import logging
import os
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, text
from sqlalchemy.orm import Session

from .db import get_session
from .errors import CategoryNotFound, InsufficientStock, InvalidInput, ProductNotFound
from .models import Category, Product
from .schemas import INT_MAX, CategoryOut, CategoryProducts, ProductOut, RowIdPath

logger = logging.getLogger(__name__)

IMAGE_DOMAIN = os.getenv("IMAGE_DOMAIN", "images.liubaotea.online")
RELATED_LIMIT = 4

router = APIRouter()


def image_url(filename: Optional[str]) -> Optional[str]:
    if not filename:
        return None
    return f"https://{IMAGE_DOMAIN}/image/Goods/{filename}"


def product_out(p: Product) -> ProductOut:
    out = ProductOut.model_validate(p)
    out.image_url = image_url(p.image_filename)
    return out


# ---------- Catalog reader ----------
def get_product(session: Session, product_id: int) -> Product:
    p = session.get(Product, product_id)
    if p is None:
        raise ProductNotFound(product_id)
    return p


def get_available_stock(session: Session, product_id: int) -> int:
    stock = session.execute(
        select(Product.stock).where(Product.id == product_id)
    ).scalar_one_or_none()
    if stock is None:
        raise ProductNotFound(product_id)
    return stock


def list_products(
    session: Session,
    category_id: Optional[int] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
) -> List[Product]:
    stmt = select(Product)
    if category_id is not None:
        stmt = stmt.where(Product.category_id == category_id)
    if min_price is not None:
        stmt = stmt.where(Product.price >= min_price)
    if max_price is not None:
        stmt = stmt.where(Product.price <= max_price)
    return list(session.execute(stmt.order_by(Product.id)).scalars().all())


# ---------- Inventory adjuster ----------
def decrement_stock(session: Session, product_id: int, quantity: int) -> None:
    """
    Take ``quantity`` units of a product out of stock.

    The check and the write are one statement, so concurrent checkouts of the
    same product can never drive stock below zero. Nothing changes when the
    product is missing or short.
    """
    if quantity <= 0:
        raise InvalidInput(f"quantity must be positive, got {quantity}")
    res = session.execute(
        text(
            """
            UPDATE products
            SET stock = stock - :qty
            WHERE id = :pid AND stock >= :qty
            """
        ),
        {"qty": quantity, "pid": product_id},
    )
    if res.rowcount == 1:
        return
    available = get_available_stock(session, product_id)
    logger.info("stock rejected for product %s: requested %s, available %s", product_id, quantity, available)
    raise InsufficientStock(product_id, quantity, available)


def adjust_stock(session: Session, product_id: int, delta: int) -> int:
    """Apply a signed delta to a product's stock and return the new count."""
    if delta == 0:
        raise InvalidInput("delta must not be zero")
    if delta < 0:
        decrement_stock(session, product_id, -delta)
    else:
        res = session.execute(
            text("UPDATE products SET stock = stock + :delta WHERE id = :pid"),
            {"delta": delta, "pid": product_id},
        )
        if res.rowcount != 1:
            raise ProductNotFound(product_id)
    # the raw UPDATE bypasses the identity map
    p = session.get(Product, product_id, populate_existing=True)
    return p.stock


# ---------- Categories ----------
def get_category(session: Session, category_id: int) -> Category:
    c = session.get(Category, category_id)
    if c is None:
        raise CategoryNotFound(category_id)
    return c


def category_tree(session: Session) -> List[CategoryOut]:
    """All categories as a forest of roots, children nested under their parent."""
    rows = session.execute(select(Category).order_by(Category.name, Category.id)).scalars().all()
    nodes = {c.id: CategoryOut.model_validate(c) for c in rows}
    roots: List[CategoryOut] = []
    for node in nodes.values():
        parent = nodes.get(node.parent_id) if node.parent_id is not None else None
        if parent is not None:
            parent.children.append(node)
        elif node.parent_id is None:
            roots.append(node)
    return roots


def related_products(session: Session, product_id: int, limit: int = RELATED_LIMIT) -> List[Product]:
    """Other products from the same category."""
    p = get_product(session, product_id)
    if p.category_id is None:
        return []
    return list(
        session.execute(
            select(Product)
            .where(Product.category_id == p.category_id, Product.id != p.id)
            .order_by(Product.id)
            .limit(limit)
        ).scalars().all()
    )


# ---------- Endpoints ----------
@router.get("/products", response_model=List[ProductOut])
def list_products_endpoint(
    category: Optional[int] = Query(default=None, ge=1, le=INT_MAX),
    min_price: Optional[Decimal] = Query(default=None, alias="minPrice"),
    max_price: Optional[Decimal] = Query(default=None, alias="maxPrice"),
    session: Session = Depends(get_session),
):
    rows = list_products(session, category_id=category, min_price=min_price, max_price=max_price)
    return [product_out(p) for p in rows]


@router.get("/products/related/{pid}", response_model=List[ProductOut])
def related_products_endpoint(pid: RowIdPath, session: Session = Depends(get_session)):
    return [product_out(p) for p in related_products(session, pid)]


@router.get("/products/{pid}", response_model=ProductOut)
def get_product_endpoint(pid: RowIdPath, session: Session = Depends(get_session)):
    return product_out(get_product(session, pid))


@router.get("/categories", response_model=List[CategoryOut])
def list_categories_endpoint(session: Session = Depends(get_session)):
    return category_tree(session)


@router.get("/categories/{category_id}/products", response_model=CategoryProducts)
def category_products_endpoint(category_id: RowIdPath, session: Session = Depends(get_session)):
    c = get_category(session, category_id)
    return CategoryProducts(
        category=CategoryOut.model_validate(c),
        products=[product_out(p) for p in list_products(session, category_id=c.id)],
    )
