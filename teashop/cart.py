import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from .auth import Principal, require_user
from .catalog import get_product, image_url
from .db import get_session
from .errors import CartItemNotFound, InvalidInput
from .models import CartItem
from .schemas import INT_MAX, CartAddIn, CartLineOut, CartRemoveIn, CartUpdateIn, MessageOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cart")


def find_cart_item(session: Session, user_id: str, product_id: int) -> Optional[CartItem]:
    return session.execute(
        select(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
    ).scalar_one_or_none()


def cart_lines(session: Session, user_id: str) -> List[CartLineOut]:
    rows = session.execute(
        select(CartItem).where(CartItem.user_id == user_id).order_by(CartItem.added_at, CartItem.id)
    ).scalars().all()
    return [
        CartLineOut(
            product_id=c.product_id,
            name=c.product.name,
            price=c.product.price,
            quantity=c.quantity,
            image_url=image_url(c.product.image_filename),
        )
        for c in rows
    ]


def add_to_cart(session: Session, user_id: str, product_id: int, quantity: int) -> CartItem:
    """Put a product in the user's cart, or add to the quantity already there."""
    get_product(session, product_id)
    item = find_cart_item(session, user_id, product_id)
    if item is None:
        item = CartItem(user_id=user_id, product_id=product_id, quantity=quantity)
        session.add(item)
    else:
        if item.quantity + quantity > INT_MAX:
            raise InvalidInput(f"quantity for product {product_id} would exceed {INT_MAX}")
        item.quantity += quantity
    session.flush()
    return item


# ---------- Endpoints ----------
@router.get("", response_model=List[CartLineOut])
def get_cart(user: Principal = Depends(require_user), session: Session = Depends(get_session)):
    return cart_lines(session, user.user_id)


@router.post("/add", response_model=MessageOut)
def add_item(payload: CartAddIn, user: Principal = Depends(require_user), session: Session = Depends(get_session)):
    item = add_to_cart(session, user.user_id, payload.product_id, payload.quantity)
    session.commit()
    logger.info("user %s cart: product %s now x%d", user.user_id, payload.product_id, item.quantity)
    return MessageOut(message="added to cart")


@router.post("/remove", response_model=MessageOut)
def remove_item(payload: CartRemoveIn, user: Principal = Depends(require_user), session: Session = Depends(get_session)):
    session.execute(
        delete(CartItem).where(CartItem.user_id == user.user_id, CartItem.product_id == payload.product_id)
    )
    session.commit()
    return MessageOut(message="removed from cart")


@router.post("/update", response_model=MessageOut)
def update_item(payload: CartUpdateIn, user: Principal = Depends(require_user), session: Session = Depends(get_session)):
    item = find_cart_item(session, user.user_id, payload.product_id)
    if item is None:
        raise CartItemNotFound(payload.product_id)
    item.quantity = payload.quantity
    session.commit()
    return MessageOut(message="cart updated")


@router.post("/clear", response_model=MessageOut)
def clear_cart(user: Principal = Depends(require_user), session: Session = Depends(get_session)):
    session.execute(delete(CartItem).where(CartItem.user_id == user.user_id))
    session.commit()
    logger.info("user %s cleared their cart", user.user_id)
    return MessageOut(message="cart cleared")
