# backend/cart.py
"""Cart operations.

A cart row holds units already reserved from the product's stock, so every
change to a row moves the same number of units in or out of the inventory
within one transaction.
"""
import logging
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import joinedload

import inventory
from models import CartItem, Product, atomic, db

log = logging.getLogger(__name__)


def _find_item(user_id, product_id):
    return CartItem.query.filter_by(user_id=user_id, product_id=product_id).first()


def _set_quantity(user_id, product_id, quantity):
    item = _find_item(user_id, product_id)
    current = item.quantity if item else 0

    if quantity == 0:
        if item is None:
            return None
        inventory.release(product_id, current)
        db.session.delete(item)
        log.info('User %s removed product %s from cart (%s units released)', user_id, product_id, current)
        return None

    # raises ProductNotFound before any row is written
    inventory.adjust(product_id, current - quantity)
    if item is None:
        item = CartItem(user_id=user_id, product_id=product_id, quantity=quantity)
        db.session.add(item)
    else:
        item.quantity = quantity
    db.session.flush()
    log.info('User %s cart: product %s quantity %s -> %s', user_id, product_id, current, quantity)
    return item


def add_item(user_id, product_id, quantity):
    """Reserve ``quantity`` more units of a product into the user's cart."""
    inventory.check_quantity(quantity)
    with atomic():
        item = _find_item(user_id, product_id)
        target = quantity + (item.quantity if item else 0)
        return _set_quantity(user_id, product_id, target)


def update_quantity(user_id, product_id, quantity):
    """Set the cart quantity for a product; 0 removes the item.

    Returns the cart item, or None when the product is no longer in the cart.
    """
    inventory.check_quantity(quantity, minimum=0,
                             message='Quantity must be zero or a positive whole number.')
    with atomic():
        return _set_quantity(user_id, product_id, quantity)


def remove_item(user_id, product_id):
    """Drop a product from the cart. Returns False if it was not there."""
    with atomic():
        if _find_item(user_id, product_id) is None:
            return False
        _set_quantity(user_id, product_id, 0)
        return True


def clear_cart(user_id):
    """Release every reserved unit in the cart and empty it.

    Either all items are released or, on any error, none are.
    """
    with atomic():
        items = CartItem.query.filter_by(user_id=user_id).order_by(CartItem.product_id).all()
        for item in items:
            inventory.release(item.product_id, item.quantity)
            db.session.delete(item)
        log.info('User %s cleared cart (%s items)', user_id, len(items))
        return len(items)


def get_cart(user_id):
    return (CartItem.query
            .options(joinedload(CartItem.product))
            .filter_by(user_id=user_id)
            .order_by(CartItem.created_at.desc(), CartItem.id.desc())
            .all())


def cart_total(user_id):
    total = db.session.scalar(
        db.select(func.sum(CartItem.quantity * Product.price))
        .join(Product, CartItem.product_id == Product.id)
        .where(CartItem.user_id == user_id)
    )
    return Decimal(total or 0).quantize(Decimal('0.01'))


def cart_item_count(user_id):
    count = db.session.scalar(
        db.select(func.sum(CartItem.quantity)).where(CartItem.user_id == user_id)
    )
    return int(count or 0)
