# backend/inventory.py
"""Stock ledger for products.

``Product.stock_quantity`` is the number of units still available for new
reservations. Units sitting in a cart have already been taken off it, so
``stock_quantity + reserved_quantity`` is the product's total stock.

These functions run inside the caller's transaction and never commit.
"""
import logging

from sqlalchemy import func, update

from errors import InsufficientStock, InvalidQuantity, OverRelease, ProductNotFound
from models import CartItem, Product, db

log = logging.getLogger(__name__)


def check_quantity(quantity, minimum=1, message=None):
    """Raise InvalidQuantity unless ``quantity`` is a whole number >= ``minimum``."""
    # bool is an int subclass; True is not a quantity
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < minimum:
        raise InvalidQuantity(message)


def _reload(product_id):
    product = db.session.get(Product, product_id, populate_existing=True)
    if product is None:
        raise ProductNotFound(product_id)
    return product


def reserve(product_id, quantity):
    """Take ``quantity`` units out of available stock and return the new level.

    The availability check and the decrement are a single conditional UPDATE,
    so two callers racing for the last unit cannot both succeed.
    """
    check_quantity(quantity)
    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock_quantity >= quantity)
        .values(stock_quantity=Product.stock_quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    product = _reload(product_id)
    if result.rowcount != 1:
        log.warning('Reservation refused for product %s: requested %s, available %s',
                    product_id, quantity, product.stock_quantity)
        raise InsufficientStock(product_id, quantity, product.stock_quantity)
    log.info('Reserved %s units of product %s (%s left)', quantity, product_id, product.stock_quantity)
    return product.stock_quantity


def reserved_quantity(product_id):
    total = db.session.scalar(
        db.select(func.coalesce(func.sum(CartItem.quantity), 0)).where(CartItem.product_id == product_id)
    )
    return int(total)


def release(product_id, quantity):
    """Return ``quantity`` previously reserved units to available stock.

    Must be called before the cart rows holding those units are changed. The
    release is refused when carts do not hold that many units, so stock can
    never grow past what was there before the reservations.
    """
    check_quantity(quantity)
    reserved = reserved_quantity(product_id)
    if quantity > reserved:
        if db.session.get(Product, product_id) is None:
            raise ProductNotFound(product_id)
        log.error('Refused to release %s units of product %s, only %s reserved', quantity, product_id, reserved)
        raise OverRelease(product_id, quantity, reserved)
    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(stock_quantity=Product.stock_quantity + quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ProductNotFound(product_id)
    product = _reload(product_id)
    log.info('Released %s units of product %s (%s available)', quantity, product_id, product.stock_quantity)
    return product.stock_quantity


def adjust(product_id, delta):
    """Apply a quantity change from ``old`` to ``new`` given ``delta = old - new``.

    Positive deltas release, negative deltas reserve.
    """
    if delta > 0:
        return release(product_id, delta)
    if delta < 0:
        return reserve(product_id, -delta)
    return _reload(product_id).stock_quantity


def restock(product_id, stock_quantity):
    """Set the units available for sale, as done from the admin product form."""
    check_quantity(stock_quantity, minimum=0, message='Stock quantity must be a non-negative whole number.')
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFound(product_id)
    product.stock_quantity = stock_quantity
    db.session.flush()
    log.info('Product %s restocked to %s', product_id, stock_quantity)
    return stock_quantity
