# backend/orders.py
import logging
from decimal import Decimal

from sqlalchemy.orm import joinedload, selectinload

from errors import EmptyCart, InvalidStatus, OrderNotFound, ValidationFailed
from models import ORDER_STATUSES, PAYMENT_METHODS, CartItem, Order, OrderItem, atomic, db

log = logging.getLogger(__name__)

ADDRESS_MIN_LENGTH = 10
ADDRESS_MAX_LENGTH = 500


def validate_checkout(shipping_address, payment_method):
    shipping_address = (shipping_address or '').strip()
    errors = []
    if not ADDRESS_MIN_LENGTH <= len(shipping_address) <= ADDRESS_MAX_LENGTH:
        errors.append(f'Shipping address must be between {ADDRESS_MIN_LENGTH} and {ADDRESS_MAX_LENGTH} characters.')
    if payment_method not in PAYMENT_METHODS:
        errors.append('Invalid payment method.')
    if errors:
        raise ValidationFailed(errors)
    return shipping_address, payment_method


def _freeze_line(cart_item):
    # the product's current price becomes the line's permanent price
    return OrderItem(product_id=cart_item.product_id,
                     quantity=cart_item.quantity,
                     price=cart_item.product.price)


def place_order(user_id, shipping_address, payment_method):
    """Turn the user's cart into a pending order and empty the cart.

    Stock was reserved when the items went into the cart, so no stock is
    touched here. If anything fails the order is not created and the cart,
    with its reservations, stays as it was.
    """
    shipping_address, payment_method = validate_checkout(shipping_address, payment_method)
    with atomic():
        cart_items = (CartItem.query
                      .options(joinedload(CartItem.product))
                      .filter_by(user_id=user_id)
                      .order_by(CartItem.id)
                      .all())
        if not cart_items:
            raise EmptyCart()

        lines = [_freeze_line(item) for item in cart_items]
        total = sum((line.price * line.quantity for line in lines), Decimal('0.00'))
        order = Order(user_id=user_id,
                      total_amount=total,
                      shipping_address=shipping_address,
                      payment_method=payment_method,
                      status='pending',
                      items=lines)
        db.session.add(order)
        db.session.flush()

        CartItem.query.filter_by(user_id=user_id).delete(synchronize_session='fetch')
        log.info('Order %s placed by user %s: %s lines, total %s', order.id, user_id, len(lines), total)
    return order


def update_status(order_id, status):
    """Overwrite an order's status. Any status may follow any other."""
    if status not in ORDER_STATUSES:
        raise InvalidStatus(status)
    with atomic():
        order = db.session.get(Order, order_id)
        if order is None:
            raise OrderNotFound(order_id)
        previous = order.status
        order.status = status
    log.info('Order %s status %s -> %s', order_id, previous, status)
    return order


def _with_items(query):
    return query.options(selectinload(Order.items).joinedload(OrderItem.product))


def orders_for_user(user_id, page=1, per_page=10):
    query = _with_items(Order.query).filter_by(user_id=user_id).order_by(Order.created_at.desc(), Order.id.desc())
    return query.paginate(page=page, per_page=per_page, error_out=False)


def get_order_for_user(order_id, user_id):
    order = _with_items(Order.query).filter_by(id=order_id).first()
    if order is None or order.user_id != user_id:
        raise OrderNotFound(order_id)
    return order


def all_orders(page=1, per_page=20):
    query = (_with_items(Order.query)
             .options(joinedload(Order.user))
             .order_by(Order.created_at.desc(), Order.id.desc()))
    return query.paginate(page=page, per_page=per_page, error_out=False)
