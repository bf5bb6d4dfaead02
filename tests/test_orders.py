from decimal import Decimal

import pytest
from sqlalchemy import event, func, select
from sqlalchemy.exc import OperationalError

import cart
import orders
from errors import EmptyCart, InsufficientStock, InvalidStatus, OrderNotFound, StorageFailure, ValidationFailed
from models import ORDER_STATUSES, Order, OrderItem, Product, db

ADDRESS = '221B Baker Street, London'


def test_checkout_scenario(ctx, make_user, make_product, stock_of, cart_rows):
    buyer, other = make_user(), make_user()
    pid = make_product(stock=10, price='12.50')

    cart.add_item(buyer, pid, 3)
    assert stock_of(pid) == 7
    cart.update_quantity(buyer, pid, 5)
    assert stock_of(pid) == 5

    order = orders.place_order(buyer, ADDRESS, 'credit_card')

    assert order.id is not None
    assert order.status == 'pending'
    assert order.total_amount == Decimal('62.50')
    assert [(i.product_id, i.quantity, i.price) for i in order.items] == [(pid, 5, Decimal('12.50'))]
    assert cart_rows(buyer) == {}
    assert stock_of(pid) == 5

    with pytest.raises(InsufficientStock) as excinfo:
        cart.add_item(other, pid, 6)
    assert excinfo.value.available == 5


def test_order_total_sums_all_lines(ctx, make_user, make_product):
    uid = make_user()
    a, b = make_product(price='3.33'), make_product(price='10.00')
    cart.add_item(uid, a, 3)
    cart.add_item(uid, b, 2)

    order = orders.place_order(uid, ADDRESS, 'paypal')

    assert order.total_amount == Decimal('29.99')
    assert sum(i.price * i.quantity for i in order.items) == order.total_amount


def test_checkout_with_empty_cart(ctx, make_user):
    uid = make_user()
    with pytest.raises(EmptyCart):
        orders.place_order(uid, ADDRESS, 'credit_card')
    assert Order.query.count() == 0


@pytest.mark.parametrize('address, method', [
    ('short', 'credit_card'),
    ('   ', 'credit_card'),
    (ADDRESS, 'cash'),
    (None, None),
])
def test_checkout_validates_input(ctx, make_user, make_product, cart_rows, address, method):
    uid, pid = make_user(), make_product()
    cart.add_item(uid, pid, 1)

    with pytest.raises(ValidationFailed):
        orders.place_order(uid, address, method)
    assert cart_rows(uid) == {pid: 1}
    assert Order.query.count() == 0


def test_checkout_rolls_back_on_storage_error(ctx, make_user, make_product, stock_of, cart_rows, monkeypatch):
    uid = make_user()
    a, b = make_product(stock=10), make_product(stock=10)
    cart.add_item(uid, a, 2)
    cart.add_item(uid, b, 1)

    real_freeze = orders._freeze_line
    calls = []

    def failing_freeze(cart_item):
        calls.append(cart_item.product_id)
        if len(calls) == 2:
            raise OperationalError('INSERT INTO order_items', {}, Exception('disk I/O error'))
        return real_freeze(cart_item)

    monkeypatch.setattr(orders, '_freeze_line', failing_freeze)

    with pytest.raises(StorageFailure) as excinfo:
        orders.place_order(uid, ADDRESS, 'debit_card')

    assert excinfo.value.to_dict() == {'message': 'Something went wrong!'}
    assert Order.query.count() == 0
    assert OrderItem.query.count() == 0
    assert cart_rows(uid) == {a: 2, b: 1}
    # reservations stay in place
    assert stock_of(a) == 8
    assert stock_of(b) == 9


def test_checkout_rolls_back_written_order_when_line_insert_fails(ctx, make_user, make_product,
                                                                  stock_of, cart_rows):
    uid = make_user()
    a, b = make_product(stock=5), make_product(stock=5)
    cart.add_item(uid, a, 3)
    cart.add_item(uid, b, 2)
    orders_written = []

    def failing_insert(mapper, connection, target):
        orders_written.append(connection.scalar(select(func.count()).select_from(Order.__table__)))
        raise OperationalError('INSERT INTO order_items', {}, Exception('database disk image is malformed'))

    event.listen(OrderItem, 'before_insert', failing_insert)
    try:
        with pytest.raises(StorageFailure):
            orders.place_order(uid, ADDRESS, 'paypal')
    finally:
        event.remove(OrderItem, 'before_insert', failing_insert)

    # the order row was already inserted when the line failed
    assert orders_written == [1]
    assert Order.query.count() == 0
    assert OrderItem.query.count() == 0
    assert cart_rows(uid) == {a: 3, b: 2}
    assert stock_of(a) == 2
    assert stock_of(b) == 3


def test_prices_are_frozen_at_checkout(ctx, make_user, make_product):
    uid, pid = make_user(), make_product(price='40.00')
    cart.add_item(uid, pid, 2)
    order_id = orders.place_order(uid, ADDRESS, 'bank_transfer').id

    product = db.session.get(Product, pid)
    product.price = Decimal('55.00')
    db.session.commit()

    order = orders.get_order_for_user(order_id, uid)
    assert order.items[0].price == Decimal('40.00')
    assert order.total_amount == Decimal('80.00')


def test_cart_is_empty_after_checkout(ctx, make_user, make_product):
    uid = make_user()
    cart.add_item(uid, make_product(), 1)
    orders.place_order(uid, ADDRESS, 'credit_card')
    assert cart.get_cart(uid) == []
    with pytest.raises(EmptyCart):
        orders.place_order(uid, ADDRESS, 'credit_card')


def _placed_order(uid, pid):
    cart.add_item(uid, pid, 1)
    return orders.place_order(uid, ADDRESS, 'credit_card').id


def test_any_status_can_follow_any_other(ctx, make_user, make_product):
    order_id = _placed_order(make_user(), make_product())

    for status in ['delivered', 'pending', 'cancelled', 'processing', 'shipped']:
        assert orders.update_status(order_id, status).status == status
    assert db.session.get(Order, order_id).status == 'shipped'
    assert set(ORDER_STATUSES) == {'pending', 'processing', 'shipped', 'delivered', 'cancelled'}


def test_invalid_status(ctx, make_user, make_product):
    order_id = _placed_order(make_user(), make_product())
    with pytest.raises(InvalidStatus):
        orders.update_status(order_id, 'lost')
    assert db.session.get(Order, order_id).status == 'pending'


def test_status_of_missing_order(ctx):
    with pytest.raises(OrderNotFound):
        orders.update_status(42, 'shipped')


def test_orders_are_private(ctx, make_user, make_product):
    owner, stranger = make_user(), make_user()
    order_id = _placed_order(owner, make_product())

    assert orders.get_order_for_user(order_id, owner).id == order_id
    with pytest.raises(OrderNotFound):
        orders.get_order_for_user(order_id, stranger)
    with pytest.raises(OrderNotFound):
        orders.get_order_for_user(order_id + 100, owner)


def test_order_history_newest_first(ctx, make_user, make_product):
    uid, pid = make_user(), make_product(stock=50)
    placed = [_placed_order(uid, pid) for _ in range(3)]

    page = orders.orders_for_user(uid, page=1, per_page=2)
    assert [o.id for o in page.items] == placed[::-1][:2]
    assert page.total == 3
    assert [o.id for o in orders.all_orders(page=2, per_page=2).items] == [placed[0]]
