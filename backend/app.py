# backend/app.py
import logging
import re
import time
from decimal import Decimal, InvalidOperation
from functools import wraps

from flask import Blueprint, Flask, current_app, g, jsonify, request, session
from werkzeug.exceptions import HTTPException
from werkzeug.security import check_password_hash, generate_password_hash

import cart
import inventory
import orders
from commands import register_commands
from config import load_config
from errors import ProductInUse, ProductNotFound, StoreError, UserNotFound, ValidationFailed
from logging_config import configure_logging
from login_attempts import create_store
from models import ROLES, Product, User, atomic, db

log = logging.getLogger(__name__)

EMAIL_REGEX = re.compile(r"[^@]+@[^@]+\.[^@]+")
USERNAME_REGEX = re.compile(r"^[A-Za-z0-9_]{3,50}$")
PASSWORD_REGEX = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d).{8,}$")

bp = Blueprint('store', __name__)


def create_app(test_config=None):
    app = Flask(__name__)
    app.config.update(load_config())
    if test_config:
        app.config.update(test_config)

    configure_logging(app.config['LOG_LEVEL'], app.config['LOG_DIR'])
    db.init_app(app)
    app.extensions['login_attempts'] = create_store(app.config)

    with app.app_context():
        db.create_all()

    app.register_blueprint(bp)
    register_error_handlers(app)
    register_commands(app)
    return app


def register_error_handlers(app):
    @app.errorhandler(StoreError)
    def handle_store_error(exc):
        if exc.status_code >= 500:
            log.error('%s %s failed: %s', request.method, request.path, exc)
        else:
            log.warning('%s %s rejected: %s', request.method, request.path, exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return jsonify(message=exc.description), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        log.exception('Unhandled error on %s %s', request.method, request.path)
        return jsonify(message='Something went wrong!'), 500


@bp.before_app_request
def load_user():
    g.request_started = time.perf_counter()
    user_id = session.get('user_id')
    g.user = db.session.get(User, user_id) if user_id is not None else None


@bp.after_app_request
def log_request(response):
    started = g.get('request_started')
    duration = (time.perf_counter() - started) * 1000 if started else 0
    log.info('%s %s %s %.1fms', request.method, request.path, response.status_code, duration)
    return response


def login_required(f):
    @wraps(f)
    def wrapped(*args, **kwargs):
        if g.user is None:
            return jsonify(message='Please login first.'), 401
        return f(*args, **kwargs)
    return wrapped


def admin_required(f):
    @wraps(f)
    def wrapped(*args, **kwargs):
        if g.user is None:
            return jsonify(message='Please login first.'), 401
        if not g.user.is_admin:
            return jsonify(message='Access denied. Admin role required.'), 403
        return f(*args, **kwargs)
    return wrapped


def form_data():
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def int_field(data, name, default=None, minimum=None):
    value = data.get(name, default)
    if value is None or value == '':
        raise ValidationFailed([f'{name} is required.'])
    if isinstance(value, bool):
        raise ValidationFailed([f'{name} must be a whole number.'])
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationFailed([f'{name} must be a whole number.'])
    if isinstance(value, float) and value != number:
        raise ValidationFailed([f'{name} must be a whole number.'])
    if minimum is not None and number < minimum:
        raise ValidationFailed([f'{name} must be at least {minimum}.'])
    return number


def page_arg():
    return request.args.get('page', 1, type=int) or 1


# Serialization

def user_json(user):
    return {'id': user.id, 'username': user.username, 'email': user.email, 'role': user.role,
            'created_at': user.created_at.isoformat()}


def product_json(p):
    return {'id': p.id, 'name': p.name, 'description': p.description, 'category': p.category,
            'price': str(p.price), 'stock_quantity': p.stock_quantity, 'in_stock': p.in_stock,
            'image_url': p.image_url}


def cart_item_json(item):
    return {'product_id': item.product_id, 'name': item.product.name, 'price': str(item.product.price),
            'quantity': item.quantity, 'subtotal': str(item.subtotal)}


def order_json(order):
    return {
        'id': order.id,
        'user_id': order.user_id,
        'status': order.status,
        'total_amount': str(order.total_amount),
        'shipping_address': order.shipping_address,
        'payment_method': order.payment_method,
        'created_at': order.created_at.isoformat(),
        'items': [{'product_id': it.product_id,
                   'name': it.product.name if it.product else None,
                   'quantity': it.quantity,
                   'price': str(it.price),
                   'subtotal': str(it.subtotal)} for it in order.items],
    }


def page_json(pagination, key, serialize):
    return {key: [serialize(x) for x in pagination.items], 'page': pagination.page,
            'pages': pagination.pages, 'total': pagination.total}


# Auth

@bp.route('/register', methods=['POST'])
def register():
    data = form_data()
    username = (data.get('username') or '').strip()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    errors = []
    if not USERNAME_REGEX.match(username):
        errors.append('Username must be 3-50 letters, numbers or underscores.')
    if not EMAIL_REGEX.match(email):
        errors.append('Invalid email format.')
    if not PASSWORD_REGEX.match(password):
        errors.append('Password must be at least 8 characters with upper case, lower case and a number.')
    if errors:
        raise ValidationFailed(errors)
    if User.query.filter_by(email=email).first():
        raise ValidationFailed(['Email already registered.'])
    with atomic():
        user = User(username=username, email=email, password_hash=generate_password_hash(password))
        db.session.add(user)
    session.clear()
    session['user_id'] = user.id
    log.info('User %s registered', user.id)
    return jsonify(message='Registered and logged in.', user=user_json(user)), 201


@bp.route('/login', methods=['POST'])
def login():
    data = form_data()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    attempts = current_app.extensions['login_attempts']
    if attempts.is_locked(email):
        minutes = attempts.remaining_lockout_minutes(email)
        log.warning('Login refused for locked account %s', email)
        return jsonify(message=f'Account temporarily locked. Try again in {minutes} minutes.'), 429
    user = User.query.filter_by(email=email).first()
    if not user or not check_password_hash(user.password_hash, password):
        count = attempts.record_failure(email)
        log.warning('Failed login for %s (%s attempts)', email, count)
        return jsonify(message='Invalid email or password.'), 401
    attempts.reset(email)
    session.clear()
    session['user_id'] = user.id
    log.info('User %s logged in', user.id)
    return jsonify(message='Logged in successfully.', user=user_json(user))


@bp.route('/logout', methods=['POST'])
def logout():
    session.pop('user_id', None)
    return jsonify(message='Logged out.')


@bp.route('/profile', methods=['GET', 'POST'])
@login_required
def profile():
    if request.method == 'POST':
        data = form_data()
        username = (data.get('username') or g.user.username).strip()
        email = (data.get('email') or g.user.email).strip().lower()
        errors = []
        if not USERNAME_REGEX.match(username):
            errors.append('Username must be 3-50 letters, numbers or underscores.')
        if not EMAIL_REGEX.match(email):
            errors.append('Invalid email format.')
        elif email != g.user.email and User.query.filter_by(email=email).first():
            errors.append('Email already registered.')
        if errors:
            raise ValidationFailed(errors)
        with atomic():
            g.user.username = username
            g.user.email = email
    return jsonify(user=user_json(g.user))


# Catalog

@bp.route('/products')
def list_products():
    category = request.args.get('category')
    search = request.args.get('search')
    query = Product.query.filter(Product.stock_quantity > 0)
    if category:
        query = query.filter(Product.category == category)
    if search:
        query = query.filter(Product.name.ilike(f'%{search}%'))
    query = query.order_by(Product.created_at.desc(), Product.id.desc())
    pagination = query.paginate(page=page_arg(), per_page=current_app.config['PRODUCTS_PER_PAGE'],
                                error_out=False)
    return jsonify(page_json(pagination, 'products', product_json))


@bp.route('/products/categories')
def list_categories():
    rows = db.session.execute(db.select(Product.category).distinct().order_by(Product.category))
    return jsonify(categories=[row[0] for row in rows])


@bp.route('/products/<int:pid>')
def product_detail(pid):
    p = db.session.get(Product, pid)
    if p is None:
        raise ProductNotFound(pid)
    return jsonify(product=product_json(p))


# Cart

def cart_state():
    return {'items': [cart_item_json(i) for i in cart.get_cart(g.user.id)],
            'total': str(cart.cart_total(g.user.id)),
            'item_count': cart.cart_item_count(g.user.id)}


@bp.route('/cart')
@login_required
def view_cart():
    return jsonify(cart_state())


@bp.route('/cart/summary')
@login_required
def cart_summary():
    return jsonify(total=str(cart.cart_total(g.user.id)), item_count=cart.cart_item_count(g.user.id))


@bp.route('/cart/add', methods=['POST'])
@login_required
def add_to_cart():
    data = form_data()
    product_id = int_field(data, 'product_id', minimum=1)
    quantity = int_field(data, 'quantity', default=1, minimum=1)
    cart.add_item(g.user.id, product_id, quantity)
    return jsonify(message='Item added to cart.', item_count=cart.cart_item_count(g.user.id))


@bp.route('/cart/<int:product_id>/update', methods=['POST'])
@login_required
def update_cart(product_id):
    quantity = int_field(form_data(), 'quantity', minimum=0)
    cart.update_quantity(g.user.id, product_id, quantity)
    return jsonify(message='Cart updated.', item_count=cart.cart_item_count(g.user.id))


@bp.route('/cart/<int:product_id>/remove', methods=['POST'])
@login_required
def remove_from_cart(product_id):
    cart.remove_item(g.user.id, product_id)
    return jsonify(message='Item removed from cart.', item_count=cart.cart_item_count(g.user.id))


@bp.route('/cart/clear', methods=['POST'])
@login_required
def clear_cart():
    cart.clear_cart(g.user.id)
    return jsonify(message='Cart cleared.', item_count=0)


# Orders

@bp.route('/checkout', methods=['POST'])
@login_required
def checkout():
    data = form_data()
    order = orders.place_order(g.user.id, data.get('shipping_address'), data.get('payment_method'))
    order = orders.get_order_for_user(order.id, g.user.id)
    return jsonify(message='Order placed successfully!', order=order_json(order)), 201


@bp.route('/orders')
@login_required
def my_orders():
    pagination = orders.orders_for_user(g.user.id, page=page_arg(),
                                        per_page=current_app.config['ORDERS_PER_PAGE'])
    return jsonify(page_json(pagination, 'orders', order_json))


@bp.route('/orders/recent')
@login_required
def recent_orders():
    recent = orders.orders_for_user(g.user.id, per_page=current_app.config['RECENT_ORDERS_LIMIT'])
    return jsonify(orders=[order_json(o) for o in recent.items])


@bp.route('/orders/<int:order_id>')
@login_required
def order_detail(order_id):
    return jsonify(order=order_json(orders.get_order_for_user(order_id, g.user.id)))


# Admin

@bp.route('/admin/orders')
@admin_required
def admin_orders():
    pagination = orders.all_orders(page=page_arg(), per_page=current_app.config['ADMIN_ORDERS_PER_PAGE'])
    return jsonify(page_json(pagination, 'orders', lambda o: dict(order_json(o), username=o.user.username)))


@bp.route('/admin/orders/<int:order_id>/status', methods=['POST'])
@admin_required
def update_order_status(order_id):
    order = orders.update_status(order_id, form_data().get('status'))
    return jsonify(message='Order status updated.', order={'id': order.id, 'status': order.status})


def product_fields(data, partial=False):
    """Validate the admin product form. ``partial`` allows missing fields."""
    fields, errors = {}, []

    if 'name' in data or not partial:
        name = (data.get('name') or '').strip()
        if not 1 <= len(name) <= 100:
            errors.append('Product name must be between 1 and 100 characters.')
        fields['name'] = name
    if 'description' in data:
        description = (data.get('description') or '').strip()
        if description and not 10 <= len(description) <= 1000:
            errors.append('Description must be between 10 and 1000 characters.')
        fields['description'] = description or None
    if 'category' in data or not partial:
        category = (data.get('category') or '').strip()
        if not 1 <= len(category) <= 50:
            errors.append('Category must be between 1 and 50 characters.')
        fields['category'] = category
    if 'price' in data or not partial:
        try:
            price = Decimal(str(data.get('price', '')).strip())
            if not price.is_finite() or price < 0:
                raise InvalidOperation()
            fields['price'] = price.quantize(Decimal('0.01'))
        except InvalidOperation:
            errors.append('Price must be a positive number.')
    if 'stock_quantity' in data or not partial:
        try:
            fields['stock_quantity'] = int_field(data, 'stock_quantity', default=0, minimum=0)
        except ValidationFailed:
            errors.append('Stock quantity must be a non-negative integer.')
    if 'image_url' in data:
        fields['image_url'] = (data.get('image_url') or '').strip() or None

    if errors:
        raise ValidationFailed(errors)
    return fields


@bp.route('/admin/products', methods=['GET', 'POST'])
@admin_required
def admin_products():
    if request.method == 'POST':
        fields = product_fields(form_data())
        with atomic():
            p = Product(**fields)
            db.session.add(p)
        log.info('Product %s created by admin %s', p.id, g.user.id)
        return jsonify(message='Product created.', product=product_json(p)), 201
    products = Product.query.order_by(Product.id).all()
    return jsonify(products=[product_json(p) for p in products])


@bp.route('/admin/products/<int:pid>', methods=['POST'])
@admin_required
def edit_product(pid):
    fields = product_fields(form_data(), partial=True)
    with atomic():
        p = db.session.get(Product, pid)
        if p is None:
            raise ProductNotFound(pid)
        stock = fields.pop('stock_quantity', None)
        for name, value in fields.items():
            setattr(p, name, value)
        if stock is not None:
            inventory.restock(pid, stock)
    log.info('Product %s updated by admin %s', pid, g.user.id)
    return jsonify(message='Product updated.', product=product_json(p))


@bp.route('/admin/products/<int:pid>/delete', methods=['POST'])
@admin_required
def delete_product(pid):
    with atomic():
        p = db.session.get(Product, pid)
        if p is None:
            raise ProductNotFound(pid)
        if p.order_items:
            raise ProductInUse()
        # cart reservations of this product go with it
        db.session.delete(p)
    log.info('Product %s deleted by admin %s', pid, g.user.id)
    return jsonify(message='Product deleted.')


@bp.route('/admin/users')
@admin_required
def admin_users():
    users = User.query.order_by(User.created_at, User.id).all()
    return jsonify(users=[user_json(u) for u in users])


@bp.route('/admin/users/<int:uid>/role', methods=['POST'])
@admin_required
def update_user_role(uid):
    role = form_data().get('role')
    if role not in ROLES:
        raise ValidationFailed(['Role must be either "customer" or "admin".'])
    with atomic():
        user = db.session.get(User, uid)
        if user is None:
            raise UserNotFound(uid)
        user.role = role
    log.info('User %s role set to %s by admin %s', uid, role, g.user.id)
    return jsonify(message='User role updated.', user=user_json(user))


@bp.route('/health')
def health():
    db.session.execute(db.select(1))
    return jsonify(status='healthy')


if __name__ == '__main__':
    create_app().run(debug=True)
