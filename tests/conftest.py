from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

from app import create_app
from models import CartItem, Product, User, db

PASSWORD = 'Secret123'


@pytest.fixture
def app(tmp_path, monkeypatch):
    monkeypatch.delenv('LOGIN_ATTEMPTS_REDIS_URL', raising=False)
    monkeypatch.delenv('APP_ENV', raising=False)
    monkeypatch.delenv('FLASK_ENV', raising=False)
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'store.db'}",
        'LOG_DIR': None,
        'LOGIN_ATTEMPTS_REDIS_URL': None,
    })
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = iter(range(1, 1000))

    def _make_user(email=None, role='customer', password=PASSWORD):
        n = next(counter)
        with app.app_context():
            user = User(username=f'user{n}', email=email or f'user{n}@example.com',
                        password_hash=generate_password_hash(password), role=role)
            db.session.add(user)
            db.session.commit()
            return user.id
    return _make_user


@pytest.fixture
def make_product(app):
    counter = iter(range(1, 1000))

    def _make_product(stock=10, price='19.99', name=None, category='Electronics'):
        n = next(counter)
        with app.app_context():
            product = Product(name=name or f'Product {n}', description='A product used in tests.',
                              category=category, price=Decimal(price), stock_quantity=stock)
            db.session.add(product)
            db.session.commit()
            return product.id
    return _make_product


@pytest.fixture
def stock_of(app):
    def _stock_of(product_id):
        with app.app_context():
            return db.session.get(Product, product_id).stock_quantity
    return _stock_of


@pytest.fixture
def cart_rows(app):
    def _cart_rows(user_id):
        with app.app_context():
            return {item.product_id: item.quantity for item in CartItem.query.filter_by(user_id=user_id)}
    return _cart_rows


@pytest.fixture
def login(client):
    def _login(email, password=PASSWORD):
        response = client.post('/login', json={'email': email, 'password': password})
        assert response.status_code == 200, response.get_json()
        return response
    return _login
