# backend/commands.py
import logging
import os
from decimal import Decimal

import click
from flask.cli import with_appcontext
from werkzeug.security import generate_password_hash

from models import Product, User, db

log = logging.getLogger(__name__)

SAMPLE_PRODUCTS = [
    ('Wireless Headphones', 'Premium wireless headphones with active noise cancellation and 30-hour battery life.',
     'Electronics', '199.99', 50),
    ('USB-C Cable', 'High-speed USB-C charging and data transfer cable compatible with most devices.',
     'Electronics', '19.99', 200),
    ('Portable Charger', '20000mAh portable battery charger with fast charging support and dual USB ports.',
     'Electronics', '49.99', 75),
    ('Mechanical Keyboard', 'RGB mechanical keyboard with customizable switches and programmable keys.',
     'Electronics', '129.99', 30),
    ('Clean Code', 'Guide to writing clean, maintainable code that your team will love to read.',
     'Books', '39.99', 45),
    ('Security Engineering', 'A comprehensive guide to designing and building secure systems.',
     'Books', '59.99', 25),
    ('Cotton T-Shirt', 'Soft organic cotton t-shirt with a relaxed fit, available in several colours.',
     'Clothing', '24.99', 120),
    ('Running Shoes', 'Lightweight running shoes with breathable mesh and cushioned soles.',
     'Clothing', '89.99', 40),
]


@click.command('init-db')
@with_appcontext
def init_db_command():
    """Create all tables."""
    db.create_all()
    click.echo('Database tables created.')


@click.command('seed')
@with_appcontext
@click.option('--admin-email', default=lambda: os.getenv('ADMIN_EMAIL', 'admin@example.com'))
@click.option('--admin-password', default=lambda: os.getenv('ADMIN_PASSWORD', 'Admin123!'))
def seed_command(admin_email, admin_password):
    """Insert an admin account and sample products."""
    db.create_all()
    admin_email = admin_email.strip().lower()
    if User.query.filter_by(email=admin_email).first() is None:
        db.session.add(User(username='admin', email=admin_email,
                            password_hash=generate_password_hash(admin_password), role='admin'))
        click.echo(f'Admin account {admin_email} created.')
    created = 0
    for name, description, category, price, stock in SAMPLE_PRODUCTS:
        if Product.query.filter_by(name=name).first():
            continue
        db.session.add(Product(name=name, description=description, category=category,
                               price=Decimal(price), stock_quantity=stock))
        created += 1
    db.session.commit()
    log.info('Seeded %s products', created)
    click.echo(f'{created} products added.')


def register_commands(app):
    app.cli.add_command(init_db_command)
    app.cli.add_command(seed_command)
