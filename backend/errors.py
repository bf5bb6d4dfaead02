# backend/errors.py


class StoreError(Exception):
    """Base class for errors the storefront reports back to the caller."""
    status_code = 400
    message = 'Request failed.'

    def __init__(self, message=None):
        super().__init__(message or self.message)
        if message:
            self.message = message

    def to_dict(self):
        return {'message': self.message}


class InvalidQuantity(StoreError):
    message = 'Quantity must be a positive whole number.'


class ValidationFailed(StoreError):
    message = 'Validation failed.'

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__(self.errors[0] if len(self.errors) == 1 else None)

    def to_dict(self):
        return {'message': self.message, 'errors': self.errors}


class InsufficientStock(StoreError):
    def __init__(self, product_id, requested, available):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(f'Only {available} available.')

    def to_dict(self):
        return {'message': self.message, 'product_id': self.product_id, 'available': self.available}


class EmptyCart(StoreError):
    message = 'Your cart is empty.'


class InvalidStatus(StoreError):
    def __init__(self, status):
        self.status = status
        super().__init__(f'Invalid status: {status!r}.')


class ProductNotFound(StoreError):
    status_code = 404

    def __init__(self, product_id):
        self.product_id = product_id
        super().__init__('Product not found.')


class OrderNotFound(StoreError):
    status_code = 404

    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__('Order not found.')


class UserNotFound(StoreError):
    status_code = 404

    def __init__(self, user_id):
        self.user_id = user_id
        super().__init__('User not found.')


class ProductInUse(StoreError):
    status_code = 409
    message = 'Product has order history and cannot be deleted.'


class OverRelease(StoreError):
    """Raised when more units are released than carts currently hold."""
    status_code = 409

    def __init__(self, product_id, requested, reserved):
        self.product_id = product_id
        self.requested = requested
        self.reserved = reserved
        super().__init__(f'Cannot release {requested} units of product {product_id}: only {reserved} reserved.')


class StorageFailure(StoreError):
    status_code = 500
    message = 'Something went wrong!'

    def to_dict(self):
        # the underlying database error stays in the logs
        return {'message': StorageFailure.message}
