"""Custom exceptions for the POS application."""


class PosError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class ValidationRejection(PosError):
    """A requested mutation was rejected; state is left unchanged."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class QuantityBelowMinimumError(ValidationRejection):
    """Raised when a cart quantity below 1 is requested."""
    def __init__(self, requested, minimum=1):
        self.requested = requested
        self.minimum = minimum
        super().__init__(
            f"Quantity must be at least {minimum} (requested {requested})",
            payload={'requested': requested, 'min_allowed': minimum}
        )


class StockExceededError(ValidationRejection):
    """Raised when a cart quantity would exceed the product's available stock."""
    def __init__(self, product_id, product_name, requested, max_allowed):
        self.product_id = product_id
        self.product_name = product_name
        self.requested = requested
        self.max_allowed = max_allowed
        message = (
            f"Not enough stock for {product_name}: requested {requested}, "
            f"maximum allowed {max_allowed}"
        )
        super().__init__(message, status_code=409, payload={
            'product_id': product_id,
            'requested': requested,
            'max_allowed': max_allowed,
        })


class EmptyCartError(ValidationRejection):
    """Raised when checking out a cart with no lines."""
    def __init__(self, message="The cart is empty"):
        super().__init__(message)


class NotFoundError(PosError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class PersistenceFailure(PosError):
    """An asynchronous write to the authoritative store failed."""
    def __init__(self, message, payload=None):
        super().__init__(message, 503, payload)


class SalePersistenceError(PersistenceFailure):
    """The sale record could not be written; the checkout did not happen."""


class StockUpdateError(PersistenceFailure):
    """A product stock level could not be written."""
    def __init__(self, product_id, message):
        self.product_id = product_id
        super().__init__(message, payload={'product_id': product_id})
