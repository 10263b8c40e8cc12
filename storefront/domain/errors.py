# storefront/domain/errors.py
"""Checkout error taxonomy.

Every error carries a stable ``code`` and the HTTP status the API layer
answers with, so clients can react to the specific reason (drop a line,
lower a quantity, try another coupon) instead of a generic failure.
"""


class CheckoutError(Exception):
    code = "checkout_error"
    status_code = 400

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message())

    def default_message(self) -> str:
        return self.code.replace("_", " ")

    @property
    def message(self) -> str:
        return str(self)

    def as_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class EmptyCart(CheckoutError):
    code = "empty_cart"

    def default_message(self) -> str:
        return "Cart is empty"


class MissingCartIdentity(CheckoutError):
    code = "missing_cart_identity"

    def default_message(self) -> str:
        return "Either a user id or a session id is required"


class InvalidQuantity(CheckoutError):
    code = "invalid_quantity"
    status_code = 422

    def default_message(self) -> str:
        return "Quantity must be greater than 0"


class ProductNotFound(CheckoutError):
    code = "product_not_found"
    status_code = 404

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class CartLineNotFound(CheckoutError):
    code = "cart_line_not_found"
    status_code = 404

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product {product_id} is not in the cart")


class ConcurrentCartModification(CheckoutError):
    code = "concurrent_cart_modification"
    status_code = 409

    def default_message(self) -> str:
        return "Cart was modified by another request"


class InsufficientStock(CheckoutError):
    code = "insufficient_stock"
    status_code = 409

    def __init__(self, product_id: int, requested: int | None = None, available: int | None = None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(f"Insufficient stock for product {product_id}")

    def as_detail(self) -> dict:
        detail = super().as_detail()
        detail["product_id"] = self.product_id
        return detail


class InvalidCoupon(CheckoutError):
    code = "invalid_coupon"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class CouponNotFound(CheckoutError):
    code = "coupon_not_found"
    status_code = 404

    def __init__(self, code_or_id):
        super().__init__(f"Coupon {code_or_id} not found")


class DuplicateCoupon(CheckoutError):
    code = "duplicate_coupon"
    status_code = 409

    def __init__(self, code: str):
        super().__init__(f"Coupon code {code} already exists")


class OrderNotFound(CheckoutError):
    code = "order_not_found"
    status_code = 404

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class OrderNotPending(CheckoutError):
    code = "order_not_pending"
    status_code = 409

    def __init__(self, order_id: int, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} is {status}, payment can only start from PENDING")


class InvalidStatusTransition(CheckoutError):
    code = "invalid_status_transition"
    status_code = 409

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move order from {current} to {requested}")


class PaymentNotFound(CheckoutError):
    code = "payment_not_found"
    status_code = 404


class UnknownProvider(CheckoutError):
    code = "unknown_provider"

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Unknown payment provider {provider!r}")


class InvalidWebhookSignature(CheckoutError):
    code = "invalid_webhook_signature"

    def default_message(self) -> str:
        return "Webhook signature verification failed"


class PaymentProviderError(CheckoutError):
    code = "payment_provider_error"
    status_code = 502


class MalformedWebhook(CheckoutError):
    code = "malformed_webhook"

    def default_message(self) -> str:
        return "Malformed webhook payload"


class PaymentMethodMismatch(CheckoutError):
    code = "payment_method_mismatch"
    status_code = 409

    def __init__(self, order_method: str, provider: str):
        self.order_method = order_method
        self.provider = provider
        super().__init__(f"Order was placed for {order_method} payment, not {provider}")


class PaymentNotConfirmable(CheckoutError):
    code = "payment_not_confirmable"
    status_code = 409

    def __init__(self, payment_id: int, reason: str):
        self.payment_id = payment_id
        super().__init__(f"Payment {payment_id} {reason}")
