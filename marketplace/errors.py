"""
Erreurs métier du checkout.
- Chaque erreur porte un status HTTP et un code stable; le message est affiché tel quel au client.
- Rendu JSON par marketplace.app_setup.exceptions: {"detail": <message>, "code": <code>}.
"""
from typing import Optional


class CheckoutError(Exception):
    status_code = 400
    code = "checkout_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class EmptyCart(CheckoutError):
    code = "empty_cart"

    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class CartNotFound(CheckoutError):
    status_code = 404
    code = "cart_not_found"

    def __init__(self, message: str = "Cart not found"):
        super().__init__(message)


class CartItemNotFound(CheckoutError):
    status_code = 404
    code = "cart_item_not_found"

    def __init__(self, message: str = "Item not found in cart"):
        super().__init__(message)


class ProductNotFound(CheckoutError):
    status_code = 404
    code = "product_not_found"


class ProductUnavailable(CheckoutError):
    code = "product_unavailable"


class InsufficientStock(CheckoutError):
    code = "insufficient_stock"


class InvalidCartItem(CheckoutError):
    code = "invalid_cart_item"


class MultiFarmerCartError(CheckoutError):
    code = "multi_farmer_cart"

    def __init__(self, message: str = "All products in cart must be from the same farmer"):
        super().__init__(message)


class MissingFarmer(CheckoutError):
    code = "missing_farmer"

    def __init__(self, message: str = "Unable to determine farmer for order. Products may not have a farmer assigned."):
        super().__init__(message)


class PaymentUnavailable(CheckoutError):
    code = "payment_unavailable"

    def __init__(self, message: str = "Card payments are not available. Please use cash on delivery or configure Stripe."):
        super().__init__(message)


class AmountTooSmall(CheckoutError):
    code = "amount_too_small"


class PaymentProviderError(CheckoutError):
    status_code = 502
    code = "payment_provider_error"


class PaymentNotCompleted(CheckoutError):
    code = "payment_not_completed"

    def __init__(self, message: str = "Payment not completed"):
        super().__init__(message)


class PaymentIntentMismatch(CheckoutError):
    status_code = 403
    code = "payment_intent_mismatch"

    def __init__(self, message: str = "Payment intent does not belong to this user"):
        super().__init__(message)


class PaymentAlreadyUsed(CheckoutError):
    status_code = 409
    code = "payment_already_used"

    def __init__(self, message: str = "An order was already created for this payment"):
        super().__init__(message)


class OrderPersistenceError(CheckoutError):
    status_code = 500
    code = "order_persistence_error"

    def __init__(self, message: str = "Unable to record the order, please retry"):
        super().__init__(message)
