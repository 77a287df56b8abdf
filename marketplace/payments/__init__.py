"""
Module 'payments' (feature-first): point d'entrée public.
Réunit vérification du panier, intentions de paiement, passerelle Stripe et services de checkout.
"""

from .cart import VerifiedCart, verify_cart_items, to_settlement_amount, make_metadata
from .intents import (
    CASH_CLIENT_SECRET,
    CashIntent,
    CardIntent,
    PaymentIntent,
    new_cash_intent,
    parse_intent_ref,
)
from .gateway import StripeGateway, get_gateway
from .service import create_payment_intent, confirm_payment, handle_webhook_event

__all__ = [
    # cart
    "VerifiedCart",
    "verify_cart_items",
    "to_settlement_amount",
    "make_metadata",
    # intents
    "CASH_CLIENT_SECRET",
    "CashIntent",
    "CardIntent",
    "PaymentIntent",
    "new_cash_intent",
    "parse_intent_ref",
    # stripe
    "StripeGateway",
    "get_gateway",
    # services
    "create_payment_intent",
    "confirm_payment",
    "handle_webhook_event",
]
