# module marketplace.payments.views
"""Endpoints du checkout.
- /create-intent: prépare le paiement (cash: pseudo-intention locale, card: PaymentIntent Stripe).
- /confirm: revérifie le panier, engage le stock et crée la commande.
- /webhook: reçoit les événements Stripe signés (journalisation uniquement).
Sécurité:
- require_user sur create-intent/confirm; le webhook est authentifié par la signature Stripe.
- optional_rate_limit: limite la fréquence des tentatives de checkout.
"""
import logging
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field, field_validator

from marketplace.errors import CheckoutError
from marketplace.utils.security import require_user
from marketplace.utils.rate_limit import optional_rate_limit
from marketplace.payments import service as payments_service
from marketplace.payments.gateway import StripeGateway, get_gateway
from marketplace.payments.intents import parse_intent_ref

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payment", tags=["Payment API"])


class ShippingAddress(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    street_address: str = Field(alias="streetAddress", min_length=1)
    house_no: str = Field(alias="houseNo", min_length=1)
    town: str = Field(min_length=1)
    city: str = Field(min_length=1)
    country: str = Field(min_length=1)
    postal_code: str = Field(alias="postalCode", min_length=1)


class CreateIntentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    shipping_address: ShippingAddress = Field(alias="shippingAddress")
    payment_method: Literal["card", "cash"] = Field(alias="paymentMethod")


class ConfirmRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_intent_id: str = Field(alias="paymentIntentId")
    shipping_address: ShippingAddress = Field(alias="shippingAddress")
    payment_method: Optional[Literal["card", "cash"]] = Field(default=None, alias="paymentMethod")

    @field_validator("payment_intent_id")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not (v or "").strip():
            raise ValueError("Payment intent ID is required")
        return v.strip()


@router.post("/create-intent", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def create_intent(
    body: CreateIntentRequest,
    user: Dict[str, Any] = Depends(require_user),
    gateway: StripeGateway = Depends(get_gateway),
):
    """
    Prépare le paiement du panier de l'utilisateur authentifié.
    - Entrée JSON: { "shippingAddress": {...}, "paymentMethod": "card" | "cash" }
    - Sortie: { "success": true, "clientSecret", "paymentIntentId", "paymentMethod" }
    - Erreurs: CheckoutError (panier vide, stock, montant trop faible, Stripe indisponible...)
    """
    try:
        intent = payments_service.create_payment_intent(
            user["id"],
            body.shipping_address.model_dump(by_alias=True),
            body.payment_method,
            gateway=gateway,
        )
    except (CheckoutError, HTTPException):
        raise
    except Exception:
        logger.exception("Erreur create_intent")
        raise HTTPException(status_code=500, detail="Unable to prepare payment")
    return {
        "success": True,
        "clientSecret": intent.client_secret,
        "paymentIntentId": intent.id,
        "paymentMethod": intent.kind,
    }


@router.post("/confirm", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def confirm(
    body: ConfirmRequest,
    user: Dict[str, Any] = Depends(require_user),
    gateway: StripeGateway = Depends(get_gateway),
):
    """
    Confirme le paiement et crée la commande.
    - Entrée JSON: { "paymentIntentId", "shippingAddress": {...}, "paymentMethod"?: "card" | "cash" }
    - paymentMethod absent: déduit de l'id (préfixe cash_).
    - Sortie: { "success": true, "message", "order" }
    """
    intent = parse_intent_ref(body.payment_intent_id, body.payment_method, user["id"])
    try:
        order = payments_service.confirm_payment(
            user["id"],
            intent,
            body.shipping_address.model_dump(by_alias=True),
            gateway=gateway,
        )
    except (CheckoutError, HTTPException):
        raise
    except Exception:
        logger.exception("Erreur confirm")
        raise HTTPException(status_code=500, detail="Unable to confirm payment")
    return {
        "success": True,
        "message": "Payment confirmed and order created successfully",
        "order": order,
    }


@router.post("/webhook", include_in_schema=False)
async def webhook_stripe(request: Request, gateway: StripeGateway = Depends(get_gateway)):
    """
    Webhook Stripe (PaymentIntent).
    - Signature: Stripe-Signature + STRIPE_WEBHOOK_SECRET (400 si absente/invalide, 500 si secret non configuré)
    - Réponse: {"received": true}
    """
    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        raise HTTPException(status_code=400, detail="Missing Stripe signature")
    if not gateway.webhook_secret:
        raise HTTPException(status_code=500, detail="Stripe webhook secret not configured")

    payload = await request.body()
    try:
        event = gateway.construct_event(payload, sig_header)
    except Exception as e:
        logger.warning("payments.webhook signature verification failed: %s", e)
        raise HTTPException(status_code=400, detail=f"Webhook Error: {e}")
    return payments_service.handle_webhook_event(event)
