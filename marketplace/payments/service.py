"""
Cas d'usage 'payments': intention de paiement (phase 1) puis matérialisation de la commande (phase 2).
Le panier est revérifié aux deux phases; seule la seconde engage le stock et crée la commande.
"""
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any, List, Union
import logging

from marketplace.config import PKR_TO_USD_RATE, STRIPE_CURRENCY
from marketplace.errors import (
    CheckoutError,
    EmptyCart,
    PaymentNotCompleted,
    PaymentIntentMismatch,
    PaymentAlreadyUsed,
    OrderPersistenceError,
)
from marketplace.cart import repository as cart_repo
from marketplace.cart.service import cart_items
from marketplace.orders import repository as orders_repo
from marketplace.orders.models import build_order_row, order_to_api
from marketplace.products import service as stock
from . import cart as cart_logic
from .gateway import StripeGateway, get_gateway
from .intents import CardIntent, PaymentIntent, new_cash_intent, parse_intent_ref

logger = logging.getLogger(__name__)


def _load_cart_lines(user_id: str) -> List[Dict[str, Any]]:
    lines = cart_items(cart_repo.find_cart(user_id))
    if not lines:
        raise EmptyCart()
    return lines

def create_payment_intent(
    user_id: str,
    shipping_address: Dict[str, Any],
    payment_method: str,
    *,
    gateway: Optional[StripeGateway] = None,
) -> PaymentIntent:
    """
    Prépare le paiement du panier de l'utilisateur.
    - cash: validation à blanc du panier puis pseudo-intention locale (aucun appel Stripe).
    - card: Stripe configuré, validation du panier, conversion PKR -> centimes, PaymentIntent Stripe.
    Aucune commande n'est créée et le stock n'est pas touché.
    shipping_address est validé par la vue; il n'est persisté qu'à la confirmation.
    """
    if payment_method not in ("card", "cash"):
        raise CheckoutError("Payment method must be either 'card' or 'cash'")
    if payment_method == "cash":
        verified = cart_logic.verify_cart_items(_load_cart_lines(user_id))
        intent = new_cash_intent(user_id)
        logger.info("payments.create_intent method=cash user_id=%s total=%s", user_id, verified.total_amount)
        return intent

    gateway = gateway or get_gateway()
    gateway.require()
    verified = cart_logic.verify_cart_items(_load_cart_lines(user_id))
    amount = cart_logic.to_settlement_amount(verified.total_amount, PKR_TO_USD_RATE)
    created = gateway.create_payment_intent(
        amount=amount,
        currency=STRIPE_CURRENCY,
        metadata=cart_logic.make_metadata(user_id, verified.total_amount, PKR_TO_USD_RATE),
        description=f"Order payment - Rs. {verified.total_amount:.2f} PKR",
    )
    logger.info(
        "payments.create_intent method=card user_id=%s total=%s amount=%s intent=%s",
        user_id, verified.total_amount, amount, created.get("id"),
    )
    return CardIntent(
        id=created.get("id") or "",
        client_secret=created.get("client_secret") or "",
        status=created.get("status") or "",
        metadata=created.get("metadata") or {},
    )

def _verify_card_payment(intent: CardIntent, user_id: str, gateway: StripeGateway) -> CardIntent:
    gateway.require()
    remote = gateway.retrieve_payment_intent(intent.id)
    if remote.get("status") != "succeeded":
        raise PaymentNotCompleted()
    if (remote.get("metadata") or {}).get("userId") != str(user_id):
        raise PaymentIntentMismatch()
    return CardIntent(
        id=remote.get("id") or intent.id,
        client_secret=remote.get("client_secret") or "",
        status=remote.get("status") or "",
        metadata=remote.get("metadata") or {},
    )

def _warn_on_amount_drift(intent: CardIntent, total_amount: float, user_id: str) -> None:
    """Signale un panier modifié entre le paiement Stripe et la confirmation (montant payé != total commandé)."""
    paid = (intent.metadata or {}).get("originalAmountPKR")
    try:
        drift = paid is None or Decimal(str(paid)) != Decimal(str(total_amount))
    except InvalidOperation:
        drift = True
    if drift:
        logger.warning(
            "payments.confirm amount mismatch intent=%s user_id=%s paid_pkr=%s order_total=%s",
            intent.id, user_id, paid, total_amount,
        )

def _commit_all(items: List[Dict[str, Any]]) -> List[stock.StockReservation]:
    """Engage le stock ligne par ligne; en cas d'échec, restitue ce qui a déjà été pris."""
    reservations: List[stock.StockReservation] = []
    try:
        for item in items:
            reservations.append(stock.commit_stock(item["productId"], item["quantity"], item["productName"]))
    except CheckoutError:
        _release_all(reservations)
        raise
    return reservations

def _release_all(reservations: List[stock.StockReservation]) -> None:
    for reservation in reversed(reservations):
        stock.release_stock(reservation)

def confirm_payment(
    user_id: str,
    payment_intent: Union[PaymentIntent, str],
    shipping_address: Dict[str, Any],
    *,
    gateway: Optional[StripeGateway] = None,
) -> Dict[str, Any]:
    """
    Matérialise la commande à partir du panier courant (le panier au moment de la confirmation fait foi).
    Étapes:
      1) panier non vide
      2) card: PaymentIntent Stripe 'succeeded' et appartenant à l'utilisateur; cash: id au nom de l'utilisateur
      3) aucune commande déjà enregistrée pour cette intention
      4) revérification des lignes + fermier unique, instantané des prix et totaux
      5) engagement du stock (compare-and-swap), puis insertion de la commande
      6) vidage du panier
    Toute erreur avant l'insertion restitue le stock déjà engagé: ni commande ni mutation ne subsistent.
    Retourne la commande (représentation API).
    """
    if isinstance(payment_intent, str):
        payment_intent = parse_intent_ref(payment_intent, None, user_id)

    lines = _load_cart_lines(user_id)

    if isinstance(payment_intent, CardIntent):
        payment_intent = _verify_card_payment(payment_intent, user_id, gateway or get_gateway())
        payment_method = "card"
    else:
        if payment_intent.owner_id != str(user_id):
            raise PaymentIntentMismatch()
        payment_method = "cash"

    if orders_repo.find_order_by_payment_intent(payment_intent.id):
        raise PaymentAlreadyUsed()

    verified = cart_logic.verify_cart_items(lines, single_farmer=True)
    if isinstance(payment_intent, CardIntent):
        _warn_on_amount_drift(payment_intent, verified.total_amount, user_id)

    reservations = _commit_all(verified.items)
    row = build_order_row(
        customer_id=user_id,
        farmer_id=verified.farmer_id,
        items=verified.items,
        total_amount=verified.total_amount,
        payment_method=payment_method,
        payment_intent_id=payment_intent.id,
        shipping_address=dict(shipping_address or {}),
    )
    saved = orders_repo.insert_order(row)
    if saved is None:
        _release_all(reservations)
        # Contrainte unique sur payment_intent_id: une confirmation concurrente a gagné
        if orders_repo.find_order_by_payment_intent(payment_intent.id):
            raise PaymentAlreadyUsed()
        raise OrderPersistenceError()

    if cart_repo.save_cart_items(user_id, []) is None:
        # La commande est enregistrée; le panier sera revérifié (stock) au prochain checkout
        logger.error("payments.confirm cart not cleared user_id=%s order_id=%s", user_id, saved.get("order_id"))

    logger.info(
        "payments.confirm order_id=%s user_id=%s method=%s total=%s items=%s",
        saved.get("order_id"), user_id, payment_method, verified.total_amount, len(verified.items),
    )
    return order_to_api(saved)

def handle_webhook_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """Traite un événement Stripe déjà authentifié.
    - payment_intent.succeeded / payment_intent.payment_failed: journalisés (la commande n'est créée
      que par confirm_payment, à l'initiative du client).
    - Autres types: ignorés.
    Renvoie {"received": True} dans tous les cas (Stripe ne doit pas réessayer).
    """
    event_type = (event or {}).get("type") or ""
    data_obj = ((event or {}).get("data") or {}).get("object") or {}
    intent_id = data_obj.get("id")
    user_id = (data_obj.get("metadata") or {}).get("userId")
    if event_type == "payment_intent.succeeded":
        logger.info("payments.webhook succeeded intent=%s user_id=%s", intent_id, user_id)
    elif event_type == "payment_intent.payment_failed":
        logger.warning("payments.webhook payment_failed intent=%s user_id=%s", intent_id, user_id)
    else:
        logger.debug("payments.webhook ignored type=%s", event_type)
    return {"received": True}
