"""
Adaptateur Stripe: centralise les appels PaymentIntent et la vérification des webhooks.
- Instancié avec la clé secrète (pas de stripe.api_key global): injecté dans le service
  via get_gateway() (dépendance FastAPI) et remplaçable en tests.
"""
import logging
from typing import Any, Dict, Optional

import stripe

from marketplace.config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from marketplace.errors import PaymentProviderError, PaymentUnavailable

logger = logging.getLogger(__name__)


def _as_dict(obj: Any) -> Dict[str, Any]:
    # StripeObject: dict-compatible selon les versions du SDK
    if isinstance(obj, dict):
        return obj
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


class StripeGateway:
    def __init__(self, api_key: str = "", webhook_secret: str = "", client: Any = stripe):
        self.api_key = api_key or ""
        self.webhook_secret = webhook_secret or ""
        self._stripe = client

    @property
    def configured(self) -> bool:
        return bool(self.api_key) and self._stripe is not None

    def require(self) -> None:
        if not self.configured:
            raise PaymentUnavailable()

    # module marketplace.payments.gateway
    def create_payment_intent(
        self,
        *,
        amount: int,
        currency: str,
        metadata: Dict[str, str],
        description: str = "",
    ) -> Dict[str, Any]:
        """
        Crée un PaymentIntent Stripe.
        - amount: en plus petite unité de la devise (centimes)
        - metadata: ex {"userId": "...", "originalAmountPKR": "...", "conversionRate": "..."}
        Retour: {"id", "client_secret", "status", "metadata"}
        """
        self.require()
        try:
            intent = self._stripe.PaymentIntent.create(
                api_key=self.api_key,
                amount=amount,
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                description=description,
            )
        except stripe.InvalidRequestError as e:
            logger.exception("payments.gateway.create_payment_intent invalid request")
            raise PaymentProviderError(f"Payment error: {getattr(e, 'user_message', None) or str(e)}", status_code=400)
        except stripe.StripeError as e:
            logger.exception("payments.gateway.create_payment_intent failed")
            raise PaymentProviderError(f"Payment processing error: {getattr(e, 'user_message', None) or str(e)}")
        return self._normalize(intent)

    def retrieve_payment_intent(self, payment_intent_id: str) -> Dict[str, Any]:
        """
        Récupère un PaymentIntent par son identifiant.
        Retour: {"id", "client_secret", "status", "metadata"}
        """
        self.require()
        try:
            intent = self._stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.exception("payments.gateway.retrieve_payment_intent failed id=%s", payment_intent_id)
            raise PaymentProviderError(f"Payment verification failed: {getattr(e, 'user_message', None) or str(e)}")
        return self._normalize(intent)

    def construct_event(self, payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """
        Valide la signature d'un webhook (Stripe-Signature + STRIPE_WEBHOOK_SECRET) et retourne l'event.
        Lève ValueError / stripe.SignatureVerificationError si la signature est invalide.
        """
        event = self._stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)
        return _as_dict(event)

    @staticmethod
    def _normalize(intent: Any) -> Dict[str, Any]:
        data = _as_dict(intent)
        metadata = data.get("metadata") or {}
        return {
            "id": data.get("id"),
            "client_secret": data.get("client_secret") or "",
            "status": data.get("status") or "",
            "metadata": _as_dict(metadata) if metadata else {},
        }


def get_gateway() -> StripeGateway:
    """Dépendance FastAPI: passerelle construite depuis la configuration."""
    return StripeGateway(api_key=STRIPE_SECRET_KEY, webhook_secret=STRIPE_WEBHOOK_SECRET)
