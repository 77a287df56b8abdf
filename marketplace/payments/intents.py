"""
Intentions de paiement: variante explicite cash | card transportée de bout en bout.
- CashIntent: pseudo-intention locale, jamais enregistrée chez Stripe.
- CardIntent: PaymentIntent Stripe (id, client_secret, status, metadata).
La forme de l'id n'est interprétée qu'une fois, à la frontière HTTP (parse_intent_ref).
"""
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, Union
import time

CASH_PREFIX = "cash_"
CASH_CLIENT_SECRET = "cash_payment"


@dataclass(frozen=True)
class CashIntent:
    id: str
    kind = "cash"

    @property
    def client_secret(self) -> str:
        return CASH_CLIENT_SECRET

    @property
    def owner_id(self) -> Optional[str]:
        """userId encodé dans cash_<timestamp>_<userId> (None si id non conforme)."""
        parts = self.id.split("_", 2)
        if len(parts) == 3 and parts[0] == "cash" and parts[2]:
            return parts[2]
        return None


@dataclass(frozen=True)
class CardIntent:
    id: str
    client_secret: str = ""
    status: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    kind = "card"


PaymentIntent = Union[CashIntent, CardIntent]


def new_cash_intent(user_id: str, now_ms: Optional[int] = None) -> CashIntent:
    """cash_<timestamp ms>_<userId>"""
    ts = now_ms if now_ms is not None else int(time.time() * 1000)
    return CashIntent(id=f"{CASH_PREFIX}{ts}_{user_id}")

def parse_intent_ref(payment_intent_id: str, payment_method: Optional[str], user_id: str) -> PaymentIntent:
    """
    Construit la variante à partir de la requête de confirmation.
    - payment_method fourni ("cash"/"card"): il fait foi.
    - Sinon: déduit de la forme de l'id (préfixe cash_ ou secret sentinelle).
    - Le secret sentinelle seul n'identifie aucune intention: on génère un id cash propre à l'utilisateur.
    """
    raw = (payment_intent_id or "").strip()
    if payment_method:
        is_cash = payment_method == "cash"
    else:
        is_cash = raw.startswith(CASH_PREFIX) or raw == CASH_CLIENT_SECRET
    if not is_cash:
        return CardIntent(id=raw)
    if raw == CASH_CLIENT_SECRET or not raw:
        return new_cash_intent(user_id)
    return CashIntent(id=raw)
