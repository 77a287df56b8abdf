"""
Règles produit partagées par le panier et le checkout.
- check_purchasable: existence, disponibilité et stock d'un produit pour une quantité.
- commit_stock / release_stock: décrément conditionnel du stock (compare-and-swap) et compensation.
"""
from dataclasses import dataclass
from typing import Optional, Dict, Any
import logging

from marketplace.config import STOCK_COMMIT_RETRIES
from marketplace.errors import (
    ProductNotFound,
    ProductUnavailable,
    InsufficientStock,
    OrderPersistenceError,
)
from . import repository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockReservation:
    product_id: str
    quantity: int
    # True si ce décrément a fait passer le produit à 0 et l'a rendu indisponible
    disabled: bool = False


def stock_of(product: Dict[str, Any]) -> int:
    try:
        return int(product.get("quantity") or 0)
    except (TypeError, ValueError):
        return 0

def price_of(product: Dict[str, Any]) -> float:
    """
    Prix unitaire courant (float).
    - Autorise product.get("price") à être str|float|int; 0.0 si parsing impossible.
    """
    try:
        return float(product.get("price") or 0)
    except (TypeError, ValueError):
        return 0.0

def check_purchasable(product: Optional[Dict[str, Any]], name: str, quantity: int) -> Dict[str, Any]:
    """
    Vérifie qu'un produit peut être acheté en `quantity` exemplaires et le retourne.
    Lève ProductNotFound, ProductUnavailable ou InsufficientStock (messages affichés au client).
    """
    if not product:
        raise ProductNotFound(f"Product {name} no longer exists")
    if not product.get("is_available"):
        raise ProductUnavailable(f"Product {name} is no longer available")
    available = stock_of(product)
    if available < quantity:
        raise InsufficientStock(f"Insufficient stock for {name}. Only {available} available")
    return product

def commit_stock(product_id: str, quantity: int, name: str, retries: Optional[int] = None) -> StockReservation:
    """
    Décrémente le stock de `quantity` uniquement si le stock courant le couvre.
    - Chaque tentative relit le produit puis écrit quantity = observé - n WHERE quantity = observé.
    - Si un autre acheteur a modifié le stock entre la lecture et l'écriture, on relit et on réessaie.
    - Passe is_available à False dans la même écriture quand le stock résultant vaut 0.
    """
    attempts = max(1, retries if retries is not None else STOCK_COMMIT_RETRIES)
    for attempt in range(attempts):
        product = check_purchasable(repository.get_product(product_id), name, quantity)
        observed = stock_of(product)
        remaining = observed - quantity
        disabled = remaining == 0
        ok = repository.compare_and_set_quantity(
            product_id,
            expected=observed,
            new_quantity=remaining,
            is_available=False if disabled else None,
        )
        if ok:
            return StockReservation(product_id=str(product_id), quantity=quantity, disabled=disabled)
        logger.info("products.commit_stock conflict product_id=%s attempt=%s", product_id, attempt + 1)
    raise OrderPersistenceError(f"Stock for {name} is changing too fast, please retry")

def release_stock(reservation: StockReservation, retries: Optional[int] = None) -> bool:
    """
    Compensation: rend au stock une réservation déjà appliquée.
    - Rétablit is_available si c'est notre décrément qui l'avait désactivé.
    - Retourne False (et logge) si la restitution n'a pas pu être écrite.
    """
    attempts = max(1, retries if retries is not None else STOCK_COMMIT_RETRIES)
    for _ in range(attempts):
        product = repository.get_product(reservation.product_id)
        if not product:
            break
        observed = stock_of(product)
        ok = repository.compare_and_set_quantity(
            reservation.product_id,
            expected=observed,
            new_quantity=observed + reservation.quantity,
            is_available=True if reservation.disabled else None,
        )
        if ok:
            return True
    logger.error(
        "products.release_stock failed product_id=%s quantity=%s",
        reservation.product_id, reservation.quantity,
    )
    return False
