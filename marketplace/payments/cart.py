"""
Vérification du panier contre l'état courant du catalogue et calcul des montants.
- verify_cart_items: relit chaque produit, applique les règles d'achat, fige prix/quantités/totaux.
- to_settlement_amount: conversion PKR -> devise Stripe (centimes entiers) au taux fixe.
- make_metadata: métadonnées Stripe pour audit/remboursement.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from math import ceil
from typing import List, Dict, Any, Optional

from marketplace.config import PKR_TO_USD_RATE, STRIPE_MIN_CHARGE_CENTS
from marketplace.errors import EmptyCart, InvalidCartItem, MultiFarmerCartError, MissingFarmer, AmountTooSmall
from marketplace.products import repository as products_repo
from marketplace.products.service import check_purchasable, price_of


@dataclass
class VerifiedCart:
    items: List[Dict[str, Any]] = field(default_factory=list)
    total_amount: float = 0.0
    farmer_id: Optional[str] = None


def _line_quantity(line: Dict[str, Any]) -> int:
    try:
        return int(line.get("quantity") or 0)
    except (TypeError, ValueError):
        return 0

# module marketplace.payments.cart
def verify_cart_items(cart_lines: List[Dict[str, Any]], *, single_farmer: bool = False) -> VerifiedCart:
    """
    Revérifie chaque ligne du panier contre le produit actuel.
    - Toute ligne du panier est commandée: productId vide ou quantity <= 0 lève InvalidCartItem
      (jamais de ligne ignorée en silence). EmptyCart si le panier ne contient aucune ligne.
    - Lève ProductNotFound / ProductUnavailable / InsufficientStock à la première ligne fautive.
    - single_farmer: tous les produits doivent appartenir au fermier du premier produit
      (MultiFarmerCartError sinon, MissingFarmer si aucun fermier n'est renseigné).
    - Les prix viennent du produit (pas de l'instantané du panier).
    """
    verified = VerifiedCart()
    total = Decimal("0")
    for line in cart_lines or []:
        product_id = str(line.get("productId") or "").strip()
        quantity = _line_quantity(line)
        name = line.get("name") or product_id or "item"
        if not product_id:
            raise InvalidCartItem(f"Cart item {name} has no product")
        if quantity <= 0:
            raise InvalidCartItem(f"Invalid quantity for {name}")
        product = check_purchasable(products_repo.get_product(product_id), name, quantity)

        product_farmer = str(product.get("farmer_id") or "") or None
        if single_farmer:
            if verified.farmer_id is None and product_farmer:
                verified.farmer_id = product_farmer
            if verified.farmer_id and product_farmer and product_farmer != verified.farmer_id:
                raise MultiFarmerCartError()

        price = Decimal(str(price_of(product)))
        line_total = price * quantity
        total += line_total
        verified.items.append({
            "productId": str(product.get("id") or product_id),
            "productName": product.get("name") or name,
            "quantity": quantity,
            "unit": product.get("unit") or line.get("unit") or "",
            "price": float(price),
            "total": float(line_total),
        })

    if not verified.items:
        raise EmptyCart()
    if single_farmer and not verified.farmer_id:
        raise MissingFarmer()
    verified.total_amount = float(total)
    return verified

def to_settlement_amount(total_amount: float, rate: Optional[float] = None) -> int:
    """
    Convertit un total en roupies vers la devise Stripe, en centimes entiers (arrondi au plus proche).
    Lève AmountTooSmall sous le minimum Stripe (le message indique le minimum en roupies).
    """
    rate = rate or PKR_TO_USD_RATE
    cents = (Decimal(str(total_amount)) / Decimal(str(rate)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    amount = int(cents)
    if amount < STRIPE_MIN_CHARGE_CENTS:
        minimum_pkr = ceil(STRIPE_MIN_CHARGE_CENTS * rate / 100)
        raise AmountTooSmall(f"Order total must be at least Rs. {minimum_pkr}")
    return amount

def _num(value: float) -> str:
    value = float(value)
    return str(int(value)) if value.is_integer() else str(value)

def make_metadata(user_id: str, total_amount: float, rate: Optional[float] = None) -> Dict[str, str]:
    """
    Métadonnées Stripe associées au PaymentIntent.
    - userId: propriétaire (vérifié à la confirmation).
    - originalAmountPKR / conversionRate: pour refaire le calcul lors d'un remboursement.
    """
    return {
        "userId": str(user_id),
        "orderType": "cart",
        "originalAmountPKR": _num(total_amount),
        "conversionRate": _num(rate or PKR_TO_USD_RATE),
    }
