"""
Cas d'usage 'cart': lecture et mutations du panier d'un utilisateur.
Les lignes sont des instantanés (prix, nom, unité) pris à l'ajout; le checkout les revérifie.
"""
from typing import List, Dict, Any, Optional
import logging

from marketplace.errors import CheckoutError, CartNotFound, CartItemNotFound, InsufficientStock, ProductNotFound
from marketplace.products import repository as products_repo
from marketplace.products.service import check_purchasable, price_of, stock_of
from . import repository

logger = logging.getLogger(__name__)


def cart_items(cart: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Lignes du panier (liste vide si panier absent ou mal formé)."""
    items = (cart or {}).get("items") or []
    return [it for it in items if isinstance(it, dict)]

def _save(user_id: str, items: List[Dict[str, Any]]) -> Dict[str, Any]:
    saved = repository.save_cart_items(user_id, items)
    if saved is None:
        raise CheckoutError("Unable to save cart", status_code=500)
    return {"user_id": str(user_id), "items": items}

def _line_for(product: Dict[str, Any], quantity: int, image: Optional[str] = None) -> Dict[str, Any]:
    line = {
        "productId": str(product.get("id")),
        "name": product.get("name") or "Article",
        "price": price_of(product),
        "quantity": int(quantity),
        "unit": product.get("unit") or "",
    }
    if image:
        line["image"] = image
    return line

def _purchasable_product(product_id: str, quantity: int) -> Dict[str, Any]:
    """Produit courant vérifié pour `quantity`; les messages citent le nom du produit, jamais son id."""
    product = products_repo.get_product(product_id)
    if not product:
        raise ProductNotFound("Product not found")
    return check_purchasable(product, product.get("name") or "Product", quantity)

def get_cart(user_id: str) -> Dict[str, Any]:
    """
    Retourne le panier de l'utilisateur; le crée vide à la première lecture.
    """
    cart = repository.find_cart(user_id)
    if cart is None:
        return _save(user_id, [])
    return {"user_id": str(user_id), "items": cart_items(cart)}

def add_to_cart(user_id: str, product_id: str, quantity: int) -> Dict[str, Any]:
    """
    Ajoute un produit au panier ou cumule la quantité s'il y est déjà.
    - Vérifie existence, disponibilité et stock pour la quantité cumulée.
    - Rafraîchit le prix de la ligne (le prix a pu changer depuis l'ajout précédent).
    """
    product = _purchasable_product(product_id, quantity)

    items = cart_items(repository.find_cart(user_id))
    for line in items:
        if str(line.get("productId")) == str(product_id):
            new_quantity = int(line.get("quantity") or 0) + int(quantity)
            if stock_of(product) < new_quantity:
                raise InsufficientStock(f"Insufficient stock. Only {stock_of(product)} available")
            line["quantity"] = new_quantity
            line["price"] = price_of(product)
            break
    else:
        items.append(_line_for(product, quantity, product.get("image")))

    logger.info("cart.add user_id=%s product_id=%s quantity=%s", user_id, product_id, quantity)
    return _save(user_id, items)

def update_cart_item(user_id: str, product_id: str, quantity: int) -> Dict[str, Any]:
    """Remplace la quantité d'une ligne existante après revérification du produit."""
    cart = repository.find_cart(user_id)
    if cart is None:
        raise CartNotFound()
    items = cart_items(cart)
    line = next((it for it in items if str(it.get("productId")) == str(product_id)), None)
    if line is None:
        raise CartItemNotFound()

    product = _purchasable_product(product_id, quantity)
    line["quantity"] = int(quantity)
    line["price"] = price_of(product)
    return _save(user_id, items)

def remove_from_cart(user_id: str, product_id: str) -> Dict[str, Any]:
    cart = repository.find_cart(user_id)
    if cart is None:
        raise CartNotFound()
    items = [it for it in cart_items(cart) if str(it.get("productId")) != str(product_id)]
    return _save(user_id, items)

def clear_cart(user_id: str) -> Dict[str, Any]:
    cart = repository.find_cart(user_id)
    if cart is None:
        raise CartNotFound()
    return _save(user_id, [])
