# module marketplace.cart.views
"""Endpoints du panier (utilisateur authentifié).
- GET    /api/v1/cart                     : panier courant (créé vide si absent)
- POST   /api/v1/cart/add                 : ajout / cumul d'un produit
- PUT    /api/v1/cart/items/{product_id}  : nouvelle quantité d'une ligne
- DELETE /api/v1/cart/items/{product_id}  : retrait d'une ligne
- DELETE /api/v1/cart/clear               : vidage
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from marketplace.utils.security import require_user
from marketplace.cart import service as cart_service

router = APIRouter(prefix="/api/v1/cart", tags=["Cart API"])


class AddToCartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(alias="productId", min_length=1)
    quantity: int = Field(ge=1)


class UpdateCartItemRequest(BaseModel):
    quantity: int = Field(ge=1)


@router.get("")
def get_cart(user: Dict[str, Any] = Depends(require_user)):
    return {"success": True, "cart": cart_service.get_cart(user["id"])}

@router.post("/add")
def add_to_cart(body: AddToCartRequest, user: Dict[str, Any] = Depends(require_user)):
    cart = cart_service.add_to_cart(user["id"], body.product_id, body.quantity)
    return {"success": True, "cart": cart}

@router.put("/items/{product_id}")
def update_cart_item(product_id: str, body: UpdateCartItemRequest, user: Dict[str, Any] = Depends(require_user)):
    cart = cart_service.update_cart_item(user["id"], product_id, body.quantity)
    return {"success": True, "cart": cart}

@router.delete("/items/{product_id}")
def remove_from_cart(product_id: str, user: Dict[str, Any] = Depends(require_user)):
    return {"success": True, "cart": cart_service.remove_from_cart(user["id"], product_id)}

@router.delete("/clear")
def clear_cart(user: Dict[str, Any] = Depends(require_user)):
    return {"success": True, "cart": cart_service.clear_cart(user["id"])}
