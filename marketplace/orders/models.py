# module marketplace.orders.models
"""Modèle des commandes.
- Identifiant lisible attribué à la création (pas d'identifiant provisoire à corriger plus tard).
- Conversion ligne DB (snake_case) <-> représentation API (camelCase).
"""
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
from uuid import uuid4

ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled")
PAYMENT_METHODS = ("card", "cash")

def new_order_id(now: Optional[datetime] = None) -> str:
    """ORD-<yyyymmdd>-<8 hex>: unique (uuid4) et triable par jour."""
    now = now or datetime.now(timezone.utc)
    return f"ORD-{now:%Y%m%d}-{uuid4().hex[:8].upper()}"

def build_order_row(
    *,
    customer_id: str,
    farmer_id: str,
    items: List[Dict[str, Any]],
    total_amount: float,
    payment_method: str,
    payment_intent_id: str,
    shipping_address: Dict[str, Any],
) -> Dict[str, Any]:
    """Construit la ligne 'orders'; le statut initial dépend du mode de paiement."""
    now = datetime.now(timezone.utc)
    return {
        "order_id": new_order_id(now),
        "customer_id": str(customer_id),
        "farmer_id": str(farmer_id),
        "items": items,
        "total_amount": total_amount,
        "status": "pending" if payment_method == "cash" else "confirmed",
        "shipping_address": shipping_address,
        "payment_method": payment_method,
        "payment_intent_id": payment_intent_id,
        "created_at": now.isoformat(),
    }

def order_to_api(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "orderId": row.get("order_id"),
        "customerId": row.get("customer_id"),
        "farmerId": row.get("farmer_id"),
        "items": row.get("items") or [],
        "totalAmount": row.get("total_amount"),
        "status": row.get("status"),
        "shippingAddress": row.get("shipping_address") or {},
        "paymentMethod": row.get("payment_method"),
        "paymentIntentId": row.get("payment_intent_id"),
        "createdAt": row.get("created_at"),
    }
