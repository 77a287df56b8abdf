"""
Accès aux données pour le panier (table 'carts', un document par utilisateur).
Colonnes: user_id (unique), items (jsonb: [{productId, name, price, quantity, unit, image}]), updated_at.
"""
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import logging
import marketplace.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

TABLE = "carts"

# module marketplace.cart.repository
def find_cart(user_id: str) -> Optional[Dict[str, Any]]:
    """
    Retourne le panier de l'utilisateur ({user_id, items, ...}) ou None s'il n'existe pas.
    """
    if not user_id:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(TABLE)
            .select("user_id, items, updated_at")
            .eq("user_id", str(user_id))
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("cart.repository.find_cart failed user_id=%s", user_id)
        return None

def save_cart_items(user_id: str, items: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Upsert du panier (un seul panier par utilisateur, conflit sur user_id).
    - Retourne la ligne écrite, ou None en cas d'erreur.
    """
    row = {
        "user_id": str(user_id),
        "items": list(items or []),
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(TABLE)
            .upsert(row, on_conflict="user_id")
            .execute()
        )
        rows = res.data or []
        return rows[0] if isinstance(rows, list) and rows else row
    except Exception:
        logger.exception("cart.repository.save_cart_items failed user_id=%s", user_id)
        return None
