"""
Accès aux données 'products' (catalogue des fermiers).
- get_product: lecture d'un produit par id.
- compare_and_set_quantity: écriture conditionnelle du stock (atomique par ligne côté Postgres).
Colonnes utilisées: id, name, price, quantity, unit, image, is_available, farmer_id.
"""
from typing import Optional, Dict, Any
import logging
import marketplace.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

TABLE = "products"

# module marketplace.products.repository
def get_product(product_id: str) -> Optional[Dict[str, Any]]:
    """
    Récupère un produit par son id.
    - Retourne None si introuvable ou en cas d'erreur (loggée).
    """
    if not product_id:
        return None
    try:
        res = (
            supabase_client.get_supabase()
            .table(TABLE)
            .select("id, name, price, quantity, unit, image, is_available, farmer_id")
            .eq("id", str(product_id))
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("products.repository.get_product failed product_id=%s", product_id)
        return None

def compare_and_set_quantity(
    product_id: str,
    *,
    expected: int,
    new_quantity: int,
    is_available: Optional[bool] = None,
) -> bool:
    """
    UPDATE products SET quantity = new_quantity WHERE id = product_id AND quantity = expected.
    - is_available: si fourni, écrit aussi le drapeau de disponibilité dans la même requête.
    - Retourne True si une ligne a été modifiée, False si le stock a bougé entre-temps ou en cas d'erreur.
    """
    values: Dict[str, Any] = {"quantity": int(new_quantity)}
    if is_available is not None:
        values["is_available"] = bool(is_available)
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(TABLE)
            .update(values)
            .eq("id", str(product_id))
            .eq("quantity", int(expected))
            .execute()
        )
        return len(res.data or []) > 0
    except Exception:
        logger.exception(
            "products.repository.compare_and_set_quantity failed product_id=%s expected=%s new=%s",
            product_id, expected, new_quantity,
        )
        return False
