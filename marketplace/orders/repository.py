from typing import List, Dict, Any, Optional
import logging
import marketplace.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

TABLE = "orders"

def insert_order(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Insert via service-role; order_id et payment_intent_id sont uniques côté DB.
    Retourne la ligne insérée, ou None en cas d'erreur (doublon compris).
    """
    try:
        res = get_client().table(TABLE).insert(row).execute()
        rows = res.data or []
        return rows[0] if isinstance(rows, list) and rows else row
    except Exception:
        logger.exception(
            "orders.repository.insert_order failed customer_id=%s payment_intent_id=%s",
            row.get("customer_id"), row.get("payment_intent_id"),
        )
        return None

def find_order_by_payment_intent(payment_intent_id: str) -> Optional[Dict[str, Any]]:
    if not payment_intent_id:
        return None
    try:
        res = (
            get_client()
            .table(TABLE)
            .select("*")
            .eq("payment_intent_id", payment_intent_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("orders.repository.find_order_by_payment_intent failed id=%s", payment_intent_id)
        return None

def list_customer_orders(customer_id: str, limit: int = 50) -> List[Dict[str, Any]]:
    """
    Commandes d'un client, les plus récentes d'abord.
    """
    if not customer_id:
        return []
    try:
        res = (
            get_client()
            .table(TABLE)
            .select("*")
            .eq("customer_id", str(customer_id))
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("orders.repository.list_customer_orders failed customer_id=%s", customer_id)
        return []

def get_client():
    return supabase_client.get_service_supabase()
