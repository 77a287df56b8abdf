from typing import Any, Dict

from fastapi import APIRouter, Depends, Query

from marketplace.utils.security import require_user
from marketplace.orders import repository as orders_repo
from marketplace.orders.models import order_to_api

router = APIRouter(prefix="/api/v1/orders", tags=["Orders API"])

@router.get("")
def list_my_orders(limit: int = Query(default=50, ge=1, le=200), user: Dict[str, Any] = Depends(require_user)):
    """Commandes de l'utilisateur connecté, les plus récentes d'abord."""
    rows = orders_repo.list_customer_orders(user["id"], limit=limit)
    return {"success": True, "orders": [order_to_api(r) for r in rows]}
