"""
Résolution de l'utilisateur courant à partir d'un access token Supabase.
L'inscription, la connexion et les cookies de session sont gérés hors de ce service.
"""
from typing import Dict, Any, Optional
import logging
import marketplace.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

def determine_role(metadata: Optional[Dict[str, Any]]) -> str:
    """'farmer' si déclaré dans les métadonnées utilisateur, sinon 'customer'."""
    if str((metadata or {}).get("role", "")).lower() == "farmer":
        return "farmer"
    return "customer"

def get_user_from_token(access_token: str) -> Dict[str, Any]:
    """Normalise user issu de supabase.auth.get_user(access_token):
    - Retourne {id, email, metadata, role, token}
    - Lève une exception si le token est invalide/expiré (gérée par la dépendance FastAPI)
    """
    res = supabase_client.get_supabase().auth.get_user(access_token)
    user = getattr(res, "user", None)
    if user is None:
        raise ValueError("Token invalide")
    metadata = getattr(user, "user_metadata", None) or {}
    return {
        "id": getattr(user, "id", None),
        "email": getattr(user, "email", None),
        "metadata": metadata,
        "role": determine_role(metadata),
        "token": access_token,
    }
