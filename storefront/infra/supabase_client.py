"""
Clients Supabase partagés par le processus.
- get_supabase: clé anon, utilisée pour identifier l'appelant (auth.get_user).
- get_service_supabase: clé service-role (bypass RLS), pour toutes les écritures
  commandes / réservations / sessions de paiement / journal / stock.
Les dépôts appellent ces fonctions via le module (patchables dans les tests).
"""
from typing import Optional
from supabase import Client, create_client
from supabase.lib.client_options import ClientOptions

from storefront import config

_supabase: Optional[Client] = None
_service_supabase: Optional[Client] = None


def _build(key: str, label: str) -> Client:
    if not config.SUPABASE_URL or not key:
        raise RuntimeError(f"SUPABASE_URL ou {label} manquant")
    options = ClientOptions(postgrest_client_timeout=config.SUPABASE_TIMEOUT_SECONDS)
    return create_client(config.SUPABASE_URL, key, options=options)


def get_supabase() -> Client:
    global _supabase
    if _supabase is None:
        _supabase = _build(config.SUPABASE_ANON, "SUPABASE_ANON_KEY")
    return _supabase


def get_service_supabase() -> Client:
    global _service_supabase
    if _service_supabase is None:
        _service_supabase = _build(config.SUPABASE_SERVICE_KEY, "SUPABASE_SERVICE_KEY")
    return _service_supabase
