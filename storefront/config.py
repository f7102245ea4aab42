# storefront.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=True)

"""
Configuration centrale de la boutique.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, PayChangu, Stripe)
- Expose les réglages boutique (devise, TVA, frais de transaction)
- Expose les réglages du worker de réservation de stock et de la politique de créneaux
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _env_float(name: str, default: float) -> float:
    raw = _clean_env(os.getenv(name) or "")
    try:
        return float(raw) if raw else default
    except ValueError:
        return default

def _env_int(name: str, default: int) -> int:
    raw = _clean_env(os.getenv(name) or "")
    try:
        return int(raw) if raw else default
    except ValueError:
        return default

APP_ENV = _clean_env(os.getenv("APP_ENV") or "development").lower()
IS_PRODUCTION = APP_ENV == "production"

# Canal des notifications: supabase (table notifications) ou logging
NOTIFIER_BACKEND = _clean_env(os.getenv("NOTIFIER_BACKEND") or "supabase").lower()

# Supabase: URLs et clés (anon/service)
# - SUPABASE_URL peut parfois être sans schéma: on préfixe en https:// si nécessaire
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# URL publique du site (callbacks/retours passerelle)
BASE_URL = _clean_env(os.getenv("BASE_URL") or "http://localhost:8000").rstrip("/")

# Passerelle de paiement active: paychangu | stripe | fake
PAYMENT_GATEWAY = _clean_env(os.getenv("PAYMENT_GATEWAY") or "paychangu").lower()

# PayChangu
PAYCHANGU_SECRET_KEY = _clean_env(os.getenv("PAYCHANGU_SECRET_KEY") or "")
PAYCHANGU_PUBLIC_KEY = _clean_env(os.getenv("PAYCHANGU_PUBLIC_KEY") or "")
PAYCHANGU_WEBHOOK_SECRET = _clean_env(os.getenv("PAYCHANGU_WEBHOOK_SECRET") or "")
PAYCHANGU_BASE_URL = _clean_env(os.getenv("PAYCHANGU_BASE_URL") or "https://api.paychangu.com").rstrip("/")
PAYCHANGU_TIMEOUT_SECONDS = _env_float("PAYCHANGU_TIMEOUT_SECONDS", 15.0)

# Délai des requêtes PostgREST (Supabase)
SUPABASE_TIMEOUT_SECONDS = _env_float("SUPABASE_TIMEOUT_SECONDS", 10.0)

# Stripe: clé secrète et secret webhook
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET") or "")

# Réglages boutique (repli si aucune ligne 'settings' en base)
STORE_CURRENCY = _clean_env(os.getenv("STORE_CURRENCY") or "MWK").upper()
STORE_TAX_RATE = _env_float("STORE_TAX_RATE", 0.0)
DEFAULT_TRANSACTION_FEE_RATE = _env_float("DEFAULT_TRANSACTION_FEE_RATE", 0.03)

# Créneaux: capacity (max_concurrent_bookings respecté) | unlimited
BOOKING_SLOT_POLICY = _clean_env(os.getenv("BOOKING_SLOT_POLICY") or "capacity").lower()

# Worker de réservation de stock (0 = désactivé)
INVENTORY_RETRY_INTERVAL_SECONDS = _env_int("INVENTORY_RETRY_INTERVAL_SECONDS", 0)
INVENTORY_RETRY_MAX_ATTEMPTS = _env_int("INVENTORY_RETRY_MAX_ATTEMPTS", 5)
INVENTORY_RETRY_BASE_DELAY_SECONDS = _env_int("INVENTORY_RETRY_BASE_DELAY_SECONDS", 30)

# Sécurité cookies / CORS / hosts
COOKIE_SECURE = (os.getenv("COOKIE_SECURE", "false").lower() == "true")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]
