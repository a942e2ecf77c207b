# core/config.py - Configuration centralisée (variables d'environnement + .env)

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Configuration de l'application, chargée une seule fois au démarrage."""
    database_url: str
    jwt_secret_key: str
    jwt_algorithm: str
    access_token_expire_minutes: int
    quotation_validity_days: int
    invoice_due_days: int
    freeze_tax_rate_during_negotiation: bool
    log_level: str
    log_file: Optional[str]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Retourne l'instance unique des paramètres."""
    return Settings(
        database_url=os.getenv("DATABASE_URL") or "sqlite:///./rental.db",
        jwt_secret_key=os.getenv("JWT_SECRET_KEY", "CHANGE_ME_IN_PRODUCTION_USE_LONG_RANDOM_STRING"),
        jwt_algorithm="HS256",
        access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60")),
        quotation_validity_days=int(os.getenv("QUOTATION_VALIDITY_DAYS", "7")),
        invoice_due_days=int(os.getenv("INVOICE_DUE_DAYS", "7")),
        freeze_tax_rate_during_negotiation=_env_bool("FREEZE_TAX_RATE_DURING_NEGOTIATION", True),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_file=os.getenv("LOG_FILE") or None,
    )
