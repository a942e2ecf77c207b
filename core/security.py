# core/security.py - Authentification JWT (bearer) et principal courant

from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from core.config import get_settings
from core.errors import AuthenticationError

ROLES = ("customer", "vendor", "admin")

# auto_error=False : on renvoie nous-mêmes 401 au format {success, message}
security = HTTPBearer(auto_error=False)


class Principal(BaseModel):
    """Utilisateur authentifié tel qu'affirmé par le collaborateur d'identité."""
    id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


# === JWT Token creation ===

def create_access_token(
    user_id: str,
    role: str,
    expires_delta: Optional[timedelta] = None,
    extra_claims: Optional[Dict[str, Any]] = None
) -> str:
    """
    Crée un JWT portant l'identifiant et le rôle.

    Args:
        user_id: identifiant utilisateur (claim sub)
        role: customer | vendor | admin
        expires_delta: Durée de validité (défaut: ACCESS_TOKEN_EXPIRE_MINUTES)
        extra_claims: claims additionnels (email, company...)

    Returns:
        JWT token string
    """
    settings = get_settings()
    to_encode: Dict[str, Any] = dict(extra_claims or {})

    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode.update({
        "sub": str(user_id),
        "role": role,
        "exp": expire,
        "iat": datetime.utcnow(),
    })

    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


# === JWT Token validation ===

def decode_token(token: str) -> Dict[str, Any]:
    """
    Décode et valide un JWT.

    Raises:
        AuthenticationError si invalide/expiré
    """
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise AuthenticationError("Token is invalid or expired") from e


# === FastAPI Dependencies ===

async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Principal:
    """
    Extrait le principal (id, rôle) du bearer token.

    Raises:
        AuthenticationError (401) si token absent, invalide ou incomplet
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Not authorized to access this route")

    payload = decode_token(credentials.credentials)

    user_id = payload.get("sub")
    role = payload.get("role")
    if user_id is None:
        raise AuthenticationError("Invalid token: missing subject")
    if role not in ROLES:
        raise AuthenticationError("Invalid token: unknown role")

    return Principal(id=str(user_id), role=role)
