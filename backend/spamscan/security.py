"""
=============================================================================
SPAMSCAN - Autenticación
=============================================================================
Verificación de tokens Bearer (JWT). La emisión de tokens ocurre fuera de
este servicio; aquí solo se valida la firma y se construye el principal.

Claims esperados: id (o sub), email, name, role ("user" | "admin")
=============================================================================
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .exceptions import AuthError


class Role(str, Enum):
    """Roles reconocidos."""
    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class Principal:
    """Usuario autenticado."""
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class TokenVerifier:
    """Valida tokens JWT firmados con un secreto compartido."""

    def __init__(self, secret: str, algorithm: str = "HS256"):
        self.secret = secret
        self.algorithm = algorithm

    def verify(self, token: str) -> Principal:
        try:
            claims: Dict[str, Any] = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.PyJWTError as e:
            raise AuthError("Token inválido", "TokenVerifier", e)

        user_id = claims.get("id") or claims.get("sub")
        if not user_id:
            raise AuthError("Token sin identificador de usuario", "TokenVerifier")

        try:
            role = Role(claims.get("role") or Role.USER.value)
        except ValueError:
            role = Role.USER

        return Principal(
            id=str(user_id),
            email=claims.get("email"),
            name=claims.get("name"),
            role=role,
        )


# =============================================================================
# DEPENDENCIAS FASTAPI
# =============================================================================

bearer_scheme = HTTPBearer(auto_error=False)


async def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[Principal]:
    """Principal si hay token válido; None si no se envió token."""
    if credentials is None:
        return None
    verifier: TokenVerifier = request.app.state.token_verifier
    return verifier.verify(credentials.credentials)


async def get_current_user(
    principal: Optional[Principal] = Depends(get_optional_user),
) -> Principal:
    """Requiere un usuario autenticado."""
    if principal is None:
        raise AuthError("Autenticación requerida")
    return principal


async def get_current_admin(
    principal: Principal = Depends(get_current_user),
) -> Principal:
    """Verifica que el token pertenece a un administrador."""
    if not principal.is_admin:
        raise AuthError("Se requiere rol de administrador")
    return principal
