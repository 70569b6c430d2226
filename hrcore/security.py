from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from hrcore.errors import ApiError, UnauthorizedError
from hrcore.models import EmployeeRole
from hrcore.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True, slots=True)
class Principal:
    id: int
    role: EmployeeRole
    manager_id: int | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == EmployeeRole.ADMIN


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc
    return payload


def principal_from_claims(claims: dict[str, Any]) -> Principal:
    subject = str(claims.get("sub") or "")
    if not subject.isdigit():
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")

    try:
        role = EmployeeRole(str(claims.get("role") or "").lower())
    except ValueError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token role is invalid.") from exc

    raw_manager_id = claims.get("manager_id")
    manager_id = int(raw_manager_id) if isinstance(raw_manager_id, (int, str)) and str(raw_manager_id).isdigit() else None
    return Principal(id=int(subject), role=role, manager_id=manager_id)


def get_current_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Principal:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    principal = principal_from_claims(decode_token(credentials.credentials))
    request.state.actor = principal.role.value
    request.state.actor_id = str(principal.id)
    return principal


def require_roles(*roles: EmployeeRole) -> Callable[..., Principal]:
    allowed = set(roles)

    def _dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise UnauthorizedError(code="FORBIDDEN", message="Insufficient permissions.")
        return principal

    return _dependency


def ensure_self_or_admin(principal: Principal, target_user_id: int) -> None:
    if principal.is_admin or principal.id == target_user_id:
        return
    raise UnauthorizedError(code="FORBIDDEN", message="Access denied.")
