"""Caller identity for billing routes.

Every balance, recharge, and grant is scoped to the user_id carried by the
bearer session; request bodies never choose whose account is touched.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from services.billing_errors import Forbidden
from services.session_token import decode_session_token


bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    email: Optional[str] = None


def ensure_user_scope(auth_user_id: str, requested_user_id: Optional[str]) -> str:
    """Allow an explicit user_id only when it names the caller."""
    if requested_user_id and requested_user_id != auth_user_id:
        raise Forbidden("user_id does not match authenticated session.")
    return auth_user_id


async def get_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> AuthContext:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing Bearer session token.")

    try:
        claims = decode_session_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    return AuthContext(user_id=str(claims["sub"]).strip(), email=claims.get("email") or None)
