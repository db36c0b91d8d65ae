"""Principal extraction from bearer tokens issued by the identity provider.

The engine never issues or refreshes tokens; it verifies the signature and
reads ``sub`` (user id) and ``role``.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from exam_engine.config import settings
from exam_engine.models.user import Principal

bearer_scheme = HTTPBearer(auto_error=False)


def decode_principal(token: str) -> Principal | None:
    """Return the principal for a valid token, or None."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    user_id = payload.get("sub")
    if not user_id:
        return None
    return Principal(user_id=str(user_id), role=payload.get("role", "student"))


async def get_principal(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> Principal:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    principal = decode_principal(credentials.credentials)
    if principal is None:
        raise credentials_exception
    return principal


async def get_admin(principal: Annotated[Principal, Depends(get_principal)]) -> Principal:
    if not principal.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return principal
