from typing import Dict
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from edupay.auth.schemas import CurrentUser
from edupay.core.config import settings


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login-oauth")


async def get_current_user(token: str = Depends(oauth2_scheme)) -> CurrentUser:
    """Resolve the authenticated user, their school and permissions from the access token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        raise credentials_exception

    user_id_str = payload.get("user_id") or payload.get("sub")
    school_id_str = payload.get("school_id")
    role_name = payload.get("role")
    if not user_id_str or not school_id_str or not role_name:
        raise credentials_exception

    try:
        user_id = UUID(user_id_str)
        school_id = UUID(school_id_str)
    except ValueError:
        raise credentials_exception

    permissions: Dict[str, Dict[str, bool]] = payload.get("permissions") or {}
    if not isinstance(permissions, dict):
        raise credentials_exception

    return CurrentUser(
        id=user_id,
        school_id=school_id,
        role=role_name,
        permissions=permissions,
    )
