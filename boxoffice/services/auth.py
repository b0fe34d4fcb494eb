from datetime import datetime, timedelta
from typing import Optional
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from boxoffice.config import get_settings
from boxoffice.schemas.identity import CurrentUser

settings = get_settings()
security = HTTPBearer(auto_error=False)

DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)


class AuthService:
    @staticmethod
    def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
        to_encode = data.copy()
        expire = datetime.utcnow() + (expires_delta or DEFAULT_TOKEN_LIFETIME)
        to_encode.update({"exp": expire})
        return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)

    @staticmethod
    def create_token_for(user: CurrentUser, expires_delta: Optional[timedelta] = None) -> str:
        claims = {"sub": user.id, "role": user.role}
        if user.email:
            claims["email"] = user.email
        if user.name:
            claims["name"] = user.name
        return AuthService.create_access_token(claims, expires_delta)

    @staticmethod
    def decode_token(token: str) -> Optional[CurrentUser]:
        try:
            payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        except JWTError:
            return None

        user_id = payload.get("sub")
        if user_id is None:
            return None
        return CurrentUser(
            id=str(user_id),
            email=payload.get("email"),
            name=payload.get("name"),
            role=payload.get("role", "buyer")
        )


def get_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[str]:
    if credentials:
        return credentials.credentials
    return request.cookies.get("access_token")


def get_current_user(token: Optional[str] = Depends(get_token)) -> Optional[CurrentUser]:
    if not token:
        return None
    return AuthService.decode_token(token)


def get_current_user_required(
    current_user: Optional[CurrentUser] = Depends(get_current_user)
) -> CurrentUser:
    if current_user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return current_user


def get_current_admin(
    current_user: CurrentUser = Depends(get_current_user_required)
) -> CurrentUser:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user
