from datetime import datetime, timedelta, timezone
from typing import List

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from examcore.core.config import settings

ALGORITHM = "HS256"
ROLES = {"teacher", "admin", "student"}


class TokenData(BaseModel):
    sub: str
    roles: List[str]


bearer = HTTPBearer()


def create_token(user_id: str, roles: List[str], ttl_minutes: int | None = None) -> str:
    now = datetime.now(timezone.utc)
    ttl = ttl_minutes if ttl_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    payload = {"sub": user_id, "roles": roles, "iat": int(now.timestamp()), "exp": int((now + timedelta(minutes=ttl)).timestamp())}
    return jwt.encode(payload, settings.APP_SECRET.get_secret_value(), algorithm=ALGORITHM)


def get_current_user(creds: HTTPAuthorizationCredentials = Depends(bearer)) -> TokenData:
    try:
        payload = jwt.decode(creds.credentials, settings.APP_SECRET.get_secret_value(), algorithms=[ALGORITHM])
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    return TokenData(sub=payload["sub"], roles=payload.get("roles", []))


def require_roles(*required: str):
    def checker(user: TokenData = Depends(get_current_user)):
        if not set(user.roles).intersection(required):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return user
    return checker


require_teacher = require_roles("teacher", "admin")
