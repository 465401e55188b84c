"""
Development login. Real deployments put an identity provider in front and
only the signed bearer token reaches this service.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator

from examcore.core.auth import ROLES, TokenData, create_token, get_current_user
from examcore.core.config import settings

router = APIRouter()


class MockLogin(BaseModel):
    user_id: str = Field(min_length=1)
    roles: List[str] = Field(default_factory=lambda: ["teacher"])
    ttl_minutes: Optional[int] = Field(default=None, ge=1)

    @field_validator("roles")
    @classmethod
    def _known_roles(cls, v: List[str]) -> List[str]:
        unknown = sorted(set(v) - ROLES)
        if unknown:
            raise ValueError(f"unknown roles: {unknown}")
        return v


@router.post("/mock-login")
def mock_login(payload: MockLogin):
    token = create_token(payload.user_id, payload.roles, payload.ttl_minutes)
    expires_in = (payload.ttl_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES) * 60
    return {"access_token": token, "token_type": "bearer", "expires_in": expires_in, "roles": payload.roles}


@router.get("/me", response_model=TokenData)
def whoami(user: TokenData = Depends(get_current_user)):
    return user
