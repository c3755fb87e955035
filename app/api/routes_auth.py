"""
routes_auth.py
---------------
Authentication routes for the lesson planner.

Features:
- Login endpoint (validates username & password).
- Issues JWT access tokens upon successful authentication.
- Users come from the PLANNER_USERS setting ("user:password,...") and are
  hashed with Argon2 once, on first login.
"""

from functools import lru_cache
from typing import Dict

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from app.core import security
from app.core.config import PLANNER_USERS

router = APIRouter(prefix="/auth", tags=["Authentication"])


@lru_cache
def get_planner_users() -> Dict[str, str]:
    return security.parse_user_table(PLANNER_USERS)


# ------------------------------------------------
# Request Models
# ------------------------------------------------
class LoginRequest(BaseModel):
    username: str
    password: str


# ------------------------------------------------
# Routes
# ------------------------------------------------
@router.post("/login")
def login(request: LoginRequest):
    """
    Authenticate a planner user and return a JWT token.

    Returns:
        dict: {"access_token": <JWT>, "token_type": "bearer"}

    Raises:
        HTTPException: If credentials are invalid.
    """
    user_pw = get_planner_users().get(request.username)

    if not user_pw or not security.verify_password(request.password, user_pw):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = security.create_access_token(data={"sub": request.username})
    return {"access_token": token, "token_type": "bearer"}
