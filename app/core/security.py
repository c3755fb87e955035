"""
security.py
------------
Password hashing and JWT helpers for the lesson planner backend.

Notes:
- Planner passwords are hashed with Argon2 when the user table is built.
- Generation endpoints are per user: the JWT subject is the key of that
  user's generation session.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
from passlib.context import CryptContext

from app.core.config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES

# -------------------------
# Password Hashing
# -------------------------
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def parse_user_table(users_setting: str) -> Dict[str, str]:
    """
    Build {username: argon2 hash} from "user:password,user2:password2".

    Entries without a colon or with an empty name/password are skipped.
    """
    users = {}
    for pair in users_setting.split(","):
        username, sep, password = pair.strip().partition(":")
        if not sep or not username.strip() or not password:
            continue
        users[username.strip()] = get_password_hash(password)
    return users


# -------------------------
# JWT Token Handling
# -------------------------
def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Creates a signed JWT access token.

    Args:
        data (dict): Claims to encode, e.g. {"sub": username}.
        expires_delta (timedelta, optional): Lifetime of the token.
                                             Defaults to ACCESS_TOKEN_EXPIRE_MINUTES.
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


# -------------------------
# JWT Token Verification
# -------------------------
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def get_current_user(token: str = Depends(oauth2_scheme)) -> str:
    """Return the username (JWT subject) of the caller, or 401."""
    credentials_error = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid authentication credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise credentials_error
    username = payload.get("sub")
    if username is None:
        raise credentials_error
    return username
