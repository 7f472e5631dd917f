"""Password hashing and JWT helpers."""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from config import Settings
from errors import InvalidTokenError, MissingTokenError

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=10)


@dataclass(frozen=True)
class TokenPayload:
    user_id: str
    username: str
    expires_at: datetime


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(user_id: str, username: str, settings: Settings,
                        expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode = {"userId": user_id, "username": username, "exp": expire}
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str, settings: Settings) -> TokenPayload:
    """Decode and check a token. Returns the payload or raises InvalidTokenError."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError:
        raise InvalidTokenError("Token has expired.")
    except JWTError:
        raise InvalidTokenError()

    user_id = payload.get("userId")
    exp = payload.get("exp")
    if not user_id or exp is None:
        raise InvalidTokenError("Token is missing required claims.")
    return TokenPayload(
        user_id=user_id,
        username=payload.get("username", ""),
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
    )


def bearer_token(authorization: Optional[str]) -> str:
    """Pull the token out of an ``Authorization: Bearer <token>`` header."""
    if not authorization or not authorization.startswith("Bearer "):
        raise MissingTokenError()
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise MissingTokenError()
    return token
