"""Bearer token helpers used to identify the acting user."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

ALGORITHM = "HS256"


@dataclass(frozen=True)
class Actor:
    """Identity carried by a verified access token."""

    ref: str
    role: str | None = None

    def is_admin(self) -> bool:
        return self.role == "admin"


def create_access_token(
    data: dict, secret_key: str, expires_delta: timedelta | None = None
) -> str:
    expire = datetime.now(tz=timezone.utc) + (expires_delta or timedelta(minutes=30))
    return jwt.encode({**data, "exp": expire}, secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str, secret_key: str) -> dict:
    try:
        return jwt.decode(token, secret_key, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise ValueError("Could not validate credentials") from exc


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class TokenActorResolver:
    """Resolve the :class:`Actor` behind an ``Authorization`` header."""

    def __init__(self, secret_key: str) -> None:
        self._secret_key = secret_key

    def __call__(self, authorization: str | None) -> Actor | None:
        token = extract_bearer_token(authorization)
        if token is None:
            return None
        try:
            payload = decode_access_token(token, self._secret_key)
        except ValueError:
            return None
        subject = payload.get("sub")
        if subject is None:
            return None
        role = payload.get("role")
        return Actor(ref=str(subject), role=str(role) if role is not None else None)


__all__ = [
    "Actor",
    "TokenActorResolver",
    "create_access_token",
    "decode_access_token",
    "extract_bearer_token",
]
