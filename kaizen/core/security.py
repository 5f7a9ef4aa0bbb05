"""Password hashing, API key generation and the signing/claims helpers behind
the token services.

Everything token-related here is pure: it signs and parses strings and knows
nothing about the token store. Store checks live in
``kaizen.services.token_service``.
"""
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from kaizen.core.config import Settings
from kaizen.core.exceptions import InvalidSignature, MalformedToken
from kaizen.models.token import TokenType

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

MAX_PASSWORD_BYTES = 72
API_KEY_BYTES = 32


def hash_password(password: str) -> str:
    """Hash password using bcrypt"""
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError("Password is too long")
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify plain password against hash"""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


def generate_api_key() -> str:
    """64 hex characters of randomness."""
    return secrets.token_hex(API_KEY_BYTES)


@dataclass(frozen=True)
class TokenConfig:
    """Signing material and lifetimes, built once and handed to the token services."""

    secret_key: str
    algorithm: str = "HS256"
    access_token_ttl: timedelta = timedelta(minutes=15)
    refresh_token_ttl: timedelta = timedelta(days=7)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenConfig":
        return cls(
            secret_key=settings.SECRET_KEY,
            algorithm=settings.ALGORITHM,
            access_token_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_token_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        )

    def ttl_for(self, token_type: TokenType) -> timedelta:
        if token_type == TokenType.ACCESS:
            return self.access_token_ttl
        return self.refresh_token_ttl


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    email: str
    token_id: str
    token_type: TokenType
    issued_at: datetime
    expires_at: datetime

    def to_payload(self) -> Dict[str, Any]:
        return {
            "sub": str(self.user_id),
            "user_id": self.user_id,
            "email": self.email,
            "jti": self.token_id,
            "type": self.token_type.value,
            "iat": self.issued_at,
            "exp": self.expires_at,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TokenClaims":
        try:
            return cls(
                user_id=int(payload["user_id"]),
                email=str(payload["email"]),
                token_id=str(payload["jti"]),
                token_type=TokenType(payload["type"]),
                issued_at=datetime.utcfromtimestamp(int(payload["iat"])),
                expires_at=datetime.utcfromtimestamp(int(payload["exp"])),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedToken(f"Incomplete claims: {exc}") from exc


def generate_token_id(user_id: int, token_type: TokenType) -> str:
    """Unique id for a token row: kind, owner, nanosecond timestamp and a random tail."""
    return f"{token_type.value}_{user_id}_{time.time_ns()}_{secrets.token_hex(4)}"


def sign_claims(claims: TokenClaims, config: TokenConfig) -> str:
    return jwt.encode(claims.to_payload(), config.secret_key, algorithm=config.algorithm)


def decode_token(token: str, config: TokenConfig) -> TokenClaims:
    """Verify signature and algorithm, then parse the claims.

    Expiry is not checked here; callers compare ``expires_at``
    against their own clock.
    """
    if not token or token.count(".") != 2:
        raise MalformedToken("Token must have three segments")

    try:
        jwt.get_unverified_header(token)
        jwt.get_unverified_claims(token)
    except JWTError as exc:
        raise MalformedToken(str(exc)) from exc

    try:
        payload = jwt.decode(
            token,
            config.secret_key,
            algorithms=[config.algorithm],
            options={"verify_exp": False},
        )
    except JWTError as exc:
        raise InvalidSignature(str(exc)) from exc

    return TokenClaims.from_payload(payload)


def read_token_id(token: str) -> Optional[str]:
    """Return the embedded token id without verifying the signature."""
    try:
        payload = jwt.get_unverified_claims(token)
    except JWTError:
        return None
    token_id = payload.get("jti") if isinstance(payload, dict) else None
    return str(token_id) if token_id else None
