"""Issuance, validation and revocation of access/refresh token pairs.

A signed token is only as good as its row in the ``tokens`` table: the
validator always re-reads the store, and revocation is a plain delete.
"""
from datetime import datetime
from typing import Callable, List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kaizen.core.exceptions import (
    PersistenceFailure,
    TokenExpired,
    TokenNotFoundOrRevoked,
    TokenTypeMismatch,
)
from kaizen.core.security import (
    TokenClaims,
    TokenConfig,
    decode_token,
    generate_token_id,
    read_token_id,
    sign_claims,
)
from kaizen.models.token import Token, TokenType
from kaizen.schemas.token import TokenPair

logger = structlog.get_logger()

Clock = Callable[[], datetime]


class TokenIssuer:
    def __init__(self, config: TokenConfig, clock: Clock = datetime.utcnow):
        self.config = config
        self.clock = clock

    def _build_claims(self, user_id: int, email: str, token_type: TokenType, issued_at: datetime) -> TokenClaims:
        return TokenClaims(
            user_id=user_id,
            email=email,
            token_id=generate_token_id(user_id, token_type),
            token_type=token_type,
            issued_at=issued_at,
            expires_at=issued_at + self.config.ttl_for(token_type),
        )

    def issue_token_pair(self, db: Session, user_id: int, email: str) -> TokenPair:
        """
        Sign an access/refresh pair and record both rows in one commit.

        Anything else pending on ``db`` (a new user, an updated last-login
        timestamp) is committed in the same transaction.

        Raises:
            PersistenceFailure: the rows could not be written. Nothing is
                returned and the session is rolled back.
        """
        # Whole seconds so the signed exp and the stored expiry agree exactly.
        issued_at = self.clock().replace(microsecond=0)
        access_claims = self._build_claims(user_id, email, TokenType.ACCESS, issued_at)
        refresh_claims = self._build_claims(user_id, email, TokenType.REFRESH, issued_at)

        access_token = sign_claims(access_claims, self.config)
        refresh_token = sign_claims(refresh_claims, self.config)

        rows: List[Token] = [
            Token(
                id=claims.token_id,
                user_id=user_id,
                type=claims.token_type,
                expires_at=claims.expires_at,
                created_at=issued_at,
            )
            for claims in (access_claims, refresh_claims)
        ]

        try:
            db.add_all(rows)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("token_pair_persist_failed", user_id=user_id, error=str(exc))
            raise PersistenceFailure("Could not store issued tokens") from exc

        logger.info(
            "token_pair_issued",
            user_id=user_id,
            access_token_id=access_claims.token_id,
            refresh_token_id=refresh_claims.token_id,
        )
        return TokenPair(access_token=access_token, refresh_token=refresh_token)


class TokenValidator:
    def __init__(self, config: TokenConfig, clock: Clock = datetime.utcnow):
        self.config = config
        self.clock = clock

    def validate(self, db: Session, token: str, expected_type: Optional[TokenType] = None) -> TokenClaims:
        """
        Verify ``token`` and confirm a live row backs it.

        Raises MalformedToken, InvalidSignature, TokenExpired,
        TokenNotFoundOrRevoked, TokenTypeMismatch or PersistenceFailure.
        """
        claims = decode_token(token, self.config)
        now = self.clock()

        if claims.expires_at <= now:
            raise TokenExpired("Signed expiry has passed")

        try:
            row = db.query(Token).filter(Token.id == claims.token_id).first()
        except SQLAlchemyError as exc:
            logger.error("token_lookup_failed", token_id=claims.token_id, error=str(exc))
            raise PersistenceFailure("Could not read token store") from exc

        if row is None or row.user_id != claims.user_id:
            raise TokenNotFoundOrRevoked("Token not found or revoked")

        if row.is_expired(now):
            raise TokenExpired("Token has expired")

        if expected_type is not None and row.type != expected_type:
            raise TokenTypeMismatch(f"Expected {expected_type.value} token, got {row.type.value}")

        return claims


class TokenRevoker:
    """Deletes token rows. Every operation is idempotent and returns the delete count."""

    def _delete(self, db: Session, query, event: str, **log_fields) -> int:
        try:
            deleted = query.delete(synchronize_session=False)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(f"{event}_failed", error=str(exc), **log_fields)
            raise PersistenceFailure("Could not delete tokens") from exc

        logger.info(event, deleted=deleted, **log_fields)
        return deleted

    def revoke_token(self, db: Session, token: str, user_id: Optional[int] = None) -> int:
        """
        Revoke a single token by its embedded id.

        The signature is not verified; only the id is needed. When ``user_id``
        is given, rows belonging to anyone else are left alone.
        """
        token_id = read_token_id(token) if token else None
        if not token_id:
            return 0

        query = db.query(Token).filter(Token.id == token_id)
        if user_id is not None:
            query = query.filter(Token.user_id == user_id)
        return self._delete(db, query, "token_revoked", token_id=token_id, user_id=user_id)

    def revoke_all_user_tokens(self, db: Session, user_id: int) -> int:
        query = db.query(Token).filter(Token.user_id == user_id)
        return self._delete(db, query, "user_tokens_revoked", user_id=user_id)

    def sweep_expired_tokens(self, db: Session, now: Optional[datetime] = None) -> int:
        cutoff = now or datetime.utcnow()
        query = db.query(Token).filter(Token.expires_at < cutoff)
        return self._delete(db, query, "expired_tokens_swept", cutoff=cutoff.isoformat())
