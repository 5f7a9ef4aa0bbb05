"""Per-request authentication.

Each router binds exactly one policy through ``require_auth``:

* ``AuthScheme.BEARER``  - access token from ``Authorization: Bearer`` or the
  ``access_token`` cookie.
* ``AuthScheme.API_KEY`` - key from the ``X-API-Key`` header.
* ``AuthScheme.EITHER``  - picks one of the two by which credential arrived;
  it never retries the other after a failure.

The resulting ``AuthContext`` is the only way handlers learn whose data they
are serving.
"""
import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import structlog
from fastapi import BackgroundTasks, Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kaizen.core.config import settings
from kaizen.core.exceptions import (
    AuthServiceUnavailable,
    NotAuthenticated,
    PersistenceFailure,
    TokenError,
)
from kaizen.core.security import TokenConfig
from kaizen.db.session import get_db
from kaizen.models.token import TokenType
from kaizen.services.api_key_service import APIKeyService, record_api_key_usage
from kaizen.services.token_service import TokenIssuer, TokenRevoker, TokenValidator

logger = structlog.get_logger()

ACCESS_TOKEN_COOKIE = "access_token"
REFRESH_TOKEN_COOKIE = "refresh_token"

INVALID_TOKEN_MESSAGE = "Invalid or expired token"
INVALID_API_KEY_MESSAGE = "Invalid or expired API key"


class AuthScheme(str, enum.Enum):
    BEARER = "bearer"
    API_KEY = "api_key"
    EITHER = "either"


@dataclass(frozen=True)
class AuthContext:
    user_id: int
    auth_method: str
    email: Optional[str] = None
    token_id: Optional[str] = None
    api_key_id: Optional[int] = None


# --------------------------------------------------
# TOKEN SERVICES
# --------------------------------------------------
def get_token_config() -> TokenConfig:
    return TokenConfig.from_settings(settings)


def get_token_issuer(config: TokenConfig = Depends(get_token_config)) -> TokenIssuer:
    return TokenIssuer(config)


def get_token_validator(config: TokenConfig = Depends(get_token_config)) -> TokenValidator:
    return TokenValidator(config)


def get_token_revoker() -> TokenRevoker:
    return TokenRevoker()


# --------------------------------------------------
# CREDENTIAL EXTRACTION
# --------------------------------------------------
def extract_bearer_token(request: Request) -> Optional[str]:
    """Token from ``Authorization: Bearer <token>``, falling back to the access cookie."""
    auth_header = request.headers.get("Authorization")
    if auth_header:
        parts = auth_header.split(" ")
        if len(parts) == 2 and parts[0] == "Bearer" and parts[1]:
            return parts[1]

    return request.cookies.get(ACCESS_TOKEN_COOKIE) or None


def extract_api_key(request: Request) -> Optional[str]:
    return request.headers.get(settings.API_KEY_HEADER) or None


# --------------------------------------------------
# POLICIES
# --------------------------------------------------
def authenticate_bearer(request: Request, db: Session, validator: TokenValidator) -> AuthContext:
    token = extract_bearer_token(request)
    if not token:
        raise NotAuthenticated("No authorization token provided")

    try:
        claims = validator.validate(db, token, expected_type=TokenType.ACCESS)
    except TokenError as exc:
        logger.info(
            "token_rejected",
            reason=type(exc).__name__,
            path=request.url.path,
        )
        raise NotAuthenticated(INVALID_TOKEN_MESSAGE)
    except PersistenceFailure:
        raise AuthServiceUnavailable()

    return AuthContext(
        user_id=claims.user_id,
        email=claims.email,
        auth_method=AuthScheme.BEARER.value,
        token_id=claims.token_id,
    )


def authenticate_api_key(
    request: Request,
    db: Session,
    background_tasks: BackgroundTasks,
) -> AuthContext:
    raw_key = extract_api_key(request)
    if not raw_key:
        raise NotAuthenticated("No API key provided")

    now = datetime.utcnow()
    try:
        api_key = APIKeyService.authenticate(db, raw_key, now=now)
    except SQLAlchemyError:
        logger.exception("api_key_lookup_failed")
        raise AuthServiceUnavailable()

    if api_key is None:
        logger.info("api_key_rejected", path=request.url.path)
        raise NotAuthenticated(INVALID_API_KEY_MESSAGE)

    # Runs after the response is sent; its outcome never affects this request.
    background_tasks.add_task(record_api_key_usage, api_key.id, now)

    return AuthContext(
        user_id=api_key.user_id,
        auth_method=AuthScheme.API_KEY.value,
        api_key_id=api_key.id,
    )


def _bind_identity(request: Request, context: AuthContext) -> None:
    request.state.auth = context


def require_auth(scheme: AuthScheme) -> Callable[..., AuthContext]:
    """Build the dependency enforcing ``scheme`` for a route group."""

    def dependency(
        request: Request,
        background_tasks: BackgroundTasks,
        db: Session = Depends(get_db),
        validator: TokenValidator = Depends(get_token_validator),
    ) -> AuthContext:
        if scheme is AuthScheme.BEARER:
            context = authenticate_bearer(request, db, validator)
        elif scheme is AuthScheme.API_KEY:
            context = authenticate_api_key(request, db, background_tasks)
        elif request.headers.get("Authorization"):
            context = authenticate_bearer(request, db, validator)
        elif extract_api_key(request):
            context = authenticate_api_key(request, db, background_tasks)
        elif request.cookies.get(ACCESS_TOKEN_COOKIE):
            context = authenticate_bearer(request, db, validator)
        else:
            raise NotAuthenticated("No authentication provided")

        _bind_identity(request, context)
        return context

    dependency.__name__ = f"require_{scheme.value}_auth"
    return dependency


get_current_identity = require_auth(AuthScheme.BEARER)
get_api_key_identity = require_auth(AuthScheme.API_KEY)
get_any_identity = require_auth(AuthScheme.EITHER)
