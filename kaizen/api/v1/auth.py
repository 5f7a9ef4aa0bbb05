from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kaizen.api.deps import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    AuthContext,
    extract_bearer_token,
    get_current_identity,
    get_token_config,
    get_token_issuer,
    get_token_revoker,
    get_token_validator,
)
from kaizen.core.config import settings
from kaizen.core.exceptions import (
    APIError,
    AuthServiceUnavailable,
    EmailAlreadyExists,
    InvalidCredentials,
    NotAuthenticated,
    PersistenceFailure,
    TokenError,
)
from kaizen.core.security import TokenConfig, hash_password, verify_password
from kaizen.db.session import get_db
from kaizen.models.token import TokenType
from kaizen.models.user import User
from kaizen.schemas.token import RefreshRequest, TokenPair
from kaizen.schemas.user import UserCreate, UserLogin, UserResponse
from kaizen.services.token_service import TokenIssuer, TokenRevoker, TokenValidator
from kaizen.utils.response import success

router = APIRouter()
logger = structlog.get_logger()


def _set_auth_cookies(response: JSONResponse, tokens: TokenPair, config: TokenConfig) -> None:
    secure = settings.is_production
    response.set_cookie(
        key=ACCESS_TOKEN_COOKIE,
        value=tokens.access_token,
        httponly=True,
        secure=secure,
        samesite="lax",
        max_age=int(config.access_token_ttl.total_seconds()),
        path="/",
    )
    response.set_cookie(
        key=REFRESH_TOKEN_COOKIE,
        value=tokens.refresh_token,
        httponly=True,
        secure=secure,
        samesite="lax",
        max_age=int(config.refresh_token_ttl.total_seconds()),
        path="/",
    )


def _clear_auth_cookies(response: JSONResponse) -> None:
    secure = settings.is_production
    for key in (ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE):
        response.set_cookie(
            key=key,
            value="",
            httponly=True,
            secure=secure,
            samesite="lax",
            max_age=-1,
            path="/",
        )


async def read_refresh_token(request: Request) -> Optional[str]:
    """Refresh token from the cookie, else from a JSON body `{"refresh_token": ...}`.

    The body is only read when the cookie is absent, and an unparsable body
    counts as no token.
    """
    cookie_token = request.cookies.get(REFRESH_TOKEN_COOKIE)
    if cookie_token:
        return cookie_token

    try:
        payload = RefreshRequest.model_validate(await request.json())
    except (ValueError, ValidationError):
        return None
    return payload.refresh_token or None


def _issue_or_fail(issuer: TokenIssuer, db: Session, user_id: int, email: str) -> TokenPair:
    try:
        return issuer.issue_token_pair(db, user_id, email)
    except PersistenceFailure:
        raise APIError(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Failed to generate tokens",
        )


def _auth_response(
    user: User,
    tokens: TokenPair,
    config: TokenConfig,
    message: str,
    status_code: int = status.HTTP_200_OK,
) -> JSONResponse:
    response = JSONResponse(
        status_code=status_code,
        content=success(
            data={
                "user": UserResponse.model_validate(user),
                **tokens.model_dump(),
            },
            message=message,
        ),
    )
    _set_auth_cookies(response, tokens, config)
    return response


@router.post(
    "/register",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Register user account",
    description="""
Creates a user, issues an access/refresh token pair and sets both as httpOnly cookies.

The user row and both token rows are committed together; if token storage
fails no account is created.
""",
    responses={
        201: {"description": "Registration successful"},
        409: {"description": "Email already registered"},
        422: {"description": "Validation error"},
    },
)
def register(
    user_in: UserCreate,
    db: Session = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
    config: TokenConfig = Depends(get_token_config),
):
    if db.query(User).filter(User.email == user_in.email).first():
        raise EmailAlreadyExists()

    user = User(
        name=user_in.name,
        email=user_in.email,
        password_hash=hash_password(user_in.password),
    )
    db.add(user)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise EmailAlreadyExists()

    tokens = _issue_or_fail(issuer, db, user.id, user.email)
    db.refresh(user)
    logger.info("user_registered", user_id=user.id)

    return _auth_response(user, tokens, config, "Registration successful", status.HTTP_201_CREATED)


@router.post(
    "/login",
    response_model=dict,
    summary="Login user",
    responses={
        200: {"description": "Login successful"},
        401: {"description": "Invalid credentials"},
    },
)
def login(
    credentials: UserLogin,
    db: Session = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
    config: TokenConfig = Depends(get_token_config),
):
    user = db.query(User).filter(User.email == credentials.email).first()

    if not user or not verify_password(credentials.password, user.password_hash):
        logger.info("login_failed")
        raise InvalidCredentials()

    # Committed together with the new token rows
    user.last_login_at = datetime.utcnow()
    tokens = _issue_or_fail(issuer, db, user.id, user.email)
    db.refresh(user)

    return _auth_response(user, tokens, config, "Login successful")


@router.post(
    "/refresh",
    response_model=dict,
    summary="Rotate tokens",
    description="""
Redeems a refresh token (cookie first, then JSON body `refresh_token`) for a new pair.

The redeemed token is revoked before the new pair is issued; a refresh token
can be redeemed once.
""",
)
def refresh_tokens(
    refresh_token_value: Optional[str] = Depends(read_refresh_token),
    db: Session = Depends(get_db),
    validator: TokenValidator = Depends(get_token_validator),
    revoker: TokenRevoker = Depends(get_token_revoker),
    issuer: TokenIssuer = Depends(get_token_issuer),
    config: TokenConfig = Depends(get_token_config),
):
    if not refresh_token_value:
        raise NotAuthenticated("No refresh token provided")

    try:
        claims = validator.validate(db, refresh_token_value, expected_type=TokenType.REFRESH)
    except TokenError as exc:
        logger.info("refresh_rejected", reason=type(exc).__name__)
        raise NotAuthenticated("Invalid refresh token")
    except PersistenceFailure:
        raise AuthServiceUnavailable()

    try:
        redeemed = revoker.revoke_token(db, refresh_token_value, user_id=claims.user_id)
    except PersistenceFailure:
        raise AuthServiceUnavailable()

    if redeemed != 1:
        # Another request redeemed the same token between validation and delete.
        logger.warning("refresh_token_reused", user_id=claims.user_id, token_id=claims.token_id)
        raise NotAuthenticated("Invalid refresh token")

    tokens = _issue_or_fail(issuer, db, claims.user_id, claims.email)

    response = JSONResponse(content=success(data=tokens, message="Token refreshed"))
    _set_auth_cookies(response, tokens, config)
    return response


@router.post("/logout", response_model=dict)
def logout(
    request: Request,
    identity: AuthContext = Depends(get_current_identity),
    db: Session = Depends(get_db),
    revoker: TokenRevoker = Depends(get_token_revoker),
):
    """Revoke the presented access token and the refresh cookie. Always clears cookies."""
    for token in (extract_bearer_token(request), request.cookies.get(REFRESH_TOKEN_COOKIE)):
        if not token:
            continue
        try:
            revoker.revoke_token(db, token, user_id=identity.user_id)
        except PersistenceFailure:
            logger.warning("logout_revocation_failed", user_id=identity.user_id)

    response = JSONResponse(content=success(message="Logged out successfully"))
    _clear_auth_cookies(response)
    return response


@router.post("/logout-all", response_model=dict)
def logout_all_devices(
    identity: AuthContext = Depends(get_current_identity),
    db: Session = Depends(get_db),
    revoker: TokenRevoker = Depends(get_token_revoker),
):
    """Revoke every token of the current user."""
    try:
        revoked = revoker.revoke_all_user_tokens(db, identity.user_id)
    except PersistenceFailure:
        raise APIError(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Failed to logout from all devices",
        )

    response = JSONResponse(
        content=success(data={"revoked": revoked}, message="Logged out from all devices")
    )
    _clear_auth_cookies(response)
    return response
